from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Boolean
from veritas.database import Base


class StoredBlob(Base):
    """Metadata for bytes kept in the blob directory."""
    __tablename__ = "stored_blobs"

    storage_id = Column(String(32), primary_key=True)
    owner_id = Column(String(32), nullable=False, index=True)  # copied from the upload target
    content_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=False)
    sha256 = Column(String(64), nullable=False)
    filename = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class UploadTarget(Base):
    """Single-use upload token handed out before the client sends bytes."""
    __tablename__ = "upload_targets"

    token = Column(String(64), primary_key=True)
    owner_id = Column(String(32), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, nullable=False, default=False)
