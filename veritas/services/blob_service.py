"""
Local blob store.

Clients first ask for an upload target (a single-use token URL), send the
image bytes to it, and get back a storage id. Records keep only the storage
id and a retrievable URL.
"""

import hashlib
import logging
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import BinaryIO, Optional, Union

from sqlalchemy.orm import Session

from veritas.config import settings
from veritas.exceptions import NotFoundError, UnauthenticatedError, UploadRejectedError
from veritas.models.blob import StoredBlob, UploadTarget

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
STORAGE_ID_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass
class UploadTargetInfo:
    upload_url: str
    token: str
    expires_at: datetime


def is_image_content_type(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith("image/")


class BlobStore:
    """Bytes on disk under ``storage_dir``, metadata in the database."""

    def __init__(
        self,
        storage_dir: Union[str, Path, None] = None,
        upload_ttl: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ):
        self.storage_dir = Path(storage_dir or settings.storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.upload_ttl = upload_ttl if upload_ttl is not None else settings.upload_url_ttl
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_upload_bytes

    def _path(self, storage_id: str) -> Path:
        if not STORAGE_ID_RE.match(storage_id):
            raise NotFoundError(f"Blob {storage_id} not found")
        return self.storage_dir / storage_id

    def issue_upload_target(
        self,
        db: Session,
        owner_id: Optional[str],
        base_url: str,
    ) -> UploadTargetInfo:
        if not owner_id:
            raise UnauthenticatedError("Not authenticated")

        token = secrets.token_urlsafe(32)
        expires_at = datetime.utcnow() + timedelta(seconds=self.upload_ttl)
        db.add(UploadTarget(token=token, owner_id=owner_id, expires_at=expires_at))
        db.commit()

        return UploadTargetInfo(
            upload_url=f"{base_url.rstrip('/')}/storage/upload/{token}",
            token=token,
            expires_at=expires_at,
        )

    def store(
        self,
        db: Session,
        token: str,
        fileobj: BinaryIO,
        content_type: Optional[str],
        filename: Optional[str] = None,
    ) -> str:
        """Consume an upload token and persist the bytes. Returns the storage id."""
        target = db.get(UploadTarget, token)
        if target is None or target.used:
            raise UploadRejectedError("Upload target is invalid or already used")
        if datetime.utcnow() >= target.expires_at:
            raise UploadRejectedError("Upload target has expired")
        if not is_image_content_type(content_type):
            raise UploadRejectedError(f"Unsupported content type: {content_type or 'unknown'}")

        storage_id = uuid.uuid4().hex
        path = self._path(storage_id)
        digest = hashlib.sha256()
        size = 0
        try:
            with path.open("wb") as out:
                while True:
                    chunk = fileobj.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise UploadRejectedError(f"Upload exceeds {self.max_bytes} bytes")
                    digest.update(chunk)
                    out.write(chunk)
            if size == 0:
                raise UploadRejectedError("Upload is empty")
        except UploadRejectedError:
            path.unlink(missing_ok=True)
            raise

        target.used = True
        db.add(StoredBlob(
            storage_id=storage_id,
            owner_id=target.owner_id,
            content_type=content_type,
            size=size,
            sha256=digest.hexdigest(),
            filename=filename,
        ))
        db.commit()

        logger.info(f"Stored blob {storage_id} ({size} bytes, {content_type})")
        return storage_id

    def get(self, db: Session, storage_id: str) -> Optional[StoredBlob]:
        if not STORAGE_ID_RE.match(storage_id):
            return None
        blob = db.get(StoredBlob, storage_id)
        if blob is None or not self._path(storage_id).exists():
            return None
        return blob

    def resolve_url(self, db: Session, storage_id: str, base_url: str) -> Optional[str]:
        if self.get(db, storage_id) is None:
            return None
        return f"{base_url.rstrip('/')}/storage/{storage_id}"

    def path_for(self, db: Session, storage_id: str) -> Path:
        if self.get(db, storage_id) is None:
            raise NotFoundError(f"Blob {storage_id} not found")
        return self._path(storage_id)

    def delete(self, db: Session, storage_id: str) -> None:
        """Remove bytes and metadata. Unknown handles are ignored."""
        if not STORAGE_ID_RE.match(storage_id):
            return
        self._path(storage_id).unlink(missing_ok=True)
        blob = db.get(StoredBlob, storage_id)
        if blob is not None:
            db.delete(blob)
            db.commit()
        logger.info(f"Deleted blob {storage_id}")
