"""
Analysis record: one uploaded image's lifecycle from PENDING to a verdict.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Float, DateTime, JSON
from veritas.database import Base


class Verdict(str, enum.Enum):
    PENDING = "PENDING"
    AUTHENTIC = "AUTHENTIC"
    AI_GENERATED = "AI_GENERATED"

    @property
    def is_terminal(self) -> bool:
        return self is not Verdict.PENDING


def new_id() -> str:
    return uuid.uuid4().hex


class Analysis(Base):
    __tablename__ = "analyses"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), nullable=False, index=True)

    image_url = Column(String, nullable=False)
    storage_id = Column(String(32), nullable=True, unique=True)  # blob handle, one record per blob
    filename = Column(String, nullable=False)

    verdict = Column(String(20), nullable=False, default=Verdict.PENDING.value)
    confidence = Column(Float, nullable=False, default=0.0)
    analysis_details = Column(JSON, nullable=True)   # six sub-scores, set once

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    @property
    def is_pending(self) -> bool:
        return self.verdict == Verdict.PENDING.value
