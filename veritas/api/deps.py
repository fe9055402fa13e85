"""
Process-wide service instances, exposed as overridable FastAPI dependencies.
"""

from veritas.database import SessionLocal
from veritas.services.blob_service import BlobStore
from veritas.services.scoring_service import ScoringQueue

blob_store = BlobStore()
scoring_queue = ScoringQueue(SessionLocal)


def get_blob_store() -> BlobStore:
    return blob_store


def get_scoring_queue() -> ScoringQueue:
    return scoring_queue
