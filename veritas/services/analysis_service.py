"""
Record store for image analyses.

Listing operations degrade to empty results for anonymous callers; mutations
raise. Each record is written twice at most: once on creation (PENDING) and
once by the scoring worker with its verdict.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from veritas.config import settings
from veritas.exceptions import (
    ConflictError,
    NotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    VeritasError,
)
from veritas.models.analysis import Analysis, Verdict
from veritas.services.blob_service import BlobStore
from veritas.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger(__name__)

SUB_SCORE_KEYS = (
    "artifact_score",
    "pattern_consistency",
    "noise_analysis",
    "color_distribution",
    "edge_coherence",
    "metadata_score",
)


def _owned(db: Session, owner_id: str):
    return (
        db.query(Analysis)
        .filter(Analysis.owner_id == owner_id)
        .order_by(Analysis.created_at.desc())
    )


def list_by_owner(db: Session, owner_id: Optional[str]) -> List[Analysis]:
    """All of the caller's analyses, newest first."""
    if not owner_id:
        return []
    return _owned(db, owner_id).all()


def recent_by_owner(
    db: Session,
    owner_id: Optional[str],
    limit: Optional[int] = None,
) -> List[Analysis]:
    if not owner_id:
        return []
    limit = limit if limit is not None else settings.recent_default_limit
    return _owned(db, owner_id).limit(limit).all()


def stats_by_owner(db: Session, owner_id: Optional[str]) -> Dict[str, int]:
    """
    Verdict counts over terminal records. PENDING records are not counted,
    so ``total == authentic + ai_generated`` always holds.
    """
    stats = {"total": 0, "authentic": 0, "ai_generated": 0}
    if not owner_id:
        return stats

    rows = (
        db.query(Analysis.verdict, func.count(Analysis.id))
        .filter(Analysis.owner_id == owner_id)
        .filter(Analysis.verdict != Verdict.PENDING.value)
        .group_by(Analysis.verdict)
        .all()
    )
    for verdict, count in rows:
        if verdict == Verdict.AUTHENTIC.value:
            stats["authentic"] = count
        elif verdict == Verdict.AI_GENERATED.value:
            stats["ai_generated"] = count
    stats["total"] = stats["authentic"] + stats["ai_generated"]
    return stats


def get_analysis(db: Session, analysis_id: str) -> Analysis:
    analysis = db.get(Analysis, analysis_id)
    if analysis is None:
        raise NotFoundError(f"Analysis {analysis_id} not found")
    return analysis


def get_owned_analysis(db: Session, analysis_id: str, caller_id: Optional[str]) -> Analysis:
    """Fetch a record the caller owns (401 / 404 / 403 semantics)."""
    if not caller_id:
        raise UnauthenticatedError("Not authenticated")
    analysis = get_analysis(db, analysis_id)
    if analysis.owner_id != caller_id:
        raise UnauthorizedError("Not allowed to access this analysis")
    return analysis


def create_analysis(
    db: Session,
    owner_id: Optional[str],
    storage_id: str,
    filename: str,
    blob_store: BlobStore,
    base_url: str,
    created_at: Optional[datetime] = None,
) -> str:
    """
    Insert a PENDING analysis for an uploaded blob and return its id.

    Raises:
        UnauthenticatedError: no caller identity
        NotFoundError: the blob cannot be resolved to a URL
        UnauthorizedError: the blob was uploaded by someone else
        ConflictError: the blob already backs another analysis
    """
    if not owner_id:
        raise UnauthenticatedError("Not authenticated")

    blob = blob_store.get(db, storage_id)
    image_url = blob_store.resolve_url(db, storage_id, base_url) if blob else None
    if not image_url:
        raise NotFoundError("Failed to get image URL")
    if blob.owner_id != owner_id:
        raise UnauthorizedError("Not allowed to use this image")
    if db.query(Analysis).filter(Analysis.storage_id == storage_id).first() is not None:
        raise ConflictError(f"Image {storage_id} already has an analysis")

    analysis = Analysis(
        owner_id=owner_id,
        image_url=image_url,
        storage_id=storage_id,
        filename=filename,
        verdict=Verdict.PENDING.value,
        confidence=0.0,
        analysis_details=None,
        created_at=created_at or datetime.utcnow(),
    )
    db.add(analysis)
    db.commit()
    db.refresh(analysis)

    metrics.increment("analysis.created")
    logger.info("Analysis created", analysis_id=analysis.id, owner_id=owner_id, filename=filename)
    return analysis.id


def patch_result(
    db: Session,
    analysis_id: str,
    verdict: Verdict,
    confidence: float,
    sub_scores: Dict[str, float],
) -> Analysis:
    """
    Write the terminal verdict. Only the scoring worker calls this, so there is
    no ownership check here.

    The write is a single conditional UPDATE on ``verdict = PENDING``, so of
    two concurrent patches for the same record exactly one lands.
    """
    verdict = Verdict(verdict)
    if not verdict.is_terminal:
        raise VeritasError("Cannot patch an analysis back to PENDING")
    missing = [key for key in SUB_SCORE_KEYS if key not in sub_scores]
    if missing:
        raise VeritasError(f"Missing sub-scores: {', '.join(missing)}")

    updated = (
        db.query(Analysis)
        .filter(Analysis.id == analysis_id)
        .filter(Analysis.verdict == Verdict.PENDING.value)
        .update(
            {
                Analysis.verdict: verdict.value,
                Analysis.confidence: float(confidence),
                Analysis.analysis_details: {key: float(sub_scores[key]) for key in SUB_SCORE_KEYS},
            },
            synchronize_session=False,
        )
    )
    db.commit()

    if updated == 0:
        get_analysis(db, analysis_id)  # NotFoundError if it is gone
        raise ConflictError(f"Analysis {analysis_id} already has a verdict")
    return get_analysis(db, analysis_id)


def delete_analysis(
    db: Session,
    analysis_id: str,
    caller_id: Optional[str],
    blob_store: BlobStore,
) -> None:
    """
    Delete an owned analysis and its blob. The blob goes first; the record is
    only removed once blob deletion has returned.
    """
    analysis = get_owned_analysis(db, analysis_id, caller_id)

    if analysis.storage_id:
        blob_store.delete(db, analysis.storage_id)

    db.delete(analysis)
    db.commit()

    metrics.increment("analysis.deleted")
    logger.info("Analysis deleted", analysis_id=analysis_id, owner_id=caller_id)
