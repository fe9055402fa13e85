"""
Admin endpoints: metrics snapshot and scoring pool state.
"""

from fastapi import APIRouter, Depends

from veritas.api.deps import get_scoring_queue
from veritas.api.security import verify_api_token
from veritas.schemas.analysis_schemas import MetricsResponse, ScoringPoolStats
from veritas.services.scoring_service import ScoringQueue
from veritas.utils.logging_config import metrics


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(verify_api_token)],
)


@router.get("/metrics", response_model=MetricsResponse)
def get_metrics():
    return MetricsResponse(**metrics.get_stats())


@router.get("/scoring", response_model=ScoringPoolStats)
def get_scoring_stats(queue: ScoringQueue = Depends(get_scoring_queue)):
    return ScoringPoolStats(**queue.stats())
