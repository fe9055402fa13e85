from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any


class SubScores(BaseModel):
    """Six sub-scores (0-100) behind a verdict."""
    artifact_score: float
    pattern_consistency: float
    noise_analysis: float
    color_distribution: float
    edge_coherence: float
    metadata_score: float


class AnalysisOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    image_url: str
    storage_id: Optional[str] = None
    filename: str
    verdict: str  # PENDING | AUTHENTIC | AI_GENERATED
    confidence: float
    analysis_details: Optional[SubScores] = None  # absent while PENDING
    created_at: datetime


class AnalysisStats(BaseModel):
    """Counts over terminal records only."""
    total: int = 0
    authentic: int = 0
    ai_generated: int = 0


class CreateAnalysisRequest(BaseModel):
    storage_id: str
    filename: str = Field(..., min_length=1, max_length=255)


class CreateAnalysisResponse(BaseModel):
    id: str


class ScoreTriggerResponse(BaseModel):
    id: str
    status: str = "queued"


class DeleteResponse(BaseModel):
    deleted: str


class UploadTargetResponse(BaseModel):
    upload_url: str
    token: str
    expires_at: datetime


class StoredBlobResponse(BaseModel):
    storage_id: str


class CredentialsRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    token: str
    user_id: str
    email: str


class MeResponse(BaseModel):
    user_id: str
    email: str


class ScoringPoolStats(BaseModel):
    in_flight: int
    submitted: int
    completed: int
    failed: int
    max_workers: int


class MetricsResponse(BaseModel):
    uptime_seconds: float
    counters: Dict[str, int]
    gauges: Dict[str, float]
    timings: Dict[str, Any]
