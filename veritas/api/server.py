from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from veritas.config import settings
from veritas.database import Base, engine, get_db
from veritas.exceptions import (
    AuthError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    UnauthenticatedError,
    UnauthorizedError,
    UploadRejectedError,
    UserExistsError,
    VeritasError,
)
from veritas.models import analysis as _analysis_models  # noqa: F401  (table registration)
from veritas.models import blob as _blob_models  # noqa: F401
from veritas.models import user as _user_models  # noqa: F401
from veritas.schemas.analysis_schemas import (
    AnalysisOut,
    AnalysisStats,
    CreateAnalysisRequest,
    CreateAnalysisResponse,
    DeleteResponse,
    ScoreTriggerResponse,
    StoredBlobResponse,
    UploadTargetResponse,
)
from veritas.services import analysis_service
from veritas.services.blob_service import BlobStore
from veritas.services.scoring_service import ScoringQueue
from veritas.api.deps import get_blob_store, get_scoring_queue, scoring_queue
from veritas.api.security import check_rate_limit, get_current_owner_id, require_owner_id
from veritas.api.admin import router as admin_router
from veritas.api.auth import router as auth_router
from veritas.utils.logging_config import StructuredLogger, init_logging

VERSION = "0.1.0"

# Initialize structured logging
init_logging()

logger = StructuredLogger(__name__)

Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight scoring finish writing before the process exits
    scoring_queue.shutdown(wait=True)


app = FastAPI(
    title="Veritas API",
    version=VERSION,
    description="Image upload and authenticity scoring API",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Rate limit headers middleware
@app.middleware("http")
async def add_rate_limit_headers(request: Request, call_next):
    response = await call_next(request)
    if hasattr(request.state, "rate_limit_remaining"):
        response.headers["X-RateLimit-Limit"] = str(request.state.rate_limit_limit)
        response.headers["X-RateLimit-Remaining"] = str(request.state.rate_limit_remaining)
    return response


# ============== ERROR MAPPING ==============

ERROR_STATUS = [
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (UserExistsError, status.HTTP_409_CONFLICT),
    (UploadRejectedError, status.HTTP_400_BAD_REQUEST),
    (AuthError, status.HTTP_400_BAD_REQUEST),
]


@app.exception_handler(VeritasError)
async def veritas_error_handler(request: Request, exc: VeritasError):
    code = next(
        (code for exc_type, code in ERROR_STATUS if isinstance(exc, exc_type)),
        status.HTTP_409_CONFLICT,
    )
    headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
    logger.info(
        "Request rejected",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=code,
    )
    return JSONResponse(status_code=code, content={"detail": str(exc)}, headers=headers)


def public_base_url(request: Request) -> str:
    return settings.public_base_url or str(request.base_url)


app.include_router(auth_router)
app.include_router(admin_router)


@app.get("/")
def root():
    return {"message": "Veritas API is running"}


@app.get("/health")
def health():
    """Health check endpoint - no auth required."""
    return {"status": "ok"}


@app.get("/status")
def status_info(queue: ScoringQueue = Depends(get_scoring_queue)):
    """API status, configuration and scoring pool info."""
    return {
        "status": "ok",
        "version": VERSION,
        "environment": settings.environment,
        "rate_limit": {
            "requests": settings.rate_limit_requests,
            "window_seconds": settings.rate_limit_window,
        },
        "scoring": queue.stats(),
    }


# ============== ANALYSES (read-only) ==============


@app.get("/analyses", response_model=List[AnalysisOut])
def list_analyses(
    owner_id: Optional[str] = Depends(get_current_owner_id),
    db: Session = Depends(get_db),
):
    """All of the caller's analyses, newest first. Anonymous callers get []."""
    return analysis_service.list_by_owner(db, owner_id)


@app.get("/analyses/recent", response_model=List[AnalysisOut])
def recent_analyses(
    limit: int = Query(settings.recent_default_limit, ge=1, le=100),
    owner_id: Optional[str] = Depends(get_current_owner_id),
    db: Session = Depends(get_db),
):
    return analysis_service.recent_by_owner(db, owner_id, limit)


@app.get("/analyses/stats", response_model=AnalysisStats)
def analysis_stats(
    owner_id: Optional[str] = Depends(get_current_owner_id),
    db: Session = Depends(get_db),
):
    """Verdict counts; PENDING analyses are excluded."""
    return AnalysisStats(**analysis_service.stats_by_owner(db, owner_id))


# ============== ANALYSES (mutations) ==============


@app.post(
    "/analyses/upload-url",
    response_model=UploadTargetResponse,
    dependencies=[Depends(check_rate_limit)],
)
def issue_upload_url(
    request: Request,
    owner_id: str = Depends(require_owner_id),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    """Hand out a single-use URL the client posts the image bytes to."""
    target = store.issue_upload_target(db, owner_id, public_base_url(request))
    return UploadTargetResponse(
        upload_url=target.upload_url,
        token=target.token,
        expires_at=target.expires_at,
    )


@app.post(
    "/analyses",
    response_model=CreateAnalysisResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_rate_limit)],
)
def create_analysis(
    payload: CreateAnalysisRequest,
    request: Request,
    owner_id: str = Depends(require_owner_id),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    analysis_id = analysis_service.create_analysis(
        db,
        owner_id,
        payload.storage_id,
        payload.filename,
        blob_store=store,
        base_url=public_base_url(request),
    )
    return CreateAnalysisResponse(id=analysis_id)


@app.post(
    "/analyses/{analysis_id}/score",
    response_model=ScoreTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(check_rate_limit)],
)
def trigger_scoring(
    analysis_id: str,
    owner_id: str = Depends(require_owner_id),
    db: Session = Depends(get_db),
    queue: ScoringQueue = Depends(get_scoring_queue),
):
    """
    Queue scoring for an owned analysis and return immediately.
    The verdict shows up later through the listing endpoints.
    """
    analysis = analysis_service.get_owned_analysis(db, analysis_id, owner_id)
    if not analysis.is_pending:
        raise ConflictError(f"Analysis {analysis_id} already has a verdict")
    queue.submit(analysis_id)
    return ScoreTriggerResponse(id=analysis_id)


@app.delete(
    "/analyses/{analysis_id}",
    response_model=DeleteResponse,
    dependencies=[Depends(check_rate_limit)],
)
def delete_analysis(
    analysis_id: str,
    owner_id: str = Depends(require_owner_id),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    analysis_service.delete_analysis(db, analysis_id, owner_id, blob_store=store)
    return DeleteResponse(deleted=analysis_id)


# ============== BLOB STORAGE ==============


@app.post(
    "/storage/upload/{token}",
    response_model=StoredBlobResponse,
    dependencies=[Depends(check_rate_limit)],
)
def upload_blob(
    token: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    """Receive image bytes for an issued upload target. The token is the credential."""
    storage_id = store.store(db, token, file.file, file.content_type, filename=file.filename)
    return StoredBlobResponse(storage_id=storage_id)


@app.get("/storage/{storage_id}")
def download_blob(
    storage_id: str,
    db: Session = Depends(get_db),
    store: BlobStore = Depends(get_blob_store),
):
    blob = store.get(db, storage_id)
    if blob is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Blob not found")
    return FileResponse(
        store.path_for(db, storage_id),
        media_type=blob.content_type,
        filename=blob.filename or storage_id,
    )
