"""
Request authentication and rate limiting dependencies.
"""

import logging
import threading
import time
from collections import defaultdict
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from veritas.config import settings
from veritas.database import get_db
from veritas.services.auth_service import authenticate_token
from veritas.utils.logging_config import owner_id_var

logger = logging.getLogger(__name__)


def get_bearer_token(
    authorization: Optional[str] = Header(None, alias=settings.session_header),
) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_owner_id(
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
) -> Optional[str]:
    """
    Resolve the caller to an owner id.

    Anonymous or expired callers get None rather than an error, so read-only
    endpoints can answer with empty results.
    """
    owner_id = authenticate_token(db, token)
    if owner_id:
        owner_id_var.set(owner_id)
    return owner_id


async def require_owner_id(
    request: Request,
    owner_id: Optional[str] = Depends(get_current_owner_id),
) -> str:
    if not owner_id:
        client = request.client.host if request.client else "unknown"
        logger.info(f"Unauthenticated request to {request.url.path} from {client}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return owner_id


async def verify_api_token(
    request: Request,
    api_key: Optional[str] = Header(None, alias=settings.api_token_header),
):
    """
    Verify the admin API key.

    In development mode (no key configured), this is bypassed.
    """
    if not settings.api_token:
        if settings.is_production:
            logger.warning("Admin API token not configured in production mode!")
        return None

    client = request.client.host if request.client else "unknown"
    if not api_key:
        logger.warning(f"Missing API key from {client}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Provide {settings.api_token_header} header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key != settings.api_token:
        logger.warning(f"Invalid API key attempt from {client}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key


class RateLimiter:
    """
    Sliding-window in-memory rate limiter keyed by client.
    Per-process only; several server workers each keep their own window.
    """

    def __init__(self):
        self._requests: dict = defaultdict(list)
        self._lock = threading.Lock()

    def _clean_old_requests(self, key: str, window: int, now: float):
        self._requests[key] = [ts for ts in self._requests[key] if now - ts < window]

    def is_allowed(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """
        Record a request and report whether it fits in the window.

        Returns:
            (allowed, remaining)
        """
        now = time.time()
        with self._lock:
            self._clean_old_requests(key, window, now)
            current_count = len(self._requests[key])
            if current_count >= limit:
                return False, 0
            self._requests[key].append(now)
            return True, limit - current_count - 1

    def get_retry_after(self, key: str, window: int) -> int:
        """Seconds until the oldest request leaves the window."""
        with self._lock:
            if not self._requests[key]:
                return 0
            oldest = min(self._requests[key])
        return max(0, int(window - (time.time() - oldest)))

    def reset(self):
        with self._lock:
            self._requests.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()


async def check_rate_limit(request: Request):
    """Limit mutating requests per client IP."""
    if not settings.rate_limit_requests:
        return  # Rate limiting disabled

    client_ip = request.client.host if request.client else "unknown"
    allowed, remaining = rate_limiter.is_allowed(
        key=client_ip,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
    )

    request.state.rate_limit_remaining = remaining
    request.state.rate_limit_limit = settings.rate_limit_requests

    if not allowed:
        retry_after = rate_limiter.get_retry_after(client_ip, settings.rate_limit_window)
        logger.warning(f"Rate limit exceeded for {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(settings.rate_limit_requests),
                "X-RateLimit-Remaining": "0",
            },
        )
