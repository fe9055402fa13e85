"""
Sign-up / sign-in endpoints for the local auth provider.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from veritas.api.security import check_rate_limit, get_bearer_token, require_owner_id
from veritas.database import get_db
from veritas.exceptions import NotFoundError
from veritas.schemas.analysis_schemas import AuthResponse, CredentialsRequest, MeResponse
from veritas.services import auth_service


router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    dependencies=[Depends(check_rate_limit)],
)


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def sign_up(credentials: CredentialsRequest, db: Session = Depends(get_db)):
    user, session = auth_service.sign_up(db, credentials.email, credentials.password)
    return AuthResponse(token=session.token, user_id=user.id, email=user.email)


@router.post("/signin", response_model=AuthResponse)
def sign_in(credentials: CredentialsRequest, db: Session = Depends(get_db)):
    user, session = auth_service.sign_in(db, credentials.email, credentials.password)
    return AuthResponse(token=session.token, user_id=user.id, email=user.email)


@router.post("/signout")
def sign_out(
    token: Optional[str] = Depends(get_bearer_token),
    db: Session = Depends(get_db),
):
    auth_service.sign_out(db, token)
    return {"status": "signed_out"}


@router.get("/me", response_model=MeResponse)
def me(owner_id: str = Depends(require_owner_id), db: Session = Depends(get_db)):
    user = auth_service.get_user(db, owner_id)
    if user is None:
        raise NotFoundError("User not found")
    return MeResponse(user_id=user.id, email=user.email)
