"""
Local auth provider.

Handles:
- Password sign-up and sign-in (bcrypt hashes)
- Opaque bearer session tokens
- Resolving a token to an owner id
"""

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

import bcrypt
from sqlalchemy.orm import Session

from veritas.config import settings
from veritas.exceptions import InvalidCredentialsError, UserExistsError, WeakPasswordError
from veritas.models.user import AuthSession, User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password cannot be empty")
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError as e:
        logger.warning(f"Password verification error: {e}")
        return False


def check_password_strength(password: str) -> Tuple[bool, str]:
    """
    Minimum length from settings, at least one letter and one digit.

    Returns:
        (is_valid, error_message)
    """
    if not password:
        return False, "Password cannot be empty"
    if len(password) < settings.password_min_length:
        return False, f"Password must be at least {settings.password_min_length} characters"
    if not any(c.isalpha() for c in password):
        return False, "Password must contain at least one letter"
    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one digit"
    return True, ""


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _open_session(db: Session, user: User) -> AuthSession:
    now = datetime.utcnow()
    session = AuthSession(
        token=secrets.token_urlsafe(32),
        user_id=user.id,
        created_at=now,
        expires_at=now + timedelta(seconds=settings.session_ttl),
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def sign_up(db: Session, email: str, password: str) -> Tuple[User, AuthSession]:
    """
    Create an account and log it in.

    Raises:
        WeakPasswordError: password doesn't meet requirements
        UserExistsError: email already registered
    """
    ok, message = check_password_strength(password)
    if not ok:
        raise WeakPasswordError(message)

    email = normalize_email(email)
    if db.query(User).filter(User.email == email).first():
        raise UserExistsError(f"User with email {email} already exists")

    user = User(email=email, password_hash=hash_password(password))
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"User created: {user.id}")
    return user, _open_session(db, user)


def sign_in(db: Session, email: str, password: str) -> Tuple[User, AuthSession]:
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if user is None or not verify_password(password, user.password_hash):
        raise InvalidCredentialsError("Invalid email or password")
    return user, _open_session(db, user)


def sign_out(db: Session, token: Optional[str]) -> None:
    if not token:
        return
    session = db.get(AuthSession, token)
    if session is not None:
        db.delete(session)
        db.commit()


def authenticate_token(db: Session, token: Optional[str]) -> Optional[str]:
    """Owner id for a live session token, else None. Expired sessions are dropped."""
    if not token:
        return None
    session = db.get(AuthSession, token)
    if session is None:
        return None
    if session.is_expired(datetime.utcnow()):
        db.delete(session)
        db.commit()
        return None
    return session.user_id


def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)
