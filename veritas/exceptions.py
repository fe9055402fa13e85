"""
Error taxonomy shared by the services and mapped to HTTP codes by the API.
"""


class VeritasError(Exception):
    """Base error for Veritas services."""


class UnauthenticatedError(VeritasError):
    """No caller identity on a mutating operation."""


class UnauthorizedError(VeritasError):
    """Caller does not own the target record."""


class NotFoundError(VeritasError):
    """Missing record or blob."""


class UploadRejectedError(VeritasError):
    """Upload refused: wrong content type, bad size or unusable upload token."""


class AuthError(VeritasError):
    """Base authentication error."""


class UserExistsError(AuthError):
    """User with this email already exists."""


class WeakPasswordError(AuthError):
    """Password doesn't meet strength requirements."""


class InvalidCredentialsError(AuthError):
    """Invalid email or password."""


class ConflictError(VeritasError):
    """Operation clashes with the record's current state."""
