# @TASK P4-T4.1 - JWT token issue/verify service
# @TEST tests/test_auth_service.py

"""JWT authentication for the document search API.

Tokens are issued elsewhere; this service only needs to verify them and
pull out the owner identity. ``create_access_token`` exists for tooling
and tests that need a valid bearer token.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

# No login endpoint here; missing credentials are rejected in get_current_user
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    data: dict,
    expires_delta: timedelta | None = None,
    *,
    settings: Settings | None = None,
) -> str:
    """Create a JWT access token.

    Args:
        data: Claims to encode in the token (``sub`` and ``user_id``).
        expires_delta: Custom expiration timedelta. Falls back to config default.
        settings: Optional settings override (useful for testing).

    Returns:
        Encoded JWT string.
    """
    if settings is None:
        settings = get_settings()

    to_encode = {key: str(value) if isinstance(value, uuid.UUID) else value for key, value in data.items()}
    expire = datetime.now(UTC) + (
        expires_delta
        if expires_delta is not None
        else timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(
    token: str,
    *,
    settings: Settings | None = None,
) -> dict:
    """Decode and verify a JWT token.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    if settings is None:
        settings = get_settings()

    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),  # noqa: B008
) -> dict:
    """FastAPI dependency that extracts the current user from a Bearer token.

    Returns a dict with:
    - username: the ``sub`` claim
    - user_id: owner UUID used to scope every document query
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = verify_token(credentials.credentials)
    except JWTError:
        raise credentials_exception from None

    if payload.get("type") != "access":
        raise credentials_exception

    username: str | None = payload.get("sub")
    raw_user_id = payload.get("user_id")
    if username is None or raw_user_id is None:
        raise credentials_exception

    try:
        user_id = uuid.UUID(str(raw_user_id))
    except ValueError:
        logger.warning("Rejected token with malformed user_id claim for %s", username)
        raise credentials_exception from None

    return {"username": username, "user_id": user_id}
