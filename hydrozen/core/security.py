"""
security.py — Bearer token verification.

Tokens are issued by the external auth provider (registration, login and
sessions are not handled here). The core only needs the user id in the
`sub` claim, so this module decodes and validates the JWT with python-jose.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from hydrozen.core.config import settings

# Reusable bearer extractor (does NOT auto-raise on missing token)
_bearer = HTTPBearer(auto_error=False)
CredDep = Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)]


def decode_access_token(token: str) -> Optional[str]:
    """
    Decode and validate a JWT.

    Returns the *sub* claim (user ID) on success, or None if the token
    is expired, tampered with, or otherwise invalid.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
        return payload.get("sub")
    except JWTError:
        return None


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for *subject*. Used by tests and local tooling."""
    expire = datetime.now(tz=timezone.utc) + (expires_delta or timedelta(hours=1))
    return jwt.encode(
        {"sub": subject, "exp": expire},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


async def _current_user_id(credentials: CredDep) -> str:
    """Raise 401 unless a valid bearer token is present."""
    cred_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not credentials:
        raise cred_error

    user_id = decode_access_token(credentials.credentials)
    if not user_id:
        raise cred_error
    return user_id


CurrentUserId = Annotated[str, Depends(_current_user_id)]
