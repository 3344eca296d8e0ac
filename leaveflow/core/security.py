"""Bearer token helpers.

Tokens are issued by the identity provider; the workflow only needs to read
the identity id back out of them.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from leaveflow.core.config import get_settings


def create_access_token(identity_id: UUID, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT for an identity."""
    settings = get_settings()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    payload = {"sub": str(identity_id), "role": role, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Optional[UUID]:
    """Return the identity id of a valid token, None otherwise."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    try:
        return UUID(subject)
    except ValueError:
        return None
