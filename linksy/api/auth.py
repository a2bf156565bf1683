"""
Linksy JWT Authentication

Validates bearer tokens issued by the Linksy dashboard and provides the
FastAPI dependency guarding the index-maintenance endpoints.

Usage:
    @router.post("/admin/needs/reindex")
    async def reindex(user: dict = Depends(get_current_admin_user)):
        ...
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from linksy.config import settings

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)

# Roles allowed to run index maintenance
ADMIN_ROLES = frozenset({"admin", "site_admin"})


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """
    Decode and verify the bearer token.

    Returns:
        Decoded token payload.

    Raises:
        HTTPException(401): Missing, malformed, expired, or subject-less token.
    """
    if not credentials:
        logger.warning("auth_missing_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as exc:
        logger.warning("auth_invalid_token", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing subject",
        )
    return payload


async def get_current_admin_user(
    payload: dict = Depends(get_current_user),
) -> dict:
    """Require an admin or site admin role on top of a valid token."""
    role = payload.get("role", "")
    if role not in ADMIN_ROLES:
        logger.warning("auth_insufficient_permissions", user_id=payload.get("sub"), role=role)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )

    logger.info("auth_admin_access_granted", user_id=payload.get("sub"))
    return payload


def create_access_token(
    user_id: str,
    role: str = "user",
    expires_delta_minutes: int = 60,
) -> str:
    """
    Issue a signed token. Used by tests and local tooling; production tokens
    come from the dashboard's auth service.
    """
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_delta_minutes)
    return jwt.encode(
        {"sub": user_id, "role": role, "exp": expire},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
