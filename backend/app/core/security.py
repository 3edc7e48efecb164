"""
Authentication — password hashing, bearer tokens and role guards.

    hash_password / verify_password     bcrypt
    create_access_token / decode_token  HS256 JWT (sub, role, exp)
    get_current_user                    FastAPI dependency → user record
    require_roles(*roles)               dependency factory → 403 on mismatch

Usage:
    @router.get("/users", dependencies=[Depends(require_roles("admin"))])
    async def list_users(...): ...

    @router.post("/reports")
    async def create_report(user: Record = Depends(require_roles(*STAFF_ROLES))):
        ...
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from backend.app.core.config import settings
from backend.app.core.database import get_database
from backend.app.core.errors import AuthenticationError, PermissionDeniedError
from backend.app.core.logging_config import update_request_context
from backend.app.storage.base import Database
from backend.app.storage.entities import ADMIN_ROLES, Record, Role, is_valid_id

logger = logging.getLogger(__name__)

# auto_error=False so a missing header reaches our own 401 shape
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), hashed_password.encode("utf-8"),
        )
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def create_access_token(
    user_id: str,
    role: str,
    *,
    expires_in: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT carrying the user id and role."""
    expire = datetime.now(timezone.utc) + (
        expires_in or timedelta(hours=settings.JWT_EXPIRE_HOURS)
    )
    claims = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate a JWT (signature and expiry); None when invalid."""
    try:
        return jwt.decode(
            token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_database),
) -> Record:
    """
    Dependency resolving the caller from the bearer token.

    The user is re-loaded from storage on every request so deleted accounts
    and role changes take effect immediately.
    """
    if credentials is None:
        raise AuthenticationError("Access denied. No token provided.")

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    if not is_valid_id(user_id):
        raise AuthenticationError("Invalid or expired token")

    user = await db.users.find_by_id(user_id)
    if user is None:
        raise AuthenticationError("User no longer exists")

    # read back by RequestLoggingMiddleware
    request.state.user_id = user_id
    update_request_context(user_id=user_id)
    return user


def require_roles(*roles: str) -> Callable[..., Any]:
    """Dependency factory: authenticated caller whose role is in *roles*."""
    allowed = frozenset(Role(r).value for r in roles)

    async def dependency(user: Record = Depends(get_current_user)) -> Record:
        if user.get("role") not in allowed:
            logger.warning(
                "Role %s denied (requires one of %s)",
                user.get("role"), sorted(allowed),
                extra={"user_id": user.get("id")},
            )
            raise PermissionDeniedError(
                "Access denied. Insufficient permissions.",
                required=sorted(allowed),
            )
        return user

    return dependency


def is_admin(user: Record) -> bool:
    return user.get("role") in ADMIN_ROLES
