"""
Identity routes.

    POST /api/auth/register   — create an account, returns {user, token}
    POST /api/auth/login      — exchange credentials for a token
    GET  /api/auth/me         — the caller's profile
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_database
from backend.app.api.schemas import LoginRequest, RegisterRequest
from backend.app.core.config import settings
from backend.app.core.errors import AuthenticationError, ConflictError
from backend.app.core.security import (
    create_access_token,
    get_current_user,
    hash_password,
    verify_password,
)
from backend.app.storage.base import Database
from backend.app.storage.entities import Record, Role, public_user, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

# Roles a user may pick for themselves at sign-up
SELF_SERVICE_ROLES = (
    Role.COMMUNITY.value,
    Role.HEALTH_WORKER.value,
    Role.NATIONAL_ADMIN.value,
)


def _session(user: Record) -> Dict[str, Any]:
    return {
        "user": public_user(user),
        "token": create_access_token(user["id"], user["role"]),
    }


@router.post("/register", status_code=201, summary="Register a new user")
async def register(body: RegisterRequest, db: Database = Depends(get_database)):
    email = body.email.lower()
    if await db.users.find_one({"email": email}) is not None:
        raise ConflictError("User with this email already exists", field="email")

    role = body.role if body.role in SELF_SERVICE_ROLES else Role.COMMUNITY.value
    user = await db.users.create({
        "name": body.name,
        "email": email,
        "password": hash_password(body.password),
        "role": role,
        "location": body.location or settings.DEFAULT_LOCATION,
        "phoneNumber": body.phone_number or "",
    })
    logger.info(
        "Registered %s as %s", email, role, extra={"user_id": user["id"]},
    )
    return _session(user)


@router.post("/login", summary="Log in with email and password")
async def login(body: LoginRequest, db: Database = Depends(get_database)):
    user = await db.users.find_one({"email": body.email.lower()})
    if user is None or not verify_password(body.password, user.get("password", "")):
        raise AuthenticationError("Invalid credentials")

    updated = await db.users.find_by_id_and_update(user["id"], {"lastLogin": utc_now()})
    return _session(updated or user)


@router.get("/me", summary="Current user profile")
async def me(user: Record = Depends(get_current_user)):
    return public_user(user)
