"""
User directory (admins only).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_database
from backend.app.core.security import require_roles
from backend.app.storage.base import Database
from backend.app.storage.entities import ADMIN_ROLES, public_user

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", dependencies=[Depends(require_roles(*ADMIN_ROLES))])
async def list_users(db: Database = Depends(get_database)):
    users = await db.users.find().select("-password")
    return [public_user(u) for u in users]
