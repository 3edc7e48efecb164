"""
Contact groups — reusable recipient lists for alert broadcasts.

Admins see and delete every group; health workers only their own.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_database
from backend.app.api.schemas import ContactGroupCreate
from backend.app.core.errors import NotFoundError, PermissionDeniedError
from backend.app.core.security import is_admin, require_roles
from backend.app.storage.base import Database
from backend.app.storage.entities import STAFF_ROLES, Record, ensure_valid_id
from backend.app.storage.query import DESCENDING

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contacts", tags=["contacts"])

staff = require_roles(*STAFF_ROLES)


@router.get("")
async def list_groups(
    user: Record = Depends(staff),
    db: Database = Depends(get_database),
):
    predicate = {} if is_admin(user) else {"createdBy": user["id"]}
    return await db.contact_groups.find(predicate).sort("createdAt", DESCENDING)


@router.post("", status_code=201)
async def create_group(
    body: ContactGroupCreate,
    user: Record = Depends(staff),
    db: Database = Depends(get_database),
):
    group = await db.contact_groups.create({
        "name": body.name,
        "type": body.type,
        "contacts": body.contacts,
        "description": body.description,
        "createdBy": user["id"],
    })
    logger.info(
        "Contact group %s created with %d contacts", group["id"], len(body.contacts),
        extra={"user_id": user["id"], "entity": "ContactGroup"},
    )
    return group


@router.delete("/{group_id}")
async def delete_group(
    group_id: str,
    user: Record = Depends(staff),
    db: Database = Depends(get_database),
):
    ensure_valid_id("Group", group_id)
    group = await db.contact_groups.find_by_id(group_id)
    if group is None:
        raise NotFoundError("Group", id=group_id)
    if not is_admin(user) and group.get("createdBy") != user["id"]:
        raise PermissionDeniedError("Not authorized to delete this group")

    await db.contact_groups.find_by_id_and_delete(group_id)
    return {"message": "Group deleted successfully"}
