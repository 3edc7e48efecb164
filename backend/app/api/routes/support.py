"""
Support tickets — community members and health workers raise issues,
admins triage them.

    GET   /api/support                  — admins: all tickets, others: own
    POST  /api/support                  — open a ticket (category per role)
    POST  /api/support/{id}/messages    — reply on the thread (owner / admin)
    PATCH /api/support/{id}             — admins: change status

Categories by role:

    community       water, sanitation, infrastructure, health_concern, other
    health_worker   supplies, equipment, staffing, emergency, logistics
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_database
from backend.app.api.schemas import (
    SupportMessageCreate,
    SupportTicketCreate,
    SupportTicketUpdate,
)
from backend.app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from backend.app.core.security import get_current_user, is_admin, require_roles
from backend.app.storage.base import Database, Query
from backend.app.storage.entities import (
    ADMIN_ROLES,
    SUPPORT_CATEGORIES_BY_ROLE,
    Record,
    Role,
    TicketStatus,
    ensure_valid_id,
    utc_now,
)
from backend.app.storage.query import DESCENDING

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/support", tags=["support"])


def _thread_entry(sender_id: str, text: str) -> Dict[str, Any]:
    return {"senderId": sender_id, "text": text, "timestamp": utc_now().isoformat()}


def _with_owner(query: Query) -> Query:
    return query.populate("userId", "name email role")


async def _load_ticket(db: Database, ticket_id: str) -> Record:
    ensure_valid_id("Ticket", ticket_id)
    ticket = await db.support_tickets.find_by_id(ticket_id)
    if ticket is None:
        raise NotFoundError("Ticket", id=ticket_id)
    return ticket


@router.get("")
async def list_tickets(
    user: Record = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    predicate = {} if is_admin(user) else {"userId": user["id"]}
    return await _with_owner(
        db.support_tickets.find(predicate).sort("createdAt", DESCENDING)
    )


@router.post("", status_code=201)
async def open_ticket(
    body: SupportTicketCreate,
    user: Record = Depends(require_roles(Role.COMMUNITY.value, Role.HEALTH_WORKER.value)),
    db: Database = Depends(get_database),
):
    categories = SUPPORT_CATEGORIES_BY_ROLE.get(user["role"], ())
    if body.type not in categories:
        raise ValidationError(
            f"Invalid category '{body.type}' for role {user['role']}",
            field="type", allowed=list(categories),
        )

    ticket = await db.support_tickets.create({
        "userId": user["id"],
        "message": body.message,
        "type": body.type,
        "messages": [_thread_entry(user["id"], body.message)],
    })
    logger.info(
        "Support ticket %s opened (%s)", ticket["id"], body.type,
        extra={"user_id": user["id"], "entity": "SupportTicket"},
    )
    return await _with_owner(db.support_tickets.find_by_id(ticket["id"]))


@router.post("/{ticket_id}/messages")
async def reply(
    ticket_id: str,
    body: SupportMessageCreate,
    user: Record = Depends(get_current_user),
    db: Database = Depends(get_database),
):
    ticket = await _load_ticket(db, ticket_id)
    if not is_admin(user) and ticket.get("userId") != user["id"]:
        raise PermissionDeniedError("Not authorized to reply to this ticket")

    messages = list(ticket.get("messages") or [])
    messages.append(_thread_entry(user["id"], body.text))
    await db.support_tickets.find_by_id_and_update(ticket_id, {"messages": messages})
    return await _with_owner(db.support_tickets.find_by_id(ticket_id))


@router.patch("/{ticket_id}")
async def update_ticket(
    ticket_id: str,
    body: SupportTicketUpdate,
    user: Record = Depends(require_roles(*ADMIN_ROLES)),
    db: Database = Depends(get_database),
):
    await _load_ticket(db, ticket_id)
    resolved = body.status == TicketStatus.RESOLVED.value
    await db.support_tickets.find_by_id_and_update(ticket_id, {
        "status": body.status,
        "resolvedBy": user["id"] if resolved else None,
    })
    logger.info(
        "Support ticket %s → %s", ticket_id, body.status,
        extra={"user_id": user["id"], "entity": "SupportTicket"},
    )
    return await _with_owner(db.support_tickets.find_by_id(ticket_id))
