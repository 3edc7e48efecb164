"""
Alert routes — thin HTTP layer over ``alerts.alert_service``.

    GET    /api/alerts                 — active alerts (+ system-derived for staff)
    POST   /api/alerts                 — create (admins: approved + broadcast)
    PATCH  /api/alerts/{id}/approve    — admin approval, triggers broadcast
    PATCH  /api/alerts/{id}            — toggle active / resolved
    DELETE /api/alerts/{id}            — admin, or creator of a pending alert
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from backend.app.alerts import alert_service
from backend.app.alerts.broadcast import EmailSender
from backend.app.api.deps import get_database, get_email_sender
from backend.app.api.schemas import AlertActiveUpdate, AlertCreate, DeliveryOptions
from backend.app.core.security import require_roles
from backend.app.storage.base import Database
from backend.app.storage.entities import ADMIN_ROLES, ALL_ROLES, STAFF_ROLES, Record

router = APIRouter(prefix="/api/alerts", tags=["alerts"])

staff = require_roles(*STAFF_ROLES)


@router.get("")
async def list_alerts(
    user: Record = Depends(require_roles(*ALL_ROLES)),
    db: Database = Depends(get_database),
):
    return await alert_service.list_alerts(db, user)


@router.post("", status_code=201)
async def create_alert(
    body: AlertCreate,
    user: Record = Depends(staff),
    db: Database = Depends(get_database),
    sender: Optional[EmailSender] = Depends(get_email_sender),
):
    return await alert_service.create_alert(
        db, user,
        location=body.location,
        level=body.level,
        message=body.message,
        sender=sender,
        **body.as_kwargs(),
    )


@router.patch("/{alert_id}/approve")
async def approve_alert(
    alert_id: str,
    body: Optional[DeliveryOptions] = None,
    user: Record = Depends(require_roles(*ADMIN_ROLES)),
    db: Database = Depends(get_database),
    sender: Optional[EmailSender] = Depends(get_email_sender),
):
    options = body or DeliveryOptions()
    return await alert_service.approve_alert(
        db, alert_id, user, sender=sender, **options.as_kwargs(),
    )


@router.patch("/{alert_id}")
async def update_alert_status(
    alert_id: str,
    body: AlertActiveUpdate,
    user: Record = Depends(staff),
    db: Database = Depends(get_database),
):
    return await alert_service.set_alert_active(db, alert_id, body.is_active)


@router.delete("/{alert_id}")
async def delete_alert(
    alert_id: str,
    user: Record = Depends(staff),
    db: Database = Depends(get_database),
):
    await alert_service.delete_alert(db, alert_id, user)
    return {"message": "Alert deleted successfully"}
