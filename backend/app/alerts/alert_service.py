"""
alert_service.py — Alert lifecycle orchestration.

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

                 created by admin
    ┌──────────────────────────────────────────────┐
    │                                              ▼
    │   created by health worker           ┌──────────────┐
    └──────────────► pending ──approve────►│   approved   │──► broadcast
                        │                  └──────────────┘    (if channels)
                        │ creator cancels          │
                        ▼                          ▼
                     deleted            isActive false → resolvedAt set
                                        isActive true  → resolvedAt cleared

    • Only admins approve, and only alerts still pending.
    • Alerts created by health workers never carry channels; the approving
      admin chooses channels, audience and manual recipients.
    • Admins may delete any alert; a creator may delete only their own
      pending alert.

Broadcast failures are contained here: the alert is already stored, so a
resolution or dispatch error leaves it without a summary rather than
failing the request.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from backend.app.alerts.auto_alerts import derive_auto_alerts
from backend.app.alerts.broadcast import EmailSender, broadcast_alert
from backend.app.alerts.models import AudienceSelector
from backend.app.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from backend.app.storage.base import Database, Query
from backend.app.storage.entities import (
    ADMIN_ROLES,
    AlertStatus,
    Record,
    Role,
    ensure_valid_id,
    is_valid_id,
    utc_now,
)
from backend.app.storage.query import DESCENDING

logger = logging.getLogger(__name__)

DEFAULT_AUDIENCE = AudienceSelector.AFFECTED_AREA.value


def _with_people(query: Query) -> Query:
    return query.populate("createdBy", "name email").populate("approvedBy", "name")


def _is_admin(user: Record) -> bool:
    return user.get("role") in ADMIN_ROLES


def _group_ids(target_groups: Optional[Sequence[str]]) -> List[str]:
    ids = list(target_groups or [])
    for value in ids:
        if not is_valid_id(value):
            raise ValidationError(
                f"Invalid contact group id: {value}", field="targetGroups",
            )
    return ids


async def _broadcast_and_record(
    db: Database,
    alert: Record,
    *,
    channels: Sequence[str],
    audience: Optional[str],
    sender: Optional[EmailSender],
) -> Optional[Dict[str, Any]]:
    """Broadcast *alert* and persist its summary; None if the broadcast failed."""
    try:
        summary = await broadcast_alert(
            db, alert, channels=channels, audience=audience, sender=sender,
        )
    except Exception:
        logger.exception(
            "Broadcast failed for alert %s; alert kept without summary",
            alert.get("id"), extra={"alert_id": alert.get("id")},
        )
        return None

    summary_dict = summary.to_dict()
    await db.alerts.find_by_id_and_update(alert["id"], {"broadcastSummary": summary_dict})
    return summary_dict


async def list_alerts(db: Database, user: Record) -> List[Record]:
    """Active alerts for *user*; staff also see system-derived alerts."""
    predicate: Dict[str, Any] = {"isActive": True}
    community = user.get("role") == Role.COMMUNITY.value
    if community:
        predicate["status"] = AlertStatus.APPROVED.value

    alerts = await _with_people(db.alerts.find(predicate).sort("createdAt", DESCENDING))
    if not community:
        alerts.extend(await derive_auto_alerts(db))
    return alerts


async def create_alert(
    db: Database,
    user: Record,
    *,
    location: str,
    level: str,
    message: str,
    channels: Sequence[str] = (),
    target_audience: Optional[str] = None,
    manual_phone_numbers: Sequence[str] = (),
    manual_emails: Sequence[str] = (),
    target_groups: Sequence[str] = (),
    sender: Optional[EmailSender] = None,
) -> Record:
    admin = _is_admin(user)
    alert_audience = target_audience or DEFAULT_AUDIENCE
    fields: Dict[str, Any] = {
        "location": location,
        "level": level,
        "message": message,
        "createdBy": user["id"],
        "status": AlertStatus.APPROVED.value if admin else AlertStatus.PENDING.value,
        "channels": list(channels) if admin else [],
        "targetAudience": alert_audience,
        "manualPhoneNumbers": list(manual_phone_numbers),
        "manualEmails": list(manual_emails),
        "targetGroups": _group_ids(target_groups),
    }
    if admin:
        fields["approvedBy"] = user["id"]
        fields["approvedAt"] = utc_now()

    created = await db.alerts.create(fields)
    logger.info(
        "Alert %s created for %s (%s, %s)",
        created["id"], location, level, fields["status"],
        extra={"alert_id": created["id"], "user_id": user["id"]},
    )

    alert = await _with_people(db.alerts.find_by_id(created["id"]))
    if admin and channels:
        summary = await _broadcast_and_record(
            db, created,
            channels=channels, audience=alert_audience, sender=sender,
        )
        if summary is not None:
            alert["broadcastSummary"] = summary
    return alert


async def approve_alert(
    db: Database,
    alert_id: str,
    approver: Record,
    *,
    channels: Sequence[str] = (),
    target_audience: Optional[str] = None,
    manual_phone_numbers: Sequence[str] = (),
    manual_emails: Sequence[str] = (),
    target_groups: Sequence[str] = (),
    sender: Optional[EmailSender] = None,
) -> Record:
    ensure_valid_id("Alert", alert_id)
    alert_audience = target_audience or DEFAULT_AUDIENCE
    existing = await db.alerts.find_by_id(alert_id)
    if existing is None:
        raise NotFoundError("Alert", id=alert_id)
    if existing.get("status") != AlertStatus.PENDING.value:
        raise ValidationError(
            f"Only pending alerts can be approved (status is {existing.get('status')})",
            field="status",
        )

    updated = await db.alerts.find_by_id_and_update(alert_id, {
        "status": AlertStatus.APPROVED.value,
        "approvedBy": approver["id"],
        "approvedAt": utc_now(),
        "channels": list(channels),
        "targetAudience": alert_audience,
        "manualPhoneNumbers": list(manual_phone_numbers),
        "manualEmails": list(manual_emails),
        "targetGroups": _group_ids(target_groups),
    })
    if updated is None:
        raise NotFoundError("Alert", id=alert_id)
    logger.info(
        "Alert %s approved", alert_id,
        extra={"alert_id": alert_id, "user_id": approver["id"]},
    )

    alert = await _with_people(db.alerts.find_by_id(alert_id))
    if channels:
        summary = await _broadcast_and_record(
            db, updated,
            channels=channels, audience=alert_audience, sender=sender,
        )
        if summary is not None:
            alert["broadcastSummary"] = summary
    return alert


async def set_alert_active(db: Database, alert_id: str, is_active: bool) -> Record:
    ensure_valid_id("Alert", alert_id)
    updated = await db.alerts.find_by_id_and_update(alert_id, {
        "isActive": is_active,
        "resolvedAt": None if is_active else utc_now(),
    })
    if updated is None:
        raise NotFoundError("Alert", id=alert_id)
    return await db.alerts.find_by_id(alert_id).populate("createdBy", "name email")


async def delete_alert(db: Database, alert_id: str, user: Record) -> None:
    ensure_valid_id("Alert", alert_id)
    alert = await db.alerts.find_by_id(alert_id)
    if alert is None:
        raise NotFoundError("Alert", id=alert_id)

    if not _is_admin(user):
        if alert.get("createdBy") != user["id"]:
            raise PermissionDeniedError("Not authorized to delete this alert")
        if alert.get("status") != AlertStatus.PENDING.value:
            raise PermissionDeniedError(
                "Cannot cancel an alert that is already approved or active",
            )

    await db.alerts.find_by_id_and_delete(alert_id)
    logger.info(
        "Alert %s deleted", alert_id,
        extra={"alert_id": alert_id, "user_id": user["id"]},
    )
