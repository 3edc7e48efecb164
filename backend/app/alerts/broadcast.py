"""
broadcast.py — Recipient resolution and email fan-out for approved alerts.

═══════════════════════════════════════════════════════════════════════════
BROADCAST FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Audience        │  affected_area / district → users whose location
    │     Filter          │  contains the alert location (case-insensitive)
    └─────────┬───────────┘  all → every user
              ▼
    ┌─────────────────────┐
    │  2. Users           │  valid emails join the set, roles tallied
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  3. Manual Emails   │  valid ones join the set
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  4. Contact Groups  │  targetGroups resolved by id, valid contacts join
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  5. Dispatch        │  only when "email" is a selected channel:
    │                     │  one send per unique address, concurrently
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  6. Summary         │  BroadcastSummary, persisted by the caller
    └─────────────────────┘

Delivery is best-effort: a failing address is logged and counted in
``delivery.failed``; it never aborts the broadcast or the HTTP request.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from backend.app.alerts.channels import email_alert
from backend.app.alerts.models import (
    LOCATION_AUDIENCES,
    AlertChannel,
    BroadcastSummary,
    DeliveryAttempt,
    DeliveryStatus,
    RecipientTypeCount,
)
from backend.app.storage.base import Database
from backend.app.storage.entities import is_valid_id
from backend.app.storage.query import OneOf, Pattern, Predicate

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")

# (alert, address) → DeliveryAttempt
EmailSender = Callable[[Mapping[str, Any], str], Awaitable[DeliveryAttempt]]


def clean_email(value: Any) -> Optional[str]:
    """Trimmed address if it looks deliverable, else None."""
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if candidate and EMAIL_RE.match(candidate):
        return candidate
    return None


def audience_predicate(audience: Optional[str], location: str) -> Predicate:
    """User filter for an audience selector."""
    if audience in LOCATION_AUDIENCES and location:
        return {"location": Pattern.contains(location, ignore_case=True)}
    return {}


@dataclass
class RecipientSet:
    """Insertion-ordered, de-duplicated email addresses plus source counts."""
    addresses: Dict[str, None] = field(default_factory=dict)
    users: int = 0
    roles: RecipientTypeCount = field(default_factory=RecipientTypeCount)
    manual_emails: int = 0
    manual_phones: int = 0
    group_contacts: int = 0

    def add(self, value: Any) -> None:
        address = clean_email(value)
        if address is not None:
            self.addresses.setdefault(address, None)

    def add_all(self, values: Iterable[Any]) -> None:
        for value in values:
            self.add(value)

    @property
    def unique(self) -> List[str]:
        return list(self.addresses)

    @property
    def total(self) -> int:
        return self.users + self.manual_emails + self.group_contacts


async def resolve_recipients(
    db: Database,
    alert: Mapping[str, Any],
    audience: Optional[str],
) -> RecipientSet:
    """Steps 1–4: gather and de-duplicate every email recipient."""
    recipients = RecipientSet()

    users = await db.users.find(
        audience_predicate(audience, alert.get("location") or "")
    ).select("email role")
    recipients.users = len(users)
    for user in users:
        recipients.add(user.get("email"))
        recipients.roles.add(user.get("role"))

    manual_emails = list(alert.get("manualEmails") or [])
    recipients.manual_emails = len(manual_emails)
    recipients.add_all(manual_emails)

    recipients.manual_phones = len(alert.get("manualPhoneNumbers") or [])

    # targetGroups may arrive populated (dicts) or as plain ids
    group_ids = [
        g.get("id") if isinstance(g, Mapping) else g
        for g in (alert.get("targetGroups") or [])
    ]
    group_ids = [g for g in group_ids if is_valid_id(g)]
    if group_ids:
        groups = await db.contact_groups.find({"id": OneOf(group_ids)})
        for group in groups:
            contacts = group.get("contacts") or []
            recipients.group_contacts += len(contacts)
            recipients.add_all(contacts)

    return recipients


async def _safe_send(
    sender: EmailSender,
    alert: Mapping[str, Any],
    address: str,
) -> DeliveryAttempt:
    try:
        return await sender(alert, address)
    except Exception as exc:  # one bad address must not sink the broadcast
        logger.error(
            "Email to %s failed: %s", address, exc,
            extra={"alert_id": alert.get("id"), "channel": AlertChannel.EMAIL.value},
        )
        return DeliveryAttempt(
            channel=AlertChannel.EMAIL,
            recipient=address,
            status=DeliveryStatus.FAILED,
            error_message=str(exc),
        )


async def dispatch_emails(
    alert: Mapping[str, Any],
    addresses: Sequence[str],
    sender: Optional[EmailSender] = None,
) -> List[DeliveryAttempt]:
    """Send to every address concurrently; one attempt per address."""
    sender = sender or email_alert.send
    if not addresses:
        return []
    return list(
        await asyncio.gather(*(_safe_send(sender, alert, a) for a in addresses))
    )


async def broadcast_alert(
    db: Database,
    alert: Mapping[str, Any],
    *,
    channels: Sequence[str],
    audience: Optional[str],
    sender: Optional[EmailSender] = None,
) -> BroadcastSummary:
    """
    Resolve recipients for *alert* and deliver it over the selected channels.

    Parameters
    ----------
    db : Database
    alert : mapping
        The approved alert record.
    channels : sequence of str
        Selected channels; only ``"email"`` triggers sending.
    audience : str, optional
        ``affected_area`` | ``district`` | ``all``.
    sender : callable, optional
        Email transport; defaults to ``email_alert.send``.

    Returns
    -------
    BroadcastSummary
    """
    start = time.perf_counter()
    alert_id = alert.get("id")
    logger.info(
        "Broadcasting alert %s for %s (audience=%s, channels=%s)",
        alert_id, alert.get("location"), audience, list(channels),
        extra={"alert_id": alert_id},
    )

    recipients = await resolve_recipients(db, alert, audience)
    summary = BroadcastSummary(
        total_sent=recipients.total,
        recipient_type_count=recipients.roles,
        manual_phones=recipients.manual_phones,
        manual_emails=recipients.manual_emails,
        group_recipients=recipients.group_contacts,
        unique_recipients=len(recipients.addresses),
    )

    if AlertChannel.EMAIL.value in channels and recipients.addresses:
        summary.attempts = await dispatch_emails(alert, recipients.unique, sender)

    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "Broadcast %s complete: %d unique recipients, %d delivered, %d failed (%.0fms)",
        alert_id, summary.unique_recipients, summary.delivered, summary.failed,
        duration_ms,
        extra={
            "alert_id": alert_id,
            "recipient_count": summary.unique_recipients,
            "duration_ms": duration_ms,
        },
    )
    return summary
