"""
models.py — Data structures for alert broadcasting.

Defines:
    • AlertChannel      — delivery channel enum
    • AudienceSelector  — who receives an approved alert
    • DeliveryStatus    — per-recipient delivery outcome
    • DeliveryAttempt   — single send attempt record
    • RecipientTypeCount — matched users tallied by role
    • BroadcastSummary  — persisted outcome of one broadcast

═══════════════════════════════════════════════════════════════════════════
RECIPIENT SOURCES
═══════════════════════════════════════════════════════════════════════════

    Source            Selection                          Counted as
    ──────────        ───────────────────────────────    ───────────────────
    Users             location matches (affected_area,   users + role tally
                      district) or everyone (all)
    Manual emails     typed in by the approving admin    manualRecipients.emails
    Manual phones     typed in by the approving admin    manualRecipients.phones
    Contact groups    targetGroups ids                    groupRecipients

Email addresses from all three sources are merged into one de-duplicated
set; each unique address receives exactly one message.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.storage.entities import Role


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertChannel(str, Enum):
    """Channels an approver may select."""
    EMAIL = "email"
    SMS   = "sms"   # recorded on the alert; no transport wired


class AudienceSelector(str, Enum):
    AFFECTED_AREA = "affected_area"
    DISTRICT      = "district"
    ALL           = "all"


# Selectors that narrow users down to the alert's location
LOCATION_AUDIENCES = (AudienceSelector.AFFECTED_AREA.value, AudienceSelector.DISTRICT.value)


class DeliveryStatus(str, Enum):
    """Delivery state per recipient."""
    SENDING   = "sending"
    DELIVERED = "delivered"
    FAILED    = "failed"
    SKIPPED   = "skipped"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DeliveryAttempt:
    """Record of a single delivery attempt to one address via one channel."""
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    channel: AlertChannel = AlertChannel.EMAIL
    recipient: str = ""
    status: DeliveryStatus = DeliveryStatus.SENDING
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "error_message": self.error_message,
        }


@dataclass
class RecipientTypeCount:
    community: int = 0
    health_worker: int = 0
    admin: int = 0

    def add(self, role: Optional[str]) -> None:
        """Tally one matched user; national admins count as admins."""
        if role == Role.COMMUNITY.value:
            self.community += 1
        elif role == Role.HEALTH_WORKER.value:
            self.health_worker += 1
        elif role in (Role.ADMIN.value, Role.NATIONAL_ADMIN.value):
            self.admin += 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "community": self.community,
            "health_worker": self.health_worker,
            "admin": self.admin,
        }


@dataclass
class BroadcastSummary:
    """
    Outcome of one broadcast, stored on the alert as ``broadcastSummary``.

    ``total_sent`` is the sum of the source sizes (matched users + manual
    emails as typed + group contacts) and may count one address several
    times; ``unique_recipients`` is the size of the de-duplicated email set.
    """
    total_sent: int = 0
    recipient_type_count: RecipientTypeCount = field(default_factory=RecipientTypeCount)
    sent_at: datetime = field(default_factory=_now)
    manual_phones: int = 0
    manual_emails: int = 0
    group_recipients: int = 0
    unique_recipients: int = 0
    attempts: List[DeliveryAttempt] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for a in self.attempts if a.delivered)

    @property
    def failed(self) -> int:
        return sum(1 for a in self.attempts if a.status == DeliveryStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalSent": self.total_sent,
            "recipientTypeCount": self.recipient_type_count.to_dict(),
            "sentAt": self.sent_at.isoformat(),
            "manualRecipients": {
                "phones": self.manual_phones,
                "emails": self.manual_emails,
            },
            "groupRecipients": self.group_recipients,
            "uniqueRecipients": self.unique_recipients,
            "delivery": {"sent": self.delivered, "failed": self.failed},
        }
