"""
System-derived alerts from report volume.

Every location with at least ``AUTO_ALERT_MIN_REPORTS`` reports yields a
synthetic alert shown to health workers and admins next to the stored ones.
They are recomputed per request and never persisted.

    Reports at location     Level
    ───────────────────     ──────
    >= AUTO_ALERT_RED       Red
    >= AUTO_ALERT_ORANGE    Orange
    >= AUTO_ALERT_MIN       Yellow
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from backend.app.core.config import settings
from backend.app.storage.base import Database, GroupTotal
from backend.app.storage.entities import AlertLevel, AlertStatus

logger = logging.getLogger(__name__)

AUTO_ALERT_PREFIX = "auto-alert-"


def level_for_count(count: int) -> str:
    if count >= settings.AUTO_ALERT_RED_REPORTS:
        return AlertLevel.RED.value
    if count >= settings.AUTO_ALERT_ORANGE_REPORTS:
        return AlertLevel.ORANGE.value
    return AlertLevel.YELLOW.value


def build_auto_alerts(
    groups: Iterable[GroupTotal],
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    return [
        {
            "id": f"{AUTO_ALERT_PREFIX}{group.key}",
            "location": group.key,
            "level": level_for_count(group.count),
            "message": (
                f"High number of reports ({group.count}) in {group.key}. "
                "Potential outbreak detected."
            ),
            "reportCount": group.count,
            "isActive": True,
            "status": AlertStatus.PENDING.value,
            "createdAt": now,
        }
        for group in groups
        if group.count >= settings.AUTO_ALERT_MIN_REPORTS
    ]


async def derive_auto_alerts(db: Database) -> List[Dict[str, Any]]:
    groups = await db.reports.aggregate(
        "location", min_count=settings.AUTO_ALERT_MIN_REPORTS,
    )
    alerts = build_auto_alerts(groups)
    if alerts:
        logger.debug("%d system-derived alert(s)", len(alerts))
    return alerts
