"""
Public dashboard statistics.

    GET /api/stats → {
        totalReports, highSeverity,
        locations: {<location>: {totalCases, registeredCases}},
        recentUpdates: [ {type, title, desc, time, severity}, ... ]   (2 newest)
    }
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_database
from backend.app.storage.base import Database
from backend.app.storage.entities import Record, Severity
from backend.app.storage.query import DESCENDING

router = APIRouter(prefix="/api/stats", tags=["stats"])

RECENT_UPDATES = 2

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _report_update(report: Record) -> Dict[str, Any]:
    symptoms = report.get("symptoms") or []
    first = symptoms[0] if symptoms else "symptoms"
    return {
        "type": "report",
        "title": f"New Report in {report.get('location')}",
        "desc": f"{report.get('severity')} severity case reported with {first}",
        "time": report.get("timestamp"),
        "severity": report.get("severity"),
    }


def _alert_update(alert: Record) -> Dict[str, Any]:
    return {
        "type": "alert",
        "title": f"{alert.get('level')} Alert: {alert.get('location')}",
        "desc": alert.get("message"),
        "time": alert.get("createdAt"),
        "severity": alert.get("level"),
    }


@router.get("")
async def get_stats(db: Database = Depends(get_database)):
    total_reports = await db.reports.count_documents()
    high_severity = await db.reports.count_documents({"severity": Severity.HIGH.value})

    groups = await db.reports.aggregate("location", sum_fields=("registeredCases",))
    locations = {
        g.key: {"totalCases": g.count, "registeredCases": g.sums["registeredCases"]}
        for g in groups
    }

    recent_reports = await db.reports.find().sort("timestamp", DESCENDING).limit(RECENT_UPDATES)
    recent_alerts = await db.alerts.find().sort("createdAt", DESCENDING).limit(RECENT_UPDATES)
    updates: List[Dict[str, Any]] = (
        [_report_update(r) for r in recent_reports]
        + [_alert_update(a) for a in recent_alerts]
    )
    updates.sort(key=lambda u: u["time"] or _EPOCH, reverse=True)

    return {
        "totalReports": total_reports,
        "highSeverity": high_severity,
        "locations": locations,
        "recentUpdates": updates[:RECENT_UPDATES],
    }
