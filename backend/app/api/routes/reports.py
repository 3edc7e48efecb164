"""
Case reports and the public map feed.

    GET    /api/reports                       — staff: all reports, newest first
    POST   /api/reports                       — staff: file one or more reports
    DELETE /api/reports/location/{location}   — national admin: drop a village
    GET    /api/map-data                      — public, anonymised
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from backend.app.api.deps import get_database
from backend.app.api.schemas import ReportCreate
from backend.app.core.config import settings
from backend.app.core.errors import NotFoundError
from backend.app.core.security import require_roles
from backend.app.storage.base import Database
from backend.app.storage.entities import STAFF_ROLES, Record, Role
from backend.app.storage.query import DESCENDING, OneOf, Pattern

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])

MAP_FIELDS = "location state symptoms waterSource severity timestamp registeredCases -id"


@router.get("/reports", dependencies=[Depends(require_roles(*STAFF_ROLES))])
async def list_reports(db: Database = Depends(get_database)):
    return await (
        db.reports.find()
        .populate("userId", "name email")
        .sort("timestamp", DESCENDING)
    )


@router.post("/reports", status_code=201)
async def create_report(
    body: ReportCreate,
    user: Record = Depends(require_roles(*STAFF_ROLES)),
    db: Database = Depends(get_database),
):
    fields = {
        "userId": user["id"],
        "state": body.state or settings.DEFAULT_STATE,
        "location": body.location,
        "symptoms": body.symptoms,
        "waterSource": body.water_source,
        "severity": body.severity,
        "notes": body.notes or "",
        "registeredCases": body.registered_cases,
    }
    created = [await db.reports.create(fields) for _ in range(body.count)]
    logger.info(
        "Added %d report(s) for %s", len(created), body.location,
        extra={"user_id": user["id"], "entity": "Report"},
    )

    reports = await (
        db.reports.find({"id": OneOf(r["id"] for r in created)})
        .populate("userId", "name email")
    )
    if body.count == 1:
        return reports[0]
    return {"message": f"Added {body.count} cases successfully", "reports": reports}


@router.delete("/reports/location/{location}")
async def delete_location(
    location: str,
    user: Record = Depends(require_roles(Role.NATIONAL_ADMIN.value)),
    db: Database = Depends(get_database),
):
    deleted = await db.reports.delete_many(
        {"location": Pattern.exact(location, ignore_case=True)}
    )
    if deleted == 0:
        raise NotFoundError(
            "Report", "No reports found for this location", location=location,
        )

    logger.warning(
        "Deleted %d reports for %s", deleted, location,
        extra={"user_id": user["id"], "entity": "Report"},
    )
    return {
        "message": f"Successfully removed village and {deleted} associated reports",
        "deletedCount": deleted,
    }


@router.get("/map-data")
async def map_data(db: Database = Depends(get_database)):
    return await (
        db.reports.find()
        .select(MAP_FIELDS)
        .sort("timestamp", DESCENDING)
    )
