"""
Health check aggregation — deep check of all subsystems.

Checks:
    • Storage backend (SQL ping, or JSON data directory writability)
    • Email transport configuration
    • Disk space for the JSON data directory

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness endpoints
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from backend.app.core.config import settings
from backend.app.storage.base import Database

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_storage(database: Optional[Database]) -> ComponentHealth:
    """Ping the active storage backend."""
    comp = ComponentHealth(name="storage")
    start = time.monotonic()
    if database is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Storage not initialised"
        return comp

    try:
        comp.details = await database.ping()
        if database.backend == "file":
            if comp.details.get("writable"):
                comp.message = "Local JSON store"
                if settings.DATABASE_URL:
                    # Configured database was unreachable at startup
                    comp.status = HealthStatus.DEGRADED
                    comp.message = "Database unavailable, using local JSON store"
            else:
                comp.status = HealthStatus.UNHEALTHY
                comp.message = "Data directory is not writable"
        else:
            comp.message = "Database reachable"
    except Exception as e:
        logger.warning("Storage health check failed: %s", e)
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_email_transport() -> ComponentHealth:
    """Check the email provider is usable (configuration only, no connection)."""
    comp = ComponentHealth(name="email")
    start = time.monotonic()
    provider = settings.EMAIL_PROVIDER
    comp.details = {"provider": provider}

    if provider == "simulation":
        comp.message = "Simulated delivery (messages are logged only)"
    elif provider == "smtp":
        if settings.SMTP_HOST:
            comp.message = "SMTP configured"
            comp.details.update(host=settings.SMTP_HOST, port=settings.SMTP_PORT)
        else:
            comp.status = HealthStatus.DEGRADED
            comp.message = "SMTP_HOST not set; broadcasts will fail"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = f"Unknown email provider: {provider}"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_disk_space() -> ComponentHealth:
    """Check available disk space where the JSON store lives."""
    comp = ComponentHealth(name="disk_space")
    start = time.monotonic()
    try:
        target = Path(settings.DATA_DIR)
        total, used, free = shutil.disk_usage(target if target.exists() else ".")
        free_gb = free / (1024 ** 3)
        total_gb = total / (1024 ** 3)
        used_pct = (used / total) * 100

        comp.details = {
            "total_gb": round(total_gb, 1),
            "free_gb": round(free_gb, 1),
            "used_pct": round(used_pct, 1),
        }

        if free_gb < 0.5:
            comp.status = HealthStatus.UNHEALTHY
            comp.message = f"Low disk space: {free_gb:.1f} GB free"
        elif free_gb < 2.0:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"Disk space warning: {free_gb:.1f} GB free"
        else:
            comp.status = HealthStatus.HEALTHY
            comp.message = f"{free_gb:.1f} GB free"
    except OSError as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(database: Optional[Database]) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_storage(database),
        check_email_transport(),
        check_disk_space(),
    ]

    # Run all checks
    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
