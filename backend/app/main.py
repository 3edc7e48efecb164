"""
FastAPI application entry point.

Run with:
    python -m backend.app.main          # HOST / PORT / RELOAD from settings

Or through uvicorn directly:
    uvicorn backend.app.main:app --reload --port 5000

Tests build isolated instances with ``create_app(database=..., email_sender=...)``.
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger
from backend.app.core.errors import register_error_handlers
from backend.app.core.middleware import RequestLoggingMiddleware
from backend.app.core.database import open_database
from backend.app.core.health import HealthStatus, run_health_check
from backend.app.alerts.broadcast import EmailSender
from backend.app.storage.base import Database

# ── API routers ──
from backend.app.api.routes.auth import router as auth_router
from backend.app.api.routes.users import router as users_router
from backend.app.api.routes.reports import router as reports_router
from backend.app.api.routes.contacts import router as contacts_router
from backend.app.api.routes.stats import router as stats_router
from backend.app.api.routes.alerts import router as alerts_router
from backend.app.api.routes.support import router as support_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def create_app(
    database: Optional[Database] = None,
    email_sender: Optional[EmailSender] = None,
) -> FastAPI:
    """
    Build the application.

    Parameters
    ----------
    database : Database, optional
        Pre-built storage backend. When omitted the lifespan opens one from
        settings (SQL if reachable, JSON files otherwise) and closes it on
        shutdown.
    email_sender : callable, optional
        Replacement email transport for broadcasts.
    """

    # ── Application lifespan (startup / shutdown) ──

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        owned = None
        if app.state.database is None:
            owned = app.state.database = await open_database(settings)
        else:
            # injected stores are prepared here but closed by their owner
            await app.state.database.connect()
        logger.info(
            "Storage backend: %s", app.state.database.backend,
            extra={"backend": app.state.database.backend},
        )
        yield
        if owned is not None:
            await owned.close()
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Community health surveillance API. "
            "Case reporting by health workers, public map and dashboard "
            "feeds, role-based access, contact groups, support tickets, "
            "and an alert approval workflow with email broadcast."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.database = database
    app.state.email_sender = email_sender

    # ── Middleware stack (outermost first) ──

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=not settings.CORS_ALLOW_ALL,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(reports_router)
    app.include_router(contacts_router)
    app.include_router(stats_router)
    app.include_router(alerts_router)
    app.include_router(support_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "auth",
                "users",
                "reports",
                "map-data",
                "contacts",
                "stats",
                "alerts",
                "support",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health check across all subsystems."""
        report = await run_health_check(request.app.state.database)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness check: is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness check: can we serve traffic?"""
        report = await run_health_check(request.app.state.database)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


def run() -> None:
    """Serve the module-level app with the server settings."""
    uvicorn.run(
        "backend.app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_config=None,
    )


app = create_app()


if __name__ == "__main__":
    run()
