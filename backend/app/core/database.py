"""
Database layer — backend selection and FastAPI dependency.

Selection order at startup:
    1. DATABASE_URL set → async SQLAlchemy engine (asyncpg / aiosqlite)
    2. connection fails or URL unset → JSON files under DATA_DIR

The chosen backend lives on ``app.state.database`` for the lifetime of the
process; route handlers receive it through ``get_database``.

Usage:
    from backend.app.core.database import get_database
    from backend.app.storage import Database

    @router.get("/reports")
    async def list_reports(db: Database = Depends(get_database)):
        return await db.reports.find()
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from backend.app.core.config import Settings, settings
from backend.app.storage.base import Database
from backend.app.storage.file_store import FileDatabase
from backend.app.storage.sql_store import SqlDatabase, build_engine, masked_url

logger = logging.getLogger(__name__)


async def open_database(config: Optional[Settings] = None) -> Database:
    """Connect to the configured database, falling back to the JSON store."""
    config = config or settings

    if config.DATABASE_URL:
        engine = None
        try:
            engine = build_engine(
                config.DATABASE_URL,
                pool_size=config.DATABASE_POOL_SIZE,
                max_overflow=config.DATABASE_MAX_OVERFLOW,
                echo=config.DATABASE_ECHO,
            )
            database = SqlDatabase(engine)
            await database.connect()
            return database
        except Exception as exc:  # driver missing, refused, auth, bad URL ...
            logger.error(
                "Error connecting to database %s: %s",
                masked_url(config.DATABASE_URL), exc,
            )
            logger.warning("Falling back to local JSON store at %s", config.DATA_DIR)
            if engine is not None:
                await engine.dispose()
    else:
        logger.info("DATABASE_URL not set")

    database = FileDatabase(config.DATA_DIR)
    await database.connect()
    return database


def get_database(request: Request) -> Database:
    """FastAPI dependency: the storage backend chosen at startup."""
    return request.app.state.database
