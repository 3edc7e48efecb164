"""
Persistence shim — one record API over two interchangeable backends.

    sql_store.SqlDatabase     DATABASE_URL set and reachable
    file_store.FileDatabase   otherwise (JSON arrays under DATA_DIR)

See ``backend.app.core.database.open_database`` for backend selection.
"""

from backend.app.storage.base import Collection, Database, GroupTotal, Query
from backend.app.storage.entities import Record, is_valid_id
from backend.app.storage.query import ASCENDING, DESCENDING, OneOf, Pattern

__all__ = [
    "ASCENDING",
    "Collection",
    "DESCENDING",
    "Database",
    "GroupTotal",
    "OneOf",
    "Pattern",
    "Query",
    "Record",
    "is_valid_id",
]
