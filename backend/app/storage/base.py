"""
Storage contract shared by the SQL and JSON-file backends.

    Database            one per process, selected at startup
      └── Collection    one per entity (users, reports, alerts, ...)
            └── Query   chainable read: sort / limit / select / populate

Route handlers are written once against this contract and behave the same
whichever backend is active.

    alerts = await (
        db.alerts.find({"status": "pending"})
        .sort("createdAt", DESCENDING)
        .populate("createdBy", "name email")
    )
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Mapping, Optional, Sequence, Tuple

from backend.app.storage.entities import (
    ALERT,
    CONTACT_GROUP,
    REPORT,
    SUPPORT_TICKET,
    USER,
    EntitySchema,
    Record,
    get_schema,
)
from backend.app.storage.query import ASCENDING, OneOf, Predicate, project

logger = logging.getLogger(__name__)


@dataclass
class GroupTotal:
    """One row of an ``aggregate()`` result."""
    key: Any
    count: int
    sums: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "count": self.count, **self.sums}


class Query:
    """
    Lazy read against one collection.

    Awaiting the query executes it; nothing touches the backend before that.
    """

    def __init__(
        self,
        collection: "Collection",
        predicate: Optional[Predicate] = None,
        *,
        single: bool = False,
    ):
        self._collection = collection
        self._predicate = dict(predicate or {})
        self._single = single
        self._sort: Optional[Tuple[str, int]] = None
        self._limit: Optional[int] = None
        self._selector: Optional[str] = None
        self._populate: List[Tuple[str, Optional[str]]] = []

    def sort(self, field_name: str, direction: int = ASCENDING) -> "Query":
        self._sort = (field_name, direction)
        return self

    def limit(self, n: int) -> "Query":
        self._limit = max(int(n), 0)
        return self

    def select(self, selector: str) -> "Query":
        self._selector = selector
        return self

    def populate(self, path: str, selector: Optional[str] = None) -> "Query":
        self._populate.append((path, selector))
        return self

    async def exec(self) -> Any:
        limit = 1 if self._single else self._limit
        if limit == 0:
            return None if self._single else []

        records = await self._collection._scan(self._predicate, self._sort, limit)
        for path, selector in self._populate:
            await self._collection.database.populate(
                self._collection.schema, records, path, selector,
            )
        if self._selector:
            records = [project(r, self._selector) for r in records]

        if self._single:
            return records[0] if records else None
        return records

    def __await__(self) -> Generator[Any, None, Any]:
        return self.exec().__await__()


class Collection(ABC):
    """Record operations for one entity."""

    def __init__(self, database: "Database", schema: EntitySchema):
        self.database = database
        self.schema = schema

    @property
    def name(self) -> str:
        return self.schema.name

    # ── reads ──

    def find(self, predicate: Optional[Predicate] = None) -> Query:
        return Query(self, predicate)

    def find_one(self, predicate: Optional[Predicate] = None) -> Query:
        return Query(self, predicate, single=True)

    def find_by_id(self, record_id: str) -> Query:
        return Query(self, {"id": record_id}, single=True)

    @abstractmethod
    async def _scan(
        self,
        predicate: Predicate,
        sort: Optional[Tuple[str, int]],
        limit: Optional[int],
    ) -> List[Record]:
        """Matching records in storage order (or *sort* order), copied."""

    @abstractmethod
    async def count_documents(self, predicate: Optional[Predicate] = None) -> int:
        ...

    @abstractmethod
    async def aggregate(
        self,
        group_by: str,
        sum_fields: Sequence[str] = (),
        min_count: Optional[int] = None,
    ) -> List[GroupTotal]:
        """Group records by one field, counting and summing integer fields."""

    # ── writes ──

    @abstractmethod
    async def create(self, fields: Mapping[str, Any]) -> Record:
        ...

    @abstractmethod
    async def find_by_id_and_update(
        self, record_id: str, patch: Mapping[str, Any],
    ) -> Optional[Record]:
        """Merge *patch* into the record; return the updated record or None."""

    @abstractmethod
    async def find_by_id_and_delete(self, record_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def delete_many(self, predicate: Optional[Predicate] = None) -> int:
        """Remove matching records, returning how many were removed."""


class Database(ABC):
    """A storage backend exposing one ``Collection`` per entity."""

    backend: str = "abstract"

    def __init__(self) -> None:
        self._collections: Dict[str, Collection] = {}

    @abstractmethod
    def _make_collection(self, schema: EntitySchema) -> Collection:
        ...

    def collection(self, entity: str) -> Collection:
        if entity not in self._collections:
            self._collections[entity] = self._make_collection(get_schema(entity))
        return self._collections[entity]

    @property
    def users(self) -> Collection:
        return self.collection(USER.name)

    @property
    def reports(self) -> Collection:
        return self.collection(REPORT.name)

    @property
    def alerts(self) -> Collection:
        return self.collection(ALERT.name)

    @property
    def contact_groups(self) -> Collection:
        return self.collection(CONTACT_GROUP.name)

    @property
    def support_tickets(self) -> Collection:
        return self.collection(SUPPORT_TICKET.name)

    async def connect(self) -> None:
        """Prepare the backend (create tables / directories)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def ping(self) -> Dict[str, Any]:
        """Cheap liveness check used by the health endpoint."""

    async def populate(
        self,
        schema: EntitySchema,
        records: List[Record],
        path: str,
        selector: Optional[str] = None,
    ) -> None:
        """
        Replace reference ids at *path* with the referenced records, in place.

        List-valued references are resolved element-wise. Ids whose target
        no longer exists are left as plain ids.
        """
        target_name = schema.references.get(path)
        if target_name is None:
            raise ValueError(f"{schema.name}.{path} is not a reference field")

        ids = set()
        for record in records:
            value = record.get(path)
            if isinstance(value, str):
                ids.add(value)
            elif isinstance(value, list):
                ids.update(v for v in value if isinstance(v, str))
        if not ids:
            return

        target = self.collection(target_name)
        related = {
            doc["id"]: doc
            for doc in await target._scan({"id": OneOf(ids)}, None, None)
        }
        missing = ids - related.keys()
        if missing:
            logger.debug(
                "%d dangling %s reference(s) on %s.%s",
                len(missing), target_name, schema.name, path,
            )

        def resolve(ref: Any) -> Any:
            if not isinstance(ref, str) or ref not in related:
                return ref
            return project(related[ref], selector)

        for record in records:
            value = record.get(path)
            if isinstance(value, list):
                record[path] = [resolve(v) for v in value]
            elif value is not None:
                record[path] = resolve(value)
