"""
JSON-file storage backend.

One ``<Entity>.json`` array per entity under ``DATA_DIR``. The whole array
is loaded into memory on first use and rewritten after every mutation
(temp file + atomic rename). Intended for local development and
single-process deployments; there is no cross-process locking.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from backend.app.core.errors import StorageError
from backend.app.storage.base import Collection, Database, GroupTotal
from backend.app.storage.entities import EntitySchema, Record, utc_now
from backend.app.storage.query import Predicate, matches, sort_records

logger = logging.getLogger(__name__)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class FileCollection(Collection):
    database: "FileDatabase"

    def _items(self) -> List[Record]:
        return self.database._load(self.schema)

    def _commit(self, items: List[Record]) -> None:
        """Write *items*, then make them the cached array."""
        self.database._save(self.schema, items)

    async def _scan(
        self,
        predicate: Predicate,
        sort: Optional[Tuple[str, int]],
        limit: Optional[int],
    ) -> List[Record]:
        found = [r for r in self._items() if matches(r, predicate)]
        if sort:
            found = sort_records(found, *sort)
        if limit:
            found = found[:limit]
        return copy.deepcopy(found)

    async def count_documents(self, predicate: Optional[Predicate] = None) -> int:
        return sum(1 for r in self._items() if matches(r, predicate))

    async def aggregate(
        self,
        group_by: str,
        sum_fields: Sequence[str] = (),
        min_count: Optional[int] = None,
    ) -> List[GroupTotal]:
        groups: Dict[Any, GroupTotal] = {}
        for record in self._items():
            key = record.get(group_by)
            group = groups.get(key)
            if group is None:
                group = groups[key] = GroupTotal(
                    key=key, count=0, sums={f: 0 for f in sum_fields},
                )
            group.count += 1
            for name in sum_fields:
                value = record.get(name)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    group.sums[name] += value

        totals = list(groups.values())
        if min_count is not None:
            totals = [g for g in totals if g.count >= min_count]
        return sorted(totals, key=lambda g: str(g.key))

    async def create(self, fields: Mapping[str, Any]) -> Record:
        record = self.schema.new_record(fields)
        self._commit(self._items() + [record])
        return copy.deepcopy(record)

    async def find_by_id_and_update(
        self, record_id: str, patch: Mapping[str, Any],
    ) -> Optional[Record]:
        changes = self.schema.normalise(patch, partial=True)
        items = list(self._items())
        for index, item in enumerate(items):
            if item.get("id") == record_id:
                updated = {**item, **changes, "updatedAt": utc_now()}
                items[index] = updated
                self._commit(items)
                return copy.deepcopy(updated)
        return None

    async def find_by_id_and_delete(self, record_id: str) -> Optional[Record]:
        items = list(self._items())
        for index, item in enumerate(items):
            if item.get("id") == record_id:
                removed = items.pop(index)
                self._commit(items)
                return copy.deepcopy(removed)
        return None

    async def delete_many(self, predicate: Optional[Predicate] = None) -> int:
        items = self._items()
        kept = [r for r in items if not matches(r, predicate)]
        removed = len(items) - len(kept)
        if removed:
            self._commit(kept)
        return removed


class FileDatabase(Database):
    """Entity arrays cached per instance, persisted under *data_dir*."""

    backend = "file"

    def __init__(self, data_dir: Union[str, os.PathLike]):
        super().__init__()
        self.data_dir = Path(data_dir)
        self._cache: Dict[str, List[Record]] = {}

    def _make_collection(self, schema: EntitySchema) -> Collection:
        return FileCollection(self, schema)

    def path_for(self, schema: EntitySchema) -> Path:
        return self.data_dir / f"{schema.name}.json"

    def _load(self, schema: EntitySchema) -> List[Record]:
        if schema.name in self._cache:
            return self._cache[schema.name]

        path = self.path_for(schema)
        items: List[Record] = []
        if path.exists():
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                if not isinstance(raw, list):
                    raise ValueError("expected a JSON array")
                items = [schema.from_storage(r) for r in raw if isinstance(r, dict)]
            except (OSError, ValueError) as exc:
                logger.warning(
                    "Could not read %s, starting empty: %s", path, exc,
                    extra={"entity": schema.name, "backend": self.backend},
                )
                items = []

        self._cache[schema.name] = items
        return items

    def _save(self, schema: EntitySchema, items: List[Record]) -> None:
        """Persist *items*; the cache is only replaced once the file is written."""
        path = self.path_for(schema)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps(items, default=_encode, indent=2),
                encoding="utf-8",
            )
            os.replace(tmp, path)
        except OSError as exc:
            logger.error(
                "Failed to write %s: %s", path, exc,
                extra={"entity": schema.name, "backend": self.backend},
            )
            raise StorageError(schema.name, str(exc), path=str(path)) from exc
        self._cache[schema.name] = items

    async def connect(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Using local JSON store at %s", self.data_dir.resolve())

    async def ping(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "data_dir": str(self.data_dir),
            "writable": os.access(self.data_dir, os.W_OK),
            "entities_loaded": sorted(self._cache),
        }
