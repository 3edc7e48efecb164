"""
SQL storage backend — async SQLAlchemy 2.0 Core.

Tables are generated from the entity schemas, so the SQL and JSON-file
backends always agree on field names and kinds:

    Field kind      Column type
    ──────────      ─────────────────────────
    string          VARCHAR(255) if indexed, TEXT otherwise
    reference       VARCHAR(32)
    integer         INTEGER
    boolean         BOOLEAN
    datetime        TIMESTAMP WITH TIME ZONE
    list / dict     JSON

Pattern predicates compile to ``REGEXP`` (``~`` on PostgreSQL); the
case-insensitive flag travels inline as ``(?i)``. Filtering on JSON
columns is not supported.
"""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    false,
    func,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from backend.app.core.errors import ConflictError, StorageError
from backend.app.storage.base import Collection, Database, GroupTotal
from backend.app.storage.entities import (
    SCHEMAS,
    EntitySchema,
    FieldKind,
    FieldSpec,
    Record,
    utc_now,
)
from backend.app.storage.query import DESCENDING, OneOf, Pattern, Predicate

logger = logging.getLogger(__name__)


def _column_type(spec: FieldSpec):
    if spec.kind == FieldKind.STRING:
        return String(255) if (spec.indexed or spec.choices) else Text()
    return {
        FieldKind.REFERENCE: String(32),
        FieldKind.INTEGER: Integer(),
        FieldKind.BOOLEAN: Boolean(),
        FieldKind.DATETIME: DateTime(timezone=True),
        FieldKind.LIST: JSON(),
        FieldKind.DICT: JSON(),
    }[spec.kind]


def build_table(schema: EntitySchema, metadata: MetaData) -> Table:
    columns = [
        Column("id", String(32), primary_key=True),
        Column("createdAt", DateTime(timezone=True), nullable=False, index=True),
        Column("updatedAt", DateTime(timezone=True), nullable=False),
    ]
    for spec in schema.fields:
        columns.append(
            Column(
                spec.name,
                _column_type(spec),
                nullable=not spec.required,
                index=spec.indexed and not spec.unique,
                unique=spec.unique or None,
            )
        )
    return Table(schema.table_name, metadata, *columns)


def build_engine(
    url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    """Async engine; pool sizing is skipped for SQLite (static pool)."""
    kwargs: Dict[str, Any] = {"echo": echo}
    if make_url(url).get_backend_name() != "sqlite":
        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **kwargs)


def masked_url(url: str) -> str:
    return make_url(url).render_as_string(hide_password=True)


class SqlCollection(Collection):
    database: "SqlDatabase"

    def __init__(self, database: "SqlDatabase", schema: EntitySchema):
        super().__init__(database, schema)
        self.table = database.tables[schema.name]
        self._datetime_columns = schema.datetime_fields()

    @property
    def engine(self) -> AsyncEngine:
        return self.database.engine

    @contextlib.contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            logger.warning("Constraint violation on %s: %s", self.name, exc.orig)
            raise ConflictError(
                f"{self.name} conflicts with an existing record", entity=self.name,
            ) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "SQL error on %s: %s", self.name, exc,
                extra={"entity": self.name, "backend": self.database.backend},
            )
            raise StorageError(self.name, str(exc)) from exc

    def _column(self, name: str):
        try:
            return self.table.c[name]
        except KeyError:
            raise ValueError(f"{self.name} has no field '{name}'") from None

    def _where(self, predicate: Optional[Predicate]) -> List[Any]:
        clauses = []
        for key, condition in (predicate or {}).items():
            column = self._column(key)
            if isinstance(condition, Pattern):
                clauses.append(column.regexp_match(condition.expression))
            elif isinstance(condition, OneOf):
                values = list(condition.values)
                clauses.append(column.in_(values) if values else false())
            elif condition is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == condition)
        return clauses

    def _to_record(self, row: Mapping[str, Any]) -> Record:
        record = dict(row)
        for name in self._datetime_columns:
            value = record.get(name)
            # SQLite hands back naive datetimes; everything is stored in UTC
            if isinstance(value, datetime) and value.tzinfo is None:
                record[name] = value.replace(tzinfo=timezone.utc)
        return record

    async def _scan(
        self,
        predicate: Predicate,
        sort: Optional[Tuple[str, int]],
        limit: Optional[int],
    ) -> List[Record]:
        stmt = select(self.table).where(*self._where(predicate))
        if sort:
            column = self._column(sort[0])
            stmt = stmt.order_by(column.desc() if sort[1] == DESCENDING else column.asc())
        else:
            stmt = stmt.order_by(self.table.c.createdAt.asc(), self.table.c.id.asc())
        if limit:
            stmt = stmt.limit(limit)

        with self._errors():
            async with self.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        return [self._to_record(row) for row in rows]

    async def count_documents(self, predicate: Optional[Predicate] = None) -> int:
        stmt = select(func.count()).select_from(self.table).where(*self._where(predicate))
        with self._errors():
            async with self.engine.connect() as conn:
                return int((await conn.execute(stmt)).scalar_one())

    async def aggregate(
        self,
        group_by: str,
        sum_fields: Sequence[str] = (),
        min_count: Optional[int] = None,
    ) -> List[GroupTotal]:
        key = self._column(group_by)
        count = func.count().label("count")
        sums = [
            func.coalesce(func.sum(self._column(name)), 0).label(name)
            for name in sum_fields
        ]
        stmt = select(key.label("key"), count, *sums).group_by(key).order_by(key)
        if min_count is not None:
            stmt = stmt.having(func.count() >= min_count)

        with self._errors():
            async with self.engine.connect() as conn:
                rows = (await conn.execute(stmt)).mappings().all()
        return [
            GroupTotal(
                key=row["key"],
                count=int(row["count"]),
                sums={name: int(row[name]) for name in sum_fields},
            )
            for row in rows
        ]

    async def create(self, fields: Mapping[str, Any]) -> Record:
        record = self.schema.new_record(fields)
        with self._errors():
            async with self.engine.begin() as conn:
                await conn.execute(insert(self.table).values(**record))
        return record

    async def find_by_id_and_update(
        self, record_id: str, patch: Mapping[str, Any],
    ) -> Optional[Record]:
        changes = self.schema.normalise(patch, partial=True)
        changes["updatedAt"] = utc_now()
        id_column = self.table.c.id

        with self._errors():
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    update(self.table).where(id_column == record_id).values(**changes)
                )
                if result.rowcount == 0:
                    return None
                row = (
                    await conn.execute(select(self.table).where(id_column == record_id))
                ).mappings().first()
        return self._to_record(row) if row is not None else None

    async def find_by_id_and_delete(self, record_id: str) -> Optional[Record]:
        id_column = self.table.c.id
        with self._errors():
            async with self.engine.begin() as conn:
                row = (
                    await conn.execute(select(self.table).where(id_column == record_id))
                ).mappings().first()
                if row is None:
                    return None
                await conn.execute(delete(self.table).where(id_column == record_id))
        return self._to_record(row)

    async def delete_many(self, predicate: Optional[Predicate] = None) -> int:
        stmt = delete(self.table).where(*self._where(predicate))
        with self._errors():
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
        return int(result.rowcount or 0)


class SqlDatabase(Database):
    """Relational backend over an ``AsyncEngine``."""

    backend = "sql"

    def __init__(self, engine: AsyncEngine):
        super().__init__()
        self.engine = engine
        self.metadata = MetaData()
        self.tables: Dict[str, Table] = {
            name: build_table(schema, self.metadata)
            for name, schema in SCHEMAS.items()
        }

    def _make_collection(self, schema: EntitySchema) -> Collection:
        return SqlCollection(self, schema)

    async def connect(self) -> None:
        """Verify connectivity and create missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all)
        logger.info(
            "Database connected: %s", masked_url(str(self.engine.url)),
            extra={"backend": self.backend},
        )

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("Database connections closed")

    async def ping(self) -> Dict[str, Any]:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        pool = self.engine.pool
        return {
            "backend": self.backend,
            "url": masked_url(str(self.engine.url)),
            "pool_status": pool.status() if hasattr(pool, "status") else None,
        }
