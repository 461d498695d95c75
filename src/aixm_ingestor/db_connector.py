from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from sqlalchemy import (Column, DateTime, Integer, MetaData, String, Table,
                        select, text)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .conversion import is_enum_type
from .exceptions import ConfigurationError
from .models import SCHEMA_VERSION, DatabaseConfig, Enforcement
from .queries import Query, Sort, compile_query, compile_sort, where_equals
from .registry import FeatureEntry, FeatureRegistry
from .schema import SchemaTable

LOGGER = logging.getLogger("aixm.ingestor.db")

METADATA_TABLE = "metadata"
METADATA_ROW_ID = 1

_INSERT_FACTORIES = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise to naive UTC, the form every supported dialect round-trips."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class StoredMetadata:
    version: Optional[str]
    effective_from: Optional[datetime]
    effective_to: Optional[datetime]

    def covers(self, moment: datetime) -> bool:
        if self.effective_from is None or self.effective_to is None:
            return False
        return self.effective_from <= moment <= self.effective_to


class Database:
    """Relational sink backed by a SQLAlchemy async engine."""

    def __init__(self, config: DatabaseConfig, registry: FeatureRegistry) -> None:
        self._config = config
        self._registry = registry
        self._engine: Optional[AsyncEngine] = None
        self._related: Dict[Tuple[str, str, str], BaseModel] = {}
        self._meta = MetaData()
        self.metadata_table = Table(
            METADATA_TABLE,
            self._meta,
            Column("id", Integer, primary_key=True),
            Column("version", String(32)),
            Column("effective_from", DateTime),
            Column("effective_to", DateTime),
        )

    async def open(self) -> AsyncEngine:
        if self._engine is not None:
            return self._engine

        deadline = time.time() + self._config.connect_timeout
        attempts = 0
        while True:
            attempts += 1
            try:
                LOGGER.info("Creating SQLAlchemy engine (attempt %s)", attempts)
                async_engine = create_async_engine(self._config.url)
                async with async_engine.connect() as connection:
                    await connection.execute(text("SELECT 1"))
                self._engine = async_engine
                LOGGER.info("Connected to %s database", async_engine.dialect.name)
                break
            except OperationalError as exc:
                if time.time() >= deadline:
                    raise RuntimeError("Database connection timed out") from exc
                LOGGER.warning("Database not ready yet (%s), retrying...", exc)
                await asyncio.sleep(min(2 * attempts, 10))

        if self._engine.dialect.name not in _INSERT_FACTORIES:
            dialect = self._engine.dialect.name
            await self.dispose()
            raise ConfigurationError(f"Unsupported database dialect '{dialect}'")
        return self._engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Engine not initialised; call open()")
        return self._engine

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None

    def _insert(self, table: Table):
        return _INSERT_FACTORIES[self.engine.dialect.name](table)

    # schema ---------------------------------------------------------------

    async def create_table(self, schema: SchemaTable) -> None:
        table = self._registry.metadata.tables[schema.name]
        async with self.engine.begin() as conn:
            await conn.run_sync(table.create, checkfirst=True)

    async def create_tables(self) -> None:
        for schema in self._registry.get_dependency_order():
            await self.create_table(schema)
        LOGGER.info("Created %d feature tables", len(self._registry.entries))

    async def drop_tables(self) -> None:
        metadata = self._registry.metadata
        async with self.engine.begin() as conn:
            for schema in self._registry.get_child_first_order():
                LOGGER.debug("Dropping table %s", schema.name)
                await conn.run_sync(metadata.tables[schema.name].drop, checkfirst=True)

    async def rebuild(self) -> None:
        LOGGER.info("Rebuilding database schema (version %s)", SCHEMA_VERSION)
        self._related.clear()
        await self.drop_tables()
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata_table.drop, checkfirst=True)
            await conn.run_sync(self.metadata_table.create)
            await conn.execute(
                self.metadata_table.insert().values(id=METADATA_ROW_ID, version=SCHEMA_VERSION)
            )
        await self.create_tables()

    # metadata -------------------------------------------------------------

    async def read_metadata(self) -> Optional[StoredMetadata]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(self.metadata_table).where(self.metadata_table.c.id == METADATA_ROW_ID)
                )
                row = result.mappings().first()
        except SQLAlchemyError as exc:
            LOGGER.debug("Metadata table unavailable: %s", exc)
            return None
        if row is None:
            return None
        return StoredMetadata(
            version=row["version"],
            effective_from=row["effective_from"],
            effective_to=row["effective_to"],
        )

    async def write_effective_range(self, start: datetime, end: datetime) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                self.metadata_table.update()
                .where(self.metadata_table.c.id == METADATA_ROW_ID)
                .values(effective_from=utc_naive(start), effective_to=utc_naive(end))
            )

    async def is_rebuild_needed(
        self,
        force: bool = False,
        enforcement: Enforcement = Enforcement.LENIENT,
        now: Optional[datetime] = None,
    ) -> bool:
        if force:
            LOGGER.info("Rebuild forced by configuration")
            return True
        stored = await self.read_metadata()
        if stored is None:
            LOGGER.info("No metadata found, database needs to be built")
            return True
        if stored.version != SCHEMA_VERSION:
            LOGGER.info(
                "Stored schema version %s differs from %s", stored.version, SCHEMA_VERSION
            )
            return True
        if enforcement is not Enforcement.IGNORE and not stored.covers(utc_naive(now) or utc_now()):
            LOGGER.info("Stored data is outside its effective range")
            return True
        return False

    # writes ---------------------------------------------------------------

    async def insert_placeholder_keys(self, schema: SchemaTable, keys: Sequence[str]) -> bool:
        if not keys:
            return True
        table = self._registry.metadata.tables[schema.name]
        key = schema.key_column
        stmt = self._insert(table).on_conflict_do_nothing(index_elements=[table.c[key]])
        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt, [{key: value} for value in keys])
        except SQLAlchemyError as exc:
            LOGGER.warning(
                "Failed to insert %s primary keys into the '%s' table: %s",
                len(keys),
                schema.name,
                exc,
            )
            return False
        return True

    async def insert_rows(self, schema: SchemaTable, entities: Sequence[BaseModel]) -> bool:
        if not entities:
            return True
        entry = self._registry.get(schema.feature)
        table = self._registry.metadata.tables[schema.name]
        rows = [self._to_row(entry, entity) for entity in entities]
        if schema.primary_key is None:
            stmt = table.insert()
        else:
            key = schema.primary_key
            stmt = self._insert(table)
            updates = {
                column.name: stmt.excluded[column.name]
                for column in table.columns
                if column.name != key
            }
            if updates:
                stmt = stmt.on_conflict_do_update(index_elements=[table.c[key]], set_=updates)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=[table.c[key]])
        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt, rows)
        except SQLAlchemyError as exc:
            LOGGER.warning(
                "Failed to insert %s rows into the '%s' table: %s",
                len(rows),
                schema.name,
                exc,
            )
            return False
        return True

    def _to_row(self, entry: FeatureEntry, entity: BaseModel) -> Dict[str, Any]:
        row = entry.mapping.to_row(entity)
        for key, value in row.items():
            if isinstance(value, Enum):
                row[key] = value.name
        return row

    # reads ----------------------------------------------------------------

    async def select_one(
        self, feature: str, query: Optional[Query] = None, sort: Optional[Sort] = None
    ) -> Optional[BaseModel]:
        results = await self._select(feature, query, sort, limit=1)
        return results[0] if results else None

    async def select_all(
        self, feature: str, query: Optional[Query] = None, sort: Optional[Sort] = None
    ) -> List[BaseModel]:
        return await self._select(feature, query, sort)

    async def select_related(
        self, feature: str, attribute: str, identity: str
    ) -> Optional[BaseModel]:
        """First ``feature`` row whose ``attribute`` references ``identity``.

        Found rows are cached until the next rebuild; misses are not cached.
        """
        key = (feature, attribute, identity)
        cached = self._related.get(key)
        if cached is None:
            cached = await self.select_one(feature, where_equals(feature, attribute, identity))
            if cached is not None:
                self._related[key] = cached
        return cached

    async def _select(
        self,
        feature: str,
        query: Optional[Query],
        sort: Optional[Sort],
        limit: Optional[int] = None,
    ) -> List[BaseModel]:
        entry = self._registry.get(feature)
        table = self._registry.metadata.tables[entry.table_name]
        stmt = select(table)
        if query is not None:
            stmt = stmt.where(compile_query(query, self._registry, feature))
        if sort is not None:
            stmt = stmt.order_by(*compile_sort(sort, self._registry, feature))
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            rows = result.mappings().all()
        return [self._to_entity(entry, row) for row in rows]

    def _to_entity(self, entry: FeatureEntry, row: Any) -> BaseModel:
        values = {}
        for binding in entry.mapping.fields.values():
            value = row[binding.column_name]
            if value is not None and is_enum_type(binding.value_type):
                value = self._registry.conversion.convert_from_string(value, binding.value_type)
            values[binding.name] = value
        return entry.mapping.model.model_validate(values)
