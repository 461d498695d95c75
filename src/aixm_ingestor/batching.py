"""Batch accumulation and dependency-ordered commits."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import (Awaitable, Callable, Dict, List, Optional, Protocol,
                    Sequence, Set)

from pydantic import BaseModel

from .models import DEFAULT_DB_WORKERS, DEFAULT_DB_WRITE_TIMEOUT
from .schema import SchemaTable

LOGGER = logging.getLogger("aixm.ingestor.batching")

PLACEHOLDER_PHASE = "primary keys"
ROW_PHASE = "rows"


class RelationalSink(Protocol):
    async def insert_placeholder_keys(self, table: SchemaTable, keys: Sequence[str]) -> bool:
        ...

    async def insert_rows(self, table: SchemaTable, entities: Sequence[BaseModel]) -> bool:
        ...


@dataclass
class TableBatch:
    placeholders: List[str] = field(default_factory=list)
    rows: List[BaseModel] = field(default_factory=list)


class BatchData:
    """Rows collected for one commit, keyed by table then primary key.

    A key mapped to ``None`` only needs a placeholder row. A later full row
    for the same key replaces the placeholder; a later placeholder never
    replaces a full row.
    """

    def __init__(self) -> None:
        self._keyed: Dict[str, Dict[str, Optional[BaseModel]]] = {}
        self._keyless: Dict[str, List[BaseModel]] = {}
        self._size = 0

    def add_feature(self, table: str, key: Optional[str], entity: BaseModel) -> None:
        if key is None:
            self._keyless.setdefault(table, []).append(entity)
            self._size += 1
            return
        rows = self._keyed.setdefault(table, {})
        # new keys and replaced placeholders both add a full row
        if rows.get(key) is None:
            self._size += 1
        rows[key] = entity

    def add_placeholder(self, table: str, key: str) -> None:
        self._keyed.setdefault(table, {}).setdefault(key, None)

    def split(self) -> Dict[str, TableBatch]:
        result: Dict[str, TableBatch] = {}
        for table, keyed in self._keyed.items():
            batch = result.setdefault(table, TableBatch())
            for key, entity in keyed.items():
                if entity is None:
                    batch.placeholders.append(key)
                else:
                    batch.rows.append(entity)
        for table, rows in self._keyless.items():
            result.setdefault(table, TableBatch()).rows.extend(rows)
        return result

    @property
    def size(self) -> int:
        """Number of full rows, used against the batch limit."""
        return self._size

    def __bool__(self) -> bool:
        return bool(self._keyed) or bool(self._keyless)


@dataclass(frozen=True)
class CommitWarning:
    table: str
    phase: str
    count: int
    reason: str = "rejected by the database"


class BatchCommitter:
    """Run one commit task per batch on a bounded pool of workers.

    Inside a task, tables are written strictly in ``order``: placeholder keys
    first, then full rows. Failed or timed out writes become warnings.
    """

    def __init__(
        self,
        sink: RelationalSink,
        order: Sequence[SchemaTable],
        *,
        workers: int = DEFAULT_DB_WORKERS,
        write_timeout: float = DEFAULT_DB_WRITE_TIMEOUT,
    ) -> None:
        self._sink = sink
        self._order = list(order)
        self._workers = max(1, workers)
        self._semaphore = asyncio.Semaphore(self._workers)
        self._write_timeout = write_timeout
        self._pending: Set[asyncio.Task] = set()
        self.warnings: List[CommitWarning] = []
        self.batches = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def submit(self, batch: BatchData) -> None:
        if not batch:
            return
        # keep at most two batches per worker in memory
        while len(self._pending) >= self._workers * 2:
            await asyncio.wait(self._pending, return_when=asyncio.FIRST_COMPLETED)
        self.batches += 1
        task = asyncio.create_task(self.commit(batch), name=f"commit-{self.batches}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        await asyncio.sleep(0)

    async def commit(self, batch: BatchData) -> List[CommitWarning]:
        split = batch.split()
        produced: List[CommitWarning] = []
        async with self._semaphore:
            for table in self._order:
                part = split.get(table.name)
                if part is None:
                    continue
                if part.placeholders:
                    warning = await self._write(
                        table, PLACEHOLDER_PHASE, part.placeholders, self._sink.insert_placeholder_keys
                    )
                    if warning:
                        produced.append(warning)
                if part.rows:
                    warning = await self._write(table, ROW_PHASE, part.rows, self._sink.insert_rows)
                    if warning:
                        produced.append(warning)
        return produced

    async def _write(
        self,
        table: SchemaTable,
        phase: str,
        items: Sequence,
        operation: Callable[[SchemaTable, Sequence], Awaitable[bool]],
    ) -> Optional[CommitWarning]:
        try:
            succeeded = await asyncio.wait_for(operation(table, items), timeout=self._write_timeout)
            reason = "rejected by the database"
        except asyncio.TimeoutError:
            succeeded = False
            reason = f"timed out after {self._write_timeout:g}s"
        if succeeded:
            return None
        warning = CommitWarning(table=table.name, phase=phase, count=len(items), reason=reason)
        LOGGER.warning(
            "Failed to insert %s %s into the '%s' table (%s).",
            warning.count,
            phase,
            table.name,
            reason,
        )
        self.warnings.append(warning)
        return warning

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending))
