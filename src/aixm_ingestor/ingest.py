from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel
from rich.console import Console
from rich.table import Table

from .batching import BatchCommitter, BatchData, CommitWarning, RelationalSink
from .crawling import (EXTENSION_BODY, NULL, HierarchicalNode, UnknownAccessor,
                       crawl, decode_foreign_id, get, split_body)
from .db_connector import Database, utc_naive, utc_now
from .exceptions import ExtractionError, IngestorError, StaleDataError
from .mapping import FieldKind
from .models import (DEFAULT_BATCH_LIMIT, DEFAULT_DB_WORKERS,
                     DEFAULT_DB_WRITE_TIMEOUT, DEFAULT_EFFECTIVE_DAYS,
                     Enforcement, IngestionConfig)
from .registry import FeatureEntry, FeatureRegistry
from .sources import SourceProvider

LOGGER = logging.getLogger("aixm.ingestor")


class StreamContext:
    """Identities of the most recent instance of each feature in one stream."""

    def __init__(self) -> None:
        self._current: Dict[str, str] = {}

    def record(self, feature: str, identity: str) -> None:
        self._current[feature] = identity

    def current(self, feature: str) -> Optional[str]:
        return self._current.get(feature)


@dataclass
class IngestionReport:
    counts: Dict[str, int] = field(default_factory=dict)
    skipped: int = 0
    batches: int = 0
    warnings: List[CommitWarning] = field(default_factory=list)
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    elapsed: float = 0.0
    rebuilt: bool = True

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, feature: str) -> None:
        self.counts[feature] = self.counts.get(feature, 0) + 1


def identify(
    record: HierarchicalNode, entries: Sequence[FeatureEntry]
) -> Optional[Tuple[FeatureEntry, HierarchicalNode, str]]:
    """Return the first entry whose external name and id pattern match ``record``."""
    for entry in entries:
        try:
            feature_node = record.child(entry.external_name)
        except UnknownAccessor:
            return None
        if feature_node.is_null() or feature_node.is_list():
            continue
        identity = feature_node.attribute("id")
        if entry.matches(identity):
            return entry, feature_node, identity
    return None


def instance_body(entry: FeatureEntry, feature_node: HierarchicalNode) -> HierarchicalNode:
    # only the first time slice is read
    return crawl(feature_node, f"timeSlice[0]/{entry.external_name}TimeSlice")


def extension_body(entry: FeatureEntry, instance: HierarchicalNode) -> HierarchicalNode:
    if instance.is_null():
        return NULL
    return crawl(instance, f"extension[0]/{entry.external_name}Extension")


def populate(
    entry: FeatureEntry,
    feature_node: HierarchicalNode,
    identity: str,
    registry: FeatureRegistry,
    context: StreamContext,
    batch: Optional[BatchData] = None,
) -> BaseModel:
    mapping = entry.mapping
    values: Dict[str, object] = {}
    if mapping.identity_field is not None:
        values[mapping.identity_field.name] = identity
    if mapping.parent_field is not None:
        parent_id = context.current(entry.parent)
        if parent_id is None:
            raise ExtractionError(
                f"Record {identity} appeared before any '{entry.parent}' parent",
                feature=entry.name,
            )
        values[mapping.parent_field.name] = parent_id
        if batch is not None:
            batch.add_placeholder(registry.get(entry.parent).table_name, parent_id)

    try:
        instance = instance_body(entry, feature_node)
        extension = extension_body(entry, instance)
    except ExtractionError as exc:
        raise ExtractionError(exc.reason, feature=entry.name, path=exc.path) from exc

    for binding in mapping.attribute_bindings.values():
        body, path = split_body(binding.path)
        root = extension if body == EXTENSION_BODY else instance
        try:
            node = crawl(root, path)
        except ExtractionError as exc:
            raise ExtractionError(exc.reason, feature=entry.name, path=binding.path) from exc
        if binding.kind is FieldKind.FOREIGN:
            values[binding.name] = decode_foreign_id(node, registry.get(binding.references), batch)
        else:
            values[binding.name] = get(node, binding.value_type, registry.conversion)

    context.record(entry.name, identity)
    return mapping.model(**values)


def check_effective_range(
    effective_from: datetime,
    enforcement: Enforcement,
    days: int = DEFAULT_EFFECTIVE_DAYS,
    now: Optional[datetime] = None,
) -> Tuple[datetime, datetime]:
    start = utc_naive(effective_from)
    end = start + timedelta(days=days)
    moment = utc_naive(now) or utc_now()
    if enforcement is Enforcement.IGNORE or start <= moment <= end:
        return start, end
    message = f"Source data is effective from {start:%Y-%m-%d} to {end:%Y-%m-%d}, now is {moment:%Y-%m-%d}"
    if enforcement is Enforcement.STRICT:
        raise StaleDataError(message)
    LOGGER.warning("%s; continuing with out-of-date data", message)
    return start, end


async def load_source_group(
    group: str,
    registry: FeatureRegistry,
    source: SourceProvider,
    committer: BatchCommitter,
    report: IngestionReport,
    *,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
    enforcement: Enforcement = Enforcement.LENIENT,
    effective_days: int = DEFAULT_EFFECTIVE_DAYS,
    stop: Optional[asyncio.Event] = None,
) -> None:
    stream = source.open_stream(group)
    if stream is None:
        LOGGER.warning("No data available for source group %s, skipping", group)
        return

    entries = registry.get_possible_entries(group)
    context = StreamContext()
    batch = BatchData()
    started = time.perf_counter()
    loaded = 0
    with stream:
        for position, record in enumerate(stream):
            if stop is not None and stop.is_set():
                LOGGER.warning("Stop requested, no further records read from %s", group)
                break
            if position == 0 and stream.effective_from is not None:
                report.effective_from, report.effective_to = check_effective_range(
                    stream.effective_from, enforcement, effective_days
                )
            match = identify(record, entries)
            if match is None:
                report.skipped += 1
                continue
            entry, feature_node, identity = match
            entity = populate(entry, feature_node, identity, registry, context, batch)
            key = identity if entry.mapping.identity_field is not None else None
            batch.add_feature(entry.table_name, key, entity)
            report.count(entry.name)
            loaded += 1
            if batch.size >= batch_limit:
                await committer.submit(batch)
                batch = BatchData()
    await committer.submit(batch)
    LOGGER.info(
        "Read %s entries from %s in %.2f seconds",
        loaded,
        group,
        time.perf_counter() - started,
    )


async def ingest(
    registry: FeatureRegistry,
    source: SourceProvider,
    sink: RelationalSink,
    *,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
    workers: int = DEFAULT_DB_WORKERS,
    write_timeout: float = DEFAULT_DB_WRITE_TIMEOUT,
    enforcement: Enforcement = Enforcement.LENIENT,
    effective_days: int = DEFAULT_EFFECTIVE_DAYS,
    stop: Optional[asyncio.Event] = None,
) -> IngestionReport:
    """Read every registered source group and commit it into ``sink``."""
    report = IngestionReport()
    committer = BatchCommitter(
        sink,
        registry.get_dependency_order(),
        workers=workers,
        write_timeout=write_timeout,
    )
    started = time.perf_counter()
    try:
        for group in registry.source_groups():
            await load_source_group(
                group,
                registry,
                source,
                committer,
                report,
                batch_limit=batch_limit,
                enforcement=enforcement,
                effective_days=effective_days,
                stop=stop,
            )
            if stop is not None and stop.is_set():
                break
    except asyncio.CancelledError:
        LOGGER.warning(
            "Ingestion cancelled, waiting for %s dispatched batches", committer.pending
        )
        raise
    except IngestorError as exc:
        LOGGER.error(
            "Ingestion aborted (%s), waiting for %s dispatched batches", exc, committer.pending
        )
        raise
    finally:
        await committer.drain()

    report.batches = committer.batches
    report.warnings = list(committer.warnings)
    report.elapsed = time.perf_counter() - started
    LOGGER.info(
        "Generated %s entries in %.2f seconds (%s total database batches)",
        report.total,
        report.elapsed,
        report.batches,
    )
    return report


async def run_ingestion(
    config: IngestionConfig,
    registry: FeatureRegistry,
    source: SourceProvider,
    console: Optional[Console] = None,
) -> IngestionReport:
    active_console = console or Console()
    database = Database(config.database, registry)
    await database.open()
    enforcement = config.source.enforcement if config.source else Enforcement.LENIENT
    effective_days = config.source.effective_days if config.source else DEFAULT_EFFECTIVE_DAYS
    try:
        if not await database.is_rebuild_needed(config.database.force_rebuild, enforcement):
            LOGGER.info("Database is current, nothing to ingest")
            return IngestionReport(rebuilt=False)

        await database.rebuild()
        with active_console.status("Loading AIXM data..."):
            report = await ingest(
                registry,
                source,
                database,
                batch_limit=config.batch_limit,
                workers=config.database.workers,
                write_timeout=config.database.write_timeout,
                enforcement=enforcement,
                effective_days=effective_days,
            )
        if report.effective_from is not None:
            await database.write_effective_range(report.effective_from, report.effective_to)
    finally:
        await database.dispose()

    render_report(report, active_console)
    return report


def render_report(report: IngestionReport, console: Console) -> None:
    counts = Table(title="Ingested features")
    counts.add_column("Feature")
    counts.add_column("Rows", justify="right")
    for feature, count in report.counts.items():
        counts.add_row(feature, str(count))
    counts.add_row("[dim]skipped records[/dim]", str(report.skipped))
    console.print(counts)

    if report.warnings:
        warnings = Table(title="Write warnings", style="yellow")
        warnings.add_column("Table")
        warnings.add_column("Phase")
        warnings.add_column("Count", justify="right")
        warnings.add_column("Reason")
        for warning in report.warnings:
            warnings.add_row(warning.table, warning.phase, str(warning.count), warning.reason)
        console.print(warnings)
    console.print(
        f"{report.total} entries in {report.batches} batches, {report.elapsed:.1f}s"
    )
