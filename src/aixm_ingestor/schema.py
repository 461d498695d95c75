from __future__ import annotations

import logging
from dataclasses import dataclass, field
from hashlib import blake2b
from typing import Dict, List, Optional, Sequence

from sqlalchemy import (BigInteger, Boolean, Column, Double, Float,
                        ForeignKey, Integer, MetaData, SmallInteger, String,
                        Table, Text)

from .conversion import SemanticType, ValueType, is_enum_type
from .exceptions import ConfigurationError
from .mapping import Relationship

LOGGER = logging.getLogger("aixm.ingestor.schema")

MAX_IDENTIFIER_LENGTH = 63
SURROGATE_KEY = "row_id"
ENUM_NAME_LENGTH = 64

COLUMN_TYPES = {
    ValueType.BOOLEAN: Boolean,
    ValueType.BYTE: SmallInteger,
    ValueType.SHORT: SmallInteger,
    ValueType.INTEGER: Integer,
    ValueType.LONG: BigInteger,
    ValueType.FLOAT: Float,
    ValueType.DOUBLE: Double,
    ValueType.CHARACTER: lambda: String(1),
    ValueType.STRING: Text,
}


def table_name(base: str) -> str:
    """Fit ``base`` into the identifier limit, suffixing a digest when cut."""
    if len(base) <= MAX_IDENTIFIER_LENGTH:
        return base
    digest = blake2b(base.encode("utf-8"), digest_size=4).hexdigest()
    prefix_limit = MAX_IDENTIFIER_LENGTH - len(digest) - 1
    prefix = base[:prefix_limit].rstrip("_") or base[:prefix_limit]
    return f"{prefix}_{digest}"


def column_type(value_type: SemanticType):
    if is_enum_type(value_type):
        return String(ENUM_NAME_LENGTH)
    factory = COLUMN_TYPES.get(value_type)
    if factory is None:
        raise ConfigurationError(f"Unsupported column type {value_type!r}")
    return factory()


@dataclass(frozen=True)
class ForeignKeyRef:
    feature: str
    relationship: Relationship


@dataclass
class SchemaTable:
    name: str
    feature: str
    columns: Dict[str, SemanticType]
    primary_key: Optional[str] = None
    foreign_keys: Dict[str, ForeignKeyRef] = field(default_factory=dict)

    @property
    def key_column(self) -> str:
        return self.primary_key or SURROGATE_KEY

    def depends_on(self) -> List[str]:
        """Features this table must be inserted after."""
        return [
            ref.feature
            for ref in self.foreign_keys.values()
            if ref.relationship is Relationship.BELONGS_TO and ref.feature != self.feature
        ]

    def build(self, metadata: MetaData, targets: Dict[str, "SchemaTable"]) -> Table:
        columns: List[Column] = []
        if self.primary_key is None:
            columns.append(Column(SURROGATE_KEY, Integer, primary_key=True, autoincrement=True))
        for name, value_type in self.columns.items():
            ref = self.foreign_keys.get(name)
            if name == self.primary_key:
                columns.append(Column(name, column_type(value_type), primary_key=True))
            elif ref is not None and ref.relationship is Relationship.BELONGS_TO:
                target = targets[ref.feature]
                columns.append(
                    Column(
                        name,
                        column_type(value_type),
                        ForeignKey(f"{target.name}.{target.key_column}", ondelete="CASCADE"),
                        index=True,
                    )
                )
            elif ref is not None:
                columns.append(Column(name, column_type(value_type), index=True))
            else:
                columns.append(Column(name, column_type(value_type)))
        LOGGER.debug("Built table %s with %d columns", self.name, len(columns))
        return Table(self.name, metadata, *columns)


def order_tables(tables: Sequence[SchemaTable]) -> List[SchemaTable]:
    """Order tables parent-first along BELONGS_TO edges.

    Tables are emitted in layers; within a layer registration order is kept,
    so tables without dependencies always come first.
    """
    by_feature = {table.feature: table for table in tables}
    for table in tables:
        for dependency in table.depends_on():
            if dependency not in by_feature:
                raise ConfigurationError(
                    f"Table '{table.name}' references unknown feature '{dependency}'"
                )

    placed: Dict[str, SchemaTable] = {}
    ordered: List[SchemaTable] = []
    remaining = list(tables)
    while remaining:
        layer = [
            table
            for table in remaining
            if all(dependency in placed for dependency in table.depends_on())
        ]
        if not layer:
            names = ", ".join(table.name for table in remaining)
            raise ConfigurationError(f"Dependency cycle between tables: {names}")
        for table in layer:
            placed[table.feature] = table
            ordered.append(table)
        remaining = [table for table in remaining if table.feature not in placed]
    return ordered
