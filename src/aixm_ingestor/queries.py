"""Predicate and sort builders for single-feature selects.

Queries name features and their declared field names; they are translated to
SQLAlchemy clauses against the feature's table only when executed::

    query = where_equals("Runway", "airportId", "AH_0004") & where_greater_than(
        "Runway", "length", 5000.0
    )
    runways = await database.select_all("Runway", query, Sort.descending("length"))

``AndQuery.and_`` and ``OrQuery.or_`` append to the receiver, as do ``&`` and
``|`` on a combined query, so ``q1 & x`` also extends ``q1``. Build a fresh
query instead of reusing a combined one. ``Sort.then`` extends the sort in place
the same way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Tuple, Union

from sqlalchemy import and_, or_
from sqlalchemy.sql.elements import ColumnElement

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .registry import FeatureEntry, FeatureRegistry


class QueryOperation(Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    GREATER_THAN_EQUALS = ">="
    LESS_THAN = "<"
    LESS_THAN_EQUALS = "<="
    LIKE = "LIKE"


class Order(Enum):
    ASCENDING = "ASC"
    DESCENDING = "DESC"


class Query:
    def and_(self, other: "Query") -> "Query":
        return AndQuery([self, other])

    def or_(self, other: "Query") -> "Query":
        return OrQuery([self, other])

    def __and__(self, other: "Query") -> "Query":
        return self.and_(other)

    def __or__(self, other: "Query") -> "Query":
        return self.or_(other)


@dataclass
class SingleQuery(Query):
    feature: str
    attribute: str
    expected: Any
    operation: QueryOperation = QueryOperation.EQUALS


@dataclass
class AndQuery(Query):
    queries: List[Query] = field(default_factory=list)

    def and_(self, other: Query) -> Query:
        self.queries.append(other)
        return self


@dataclass
class OrQuery(Query):
    queries: List[Query] = field(default_factory=list)

    def or_(self, other: Query) -> Query:
        self.queries.append(other)
        return self


FeatureRef = Union[str, "FeatureEntry"]


def _feature_name(feature: FeatureRef) -> str:
    return feature if isinstance(feature, str) else feature.name


def _single(feature: FeatureRef, attribute: str, expected: Any, operation: QueryOperation) -> SingleQuery:
    return SingleQuery(_feature_name(feature), attribute, expected, operation)


def where_equals(feature: FeatureRef, attribute: str, expected: Any) -> SingleQuery:
    return _single(feature, attribute, expected, QueryOperation.EQUALS)


def where_not_equals(feature: FeatureRef, attribute: str, expected: Any) -> SingleQuery:
    return _single(feature, attribute, expected, QueryOperation.NOT_EQUALS)


def where_greater_than(feature: FeatureRef, attribute: str, expected: Any) -> SingleQuery:
    return _single(feature, attribute, expected, QueryOperation.GREATER_THAN)


def where_greater_than_equals(feature: FeatureRef, attribute: str, expected: Any) -> SingleQuery:
    return _single(feature, attribute, expected, QueryOperation.GREATER_THAN_EQUALS)


def where_less_than(feature: FeatureRef, attribute: str, expected: Any) -> SingleQuery:
    return _single(feature, attribute, expected, QueryOperation.LESS_THAN)


def where_less_than_equals(feature: FeatureRef, attribute: str, expected: Any) -> SingleQuery:
    return _single(feature, attribute, expected, QueryOperation.LESS_THAN_EQUALS)


def where_like(feature: FeatureRef, attribute: str, pattern: str) -> SingleQuery:
    """Match ``attribute`` against a SQL LIKE pattern (``%`` and ``_`` wildcards)."""
    return _single(feature, attribute, pattern, QueryOperation.LIKE)


@dataclass
class Sort:
    keys: List[Tuple[str, Order]] = field(default_factory=list)

    @classmethod
    def ascending(cls, attribute: str) -> "Sort":
        return cls([(attribute, Order.ASCENDING)])

    @classmethod
    def descending(cls, attribute: str) -> "Sort":
        return cls([(attribute, Order.DESCENDING)])

    def then(self, attribute: str, order: Order = Order.ASCENDING) -> "Sort":
        self.keys.append((attribute, order))
        return self


def _column(registry: "FeatureRegistry", feature: str, attribute: str):
    entry = registry.get(feature)
    binding = entry.mapping.binding(attribute)
    if binding is None:
        raise ConfigurationError(f"Feature '{feature}' has no attribute '{attribute}'")
    return registry.sql_table(feature).c[binding.column_name]


def _literal(value: Any) -> Any:
    return value.name if isinstance(value, Enum) else value


def compile_query(query: Query, registry: "FeatureRegistry", feature: str) -> ColumnElement:
    if isinstance(query, AndQuery):
        return and_(*(compile_query(item, registry, feature) for item in query.queries))
    if isinstance(query, OrQuery):
        return or_(*(compile_query(item, registry, feature) for item in query.queries))
    if not isinstance(query, SingleQuery):
        raise ConfigurationError(f"Unsupported query type {type(query).__name__}")
    if query.feature != feature:
        raise ConfigurationError(
            f"Query on '{query.feature}' cannot be used to select '{feature}'"
        )

    column = _column(registry, feature, query.attribute)
    expected = _literal(query.expected)
    operation = query.operation
    if operation is QueryOperation.EQUALS:
        return column.is_(None) if expected is None else column == expected
    if operation is QueryOperation.NOT_EQUALS:
        return column.is_not(None) if expected is None else column != expected
    if operation is QueryOperation.GREATER_THAN:
        return column > expected
    if operation is QueryOperation.GREATER_THAN_EQUALS:
        return column >= expected
    if operation is QueryOperation.LESS_THAN:
        return column < expected
    if operation is QueryOperation.LESS_THAN_EQUALS:
        return column <= expected
    return column.like(expected)


def compile_sort(sort: Sort, registry: "FeatureRegistry", feature: str) -> List[ColumnElement]:
    clauses = []
    for attribute, order in sort.keys:
        column = _column(registry, feature, attribute)
        clauses.append(column.desc() if order is Order.DESCENDING else column.asc())
    return clauses
