"""Process-wide registry of feature types, their tables and source groups."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import MetaData, Table

from .conversion import (ConversionRegistry, ValueType, default_registry,
                         is_enum_type)
from .crawling import parse_path
from .exceptions import ConfigurationError
from .mapping import (EntityMapping, FeatureDescriptor, FieldBinding,
                      FieldKind, Relationship, build_entity_mapping)
from .schema import ForeignKeyRef, SchemaTable, order_tables, table_name

LOGGER = logging.getLogger("aixm.ingestor.registry")

ID_SUFFIX_PATTERN = "_[0-9_]+"


@dataclass
class FeatureEntry:
    name: str
    external_name: str
    id_pattern: str
    source_group: str
    mapping: EntityMapping
    schema: SchemaTable
    parent: Optional[str] = None
    _id_regex: re.Pattern = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._id_regex = re.compile(f"(?:{self.id_pattern}){ID_SUFFIX_PATTERN}")

    @property
    def table_name(self) -> str:
        return self.schema.name

    def matches(self, identity: Optional[str]) -> bool:
        return identity is not None and self._id_regex.fullmatch(identity) is not None


class FeatureRegistry:
    def __init__(self, conversion: Optional[ConversionRegistry] = None) -> None:
        self.conversion = conversion or default_registry()
        self._entries: Dict[str, FeatureEntry] = {}
        self._by_group: Dict[str, List[FeatureEntry]] = {}
        self._order: Optional[List[SchemaTable]] = None
        self._metadata: Optional[MetaData] = None

    # registration ---------------------------------------------------------

    def register_feature_type(self, descriptor: FeatureDescriptor) -> FeatureEntry:
        name = descriptor.name
        if name in self._entries:
            raise ConfigurationError(f"Feature '{name}' is already registered")
        physical_name = table_name(descriptor.table)
        if any(entry.table_name == physical_name for entry in self._entries.values()):
            raise ConfigurationError(
                f"Table '{physical_name}' of feature '{name}' is already in use"
            )
        try:
            re.compile(descriptor.id_pattern)
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid id pattern '{descriptor.id_pattern}' for feature '{name}': {exc}"
            ) from exc

        self._check_fields(descriptor)
        source_group = self._resolve_source_group(descriptor)
        mapping = build_entity_mapping(descriptor)
        schema = self._build_schema(descriptor, physical_name)

        entry = FeatureEntry(
            name=name,
            external_name=descriptor.record_name,
            id_pattern=descriptor.id_pattern,
            source_group=source_group,
            mapping=mapping,
            schema=schema,
            parent=descriptor.parent,
        )
        self._entries[name] = entry
        self._by_group.setdefault(source_group, []).append(entry)
        self._order = None
        self._metadata = None

        LOGGER.info(
            "Registered feature %s (%d fields) from source group %s",
            name,
            len(descriptor.fields),
            source_group,
        )
        LOGGER.debug(
            "Feature %s maps '%s' records with ids matching %s into table %s",
            name,
            entry.external_name,
            entry.id_pattern,
            entry.table_name,
        )
        return entry

    def _check_fields(self, descriptor: FeatureDescriptor) -> None:
        name = descriptor.name
        seen_names = set()
        seen_columns = set()
        counts = {FieldKind.IDENTITY: 0, FieldKind.PARENT: 0}
        for binding in descriptor.fields:
            if binding.name in seen_names:
                raise ConfigurationError(f"Duplicate field '{binding.name}' in feature '{name}'")
            if binding.column_name in seen_columns:
                raise ConfigurationError(
                    f"Duplicate column '{binding.column_name}' in feature '{name}'"
                )
            seen_names.add(binding.name)
            seen_columns.add(binding.column_name)

            if binding.kind in counts:
                counts[binding.kind] += 1
                if counts[binding.kind] > 1:
                    raise ConfigurationError(
                        f"Feature '{name}' declares more than one {binding.kind.value} field"
                    )
            if binding.kind in (FieldKind.IDENTITY, FieldKind.PARENT, FieldKind.FOREIGN):
                if binding.value_type is not ValueType.STRING:
                    raise ConfigurationError(
                        f"{binding.kind.value.capitalize()} field '{binding.name}' of "
                        f"feature '{name}' must be a string"
                    )
            if binding.kind in (FieldKind.ATTRIBUTE, FieldKind.FOREIGN):
                if not binding.path:
                    raise ConfigurationError(
                        f"Field '{binding.name}' of feature '{name}' has no path"
                    )
                parse_path(binding.path)
            if binding.kind is FieldKind.FOREIGN and not binding.references:
                raise ConfigurationError(
                    f"Foreign field '{binding.name}' of feature '{name}' names no feature"
                )
            if binding.kind is FieldKind.ATTRIBUTE:
                self._check_value_type(name, binding)

        if counts[FieldKind.PARENT] and descriptor.parent is None:
            raise ConfigurationError(
                f"Feature '{name}' declares a parent field but no parent feature"
            )

    def _check_value_type(self, feature: str, binding: FieldBinding) -> None:
        value_type = binding.value_type
        if not isinstance(value_type, ValueType) and not is_enum_type(value_type):
            raise ConfigurationError(
                f"Field '{binding.name}' of feature '{feature}' has unsupported type {value_type!r}"
            )
        if not self.conversion.supports(value_type):
            raise ConfigurationError(
                f"No converter registered for field '{binding.name}' of feature '{feature}'"
            )

    def _resolve_source_group(self, descriptor: FeatureDescriptor) -> str:
        if descriptor.parent is None:
            if descriptor.source_group is None:
                raise ConfigurationError(
                    f"Feature '{descriptor.name}' is not reachable: it declares neither "
                    "a source group nor a parent feature"
                )
            return descriptor.source_group
        parent_entry = self._entries.get(descriptor.parent)
        if parent_entry is None:
            raise ConfigurationError(
                f"Parent feature '{descriptor.parent}' of '{descriptor.name}' is not registered"
            )
        if descriptor.source_group not in (None, parent_entry.source_group):
            raise ConfigurationError(
                f"Feature '{descriptor.name}' declares source group '{descriptor.source_group}' "
                f"but its parent '{parent_entry.name}' is read from '{parent_entry.source_group}'"
            )
        return parent_entry.source_group

    def _build_schema(self, descriptor: FeatureDescriptor, physical_name: str) -> SchemaTable:
        columns = {}
        primary_key = None
        foreign_keys = {}
        for binding in descriptor.fields:
            column = binding.column_name
            columns[column] = binding.value_type
            if binding.kind is FieldKind.IDENTITY:
                primary_key = column
            elif binding.kind is FieldKind.PARENT:
                foreign_keys[column] = ForeignKeyRef(descriptor.parent, Relationship.BELONGS_TO)
            elif binding.kind is FieldKind.FOREIGN:
                foreign_keys[column] = ForeignKeyRef(binding.references, binding.relationship)
        return SchemaTable(
            name=physical_name,
            feature=descriptor.name,
            columns=columns,
            primary_key=primary_key,
            foreign_keys=foreign_keys,
        )

    # lookup ---------------------------------------------------------------

    def get(self, name: str) -> FeatureEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise ConfigurationError(f"Feature '{name}' is not registered") from None

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    @property
    def entries(self) -> List[FeatureEntry]:
        return list(self._entries.values())

    def source_groups(self) -> List[str]:
        return list(self._by_group)

    def get_possible_entries(self, source_group: str) -> List[FeatureEntry]:
        return list(self._by_group.get(source_group, ()))

    def get_dependency_order(self) -> List[SchemaTable]:
        if self._order is None:
            self._validate_references()
            self._order = order_tables([entry.schema for entry in self._entries.values()])
        return list(self._order)

    def get_child_first_order(self) -> List[SchemaTable]:
        return list(reversed(self.get_dependency_order()))

    def _validate_references(self) -> None:
        for entry in self._entries.values():
            for column, ref in entry.schema.foreign_keys.items():
                if ref.feature not in self._entries:
                    raise ConfigurationError(
                        f"Column '{column}' of feature '{entry.name}' references "
                        f"unregistered feature '{ref.feature}'"
                    )
                target = self._entries[ref.feature]
                if target.mapping.identity_field is None:
                    raise ConfigurationError(
                        f"Column '{column}' of feature '{entry.name}' references "
                        f"'{target.name}', which has no identity field"
                    )

    # physical schema --------------------------------------------------------

    @property
    def metadata(self) -> MetaData:
        if self._metadata is None:
            metadata = MetaData()
            by_feature = {entry.name: entry.schema for entry in self._entries.values()}
            for schema in self.get_dependency_order():
                schema.build(metadata, by_feature)
            self._metadata = metadata
        return self._metadata

    def sql_table(self, feature: str) -> Table:
        return self.metadata.tables[self.get(feature).table_name]

    def reset(self) -> None:
        self._entries.clear()
        self._by_group.clear()
        self._order = None
        self._metadata = None
