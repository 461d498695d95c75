"""Declarative feature descriptors and the entity mappings derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, create_model

from .conversion import SemanticType, ValueType, python_type


class FieldKind(Enum):
    IDENTITY = "identity"
    PARENT = "parent"
    ATTRIBUTE = "attribute"
    FOREIGN = "foreign"


class Relationship(Enum):
    """Kind of a foreign key; only BELONGS_TO orders inserts."""

    BELONGS_TO = "belongs_to"
    USES = "uses"


def to_snake_case(value: str) -> str:
    result = []
    prev_lower = False
    for char in value:
        if char.isupper() and prev_lower:
            result.append("_")
        result.append(char.lower() if char.isalnum() else "_")
        prev_lower = char.islower() or char.isdigit()
    snake = "".join(result)
    while "__" in snake:
        snake = snake.replace("__", "_")
    return snake.strip("_")


@dataclass(frozen=True)
class FieldBinding:
    name: str
    path: Optional[str] = None
    value_type: SemanticType = ValueType.STRING
    kind: FieldKind = FieldKind.ATTRIBUTE
    references: Optional[str] = None
    relationship: Relationship = Relationship.BELONGS_TO
    column: Optional[str] = None

    @property
    def column_name(self) -> str:
        return self.column or to_snake_case(self.name)


def identity(name: str = "id", column: Optional[str] = None) -> FieldBinding:
    return FieldBinding(name=name, kind=FieldKind.IDENTITY, column=column)


def parent(name: str, column: Optional[str] = None) -> FieldBinding:
    """Field holding the identity of the enclosing parent instance."""
    return FieldBinding(name=name, kind=FieldKind.PARENT, column=column)


def attribute(
    name: str,
    path: str,
    value_type: SemanticType = ValueType.STRING,
    column: Optional[str] = None,
) -> FieldBinding:
    return FieldBinding(name=name, path=path, value_type=value_type, column=column)


def foreign(
    name: str,
    path: str,
    feature: str,
    relationship: Relationship = Relationship.BELONGS_TO,
    column: Optional[str] = None,
) -> FieldBinding:
    return FieldBinding(
        name=name,
        path=path,
        kind=FieldKind.FOREIGN,
        references=feature,
        relationship=relationship,
        column=column,
    )


@dataclass(frozen=True)
class FeatureDescriptor:
    """Everything needed to register one feature type.

    ``external_name`` is the element name of matching records and defaults to
    ``name``. A feature is anchored to a source group either directly through
    ``source_group`` or through its ``parent`` chain.
    """

    name: str
    id_pattern: str
    table: str
    fields: Tuple[FieldBinding, ...]
    external_name: Optional[str] = None
    source_group: Optional[str] = None
    parent: Optional[str] = None

    @property
    def record_name(self) -> str:
        return self.external_name or self.name


@dataclass
class EntityMapping:
    identity_field: Optional[FieldBinding]
    parent_field: Optional[FieldBinding]
    attribute_bindings: Dict[str, FieldBinding]
    model: Type[BaseModel]
    fields: Dict[str, FieldBinding] = field(default_factory=dict)

    def binding(self, name: str) -> Optional[FieldBinding]:
        return self.fields.get(name)

    def to_row(self, entity: BaseModel) -> Dict[str, Any]:
        return {
            binding.column_name: getattr(entity, binding.name)
            for binding in self.fields.values()
        }


def build_entity_mapping(descriptor: FeatureDescriptor) -> EntityMapping:
    identity_field = None
    parent_field = None
    attributes: Dict[str, FieldBinding] = {}
    model_fields: Dict[str, Any] = {}
    for binding in descriptor.fields:
        if binding.kind is FieldKind.IDENTITY:
            identity_field = binding
        elif binding.kind is FieldKind.PARENT:
            parent_field = binding
        else:
            attributes[binding.name] = binding
        model_fields[binding.name] = (Optional[python_type(binding.value_type)], None)

    model = create_model(
        descriptor.name,
        __config__=ConfigDict(extra="forbid", validate_assignment=True),
        **model_fields,
    )
    return EntityMapping(
        identity_field=identity_field,
        parent_field=parent_field,
        attribute_bindings=attributes,
        model=model,
        fields={binding.name: binding for binding in descriptor.fields},
    )
