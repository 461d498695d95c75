from enum import Enum

import pytest
from sqlalchemy import ForeignKey

from aixm_ingestor.conversion import ValueType
from aixm_ingestor.exceptions import ConfigurationError
from aixm_ingestor.mapping import (FeatureDescriptor, FieldBinding, FieldKind,
                                   Relationship, attribute, foreign, identity,
                                   parent)
from aixm_ingestor.mappings.registry import register_default_features
from aixm_ingestor.registry import FeatureRegistry


def descriptor(name, *fields, group="G", parent_feature=None, pattern=None):
    return FeatureDescriptor(
        name=name,
        id_pattern=pattern or name.upper(),
        table=name.lower(),
        source_group=group,
        parent=parent_feature,
        fields=(identity(),) + fields,
    )


def test_dependency_order_is_parent_first_regardless_of_registration():
    registry = FeatureRegistry()
    registry.register_feature_type(descriptor("C2", foreign("c1Id", "c1", "C1")))
    registry.register_feature_type(descriptor("C1", foreign("pId", "p", "P")))
    registry.register_feature_type(descriptor("P"))

    order = [table.name for table in registry.get_dependency_order()]
    assert order == ["p", "c1", "c2"]
    assert [table.name for table in registry.get_child_first_order()] == ["c2", "c1", "p"]


def test_tables_without_dependencies_keep_registration_order():
    registry = FeatureRegistry()
    registry.register_feature_type(descriptor("B", foreign("aId", "a", "A")))
    registry.register_feature_type(descriptor("Z"))
    registry.register_feature_type(descriptor("A"))
    registry.register_feature_type(descriptor("U", foreign("bId", "b", "B", Relationship.USES)))

    assert [table.name for table in registry.get_dependency_order()] == ["z", "a", "u", "b"]


def test_belongs_to_cycles_are_rejected():
    registry = FeatureRegistry()
    registry.register_feature_type(descriptor("A", foreign("bId", "b", "B")))
    registry.register_feature_type(descriptor("B", foreign("aId", "a", "A")))

    with pytest.raises(ConfigurationError, match="cycle"):
        registry.get_dependency_order()


def test_unknown_foreign_feature_fails_before_ingestion():
    registry = FeatureRegistry()
    registry.register_feature_type(descriptor("A", foreign("bId", "b", "Missing")))

    with pytest.raises(ConfigurationError, match="Missing"):
        registry.get_dependency_order()


def test_identity_field_must_be_a_string():
    numeric_id = FieldBinding(name="id", kind=FieldKind.IDENTITY, value_type=ValueType.LONG)
    bad = FeatureDescriptor(
        name="Bad", id_pattern="BAD", table="bad", source_group="G", fields=(numeric_id,)
    )
    with pytest.raises(ConfigurationError, match="must be a string"):
        FeatureRegistry().register_feature_type(bad)


def test_parent_field_must_be_a_string():
    registry = FeatureRegistry()
    registry.register_feature_type(descriptor("P"))
    numeric_parent = FieldBinding(name="pId", kind=FieldKind.PARENT, value_type=ValueType.INTEGER)
    with pytest.raises(ConfigurationError, match="must be a string"):
        registry.register_feature_type(
            descriptor("C", numeric_parent, group=None, parent_feature="P")
        )


def test_feature_without_source_group_or_parent_is_unreachable():
    with pytest.raises(ConfigurationError, match="not reachable"):
        FeatureRegistry().register_feature_type(descriptor("Orphan", group=None))


def test_parent_must_be_registered_first():
    with pytest.raises(ConfigurationError, match="not registered"):
        FeatureRegistry().register_feature_type(
            descriptor("C", parent("pId"), group=None, parent_feature="P")
        )


def test_children_inherit_the_parent_source_group():
    registry = FeatureRegistry()
    registry.register_feature_type(descriptor("P", group="FILE"))
    registry.register_feature_type(descriptor("C", parent("pId"), group=None, parent_feature="P"))
    registry.register_feature_type(descriptor("G", parent("cId"), group=None, parent_feature="C"))

    assert registry.get("G").source_group == "FILE"
    assert [entry.name for entry in registry.get_possible_entries("FILE")] == ["P", "C", "G"]
    assert registry.get_possible_entries("OTHER") == []


def test_unsupported_column_types_are_rejected():
    class Unconverted(Enum):
        A = "a"

    with pytest.raises(ConfigurationError, match="No converter"):
        FeatureRegistry().register_feature_type(descriptor("E", attribute("kind", "kind", Unconverted)))

    with pytest.raises(ConfigurationError, match="unsupported type"):
        FeatureRegistry().register_feature_type(descriptor("D", attribute("when", "when", dict)))


def test_duplicate_features_and_tables_are_rejected(registry):
    with pytest.raises(ConfigurationError, match="already registered"):
        registry.register_feature_type(descriptor("Thing"))
    with pytest.raises(ConfigurationError, match="already in use"):
        registry.register_feature_type(
            FeatureDescriptor(name="Other", id_pattern="O", table="things", source_group="G", fields=())
        )


def test_entity_mapping_separates_identity_and_parent(registry):
    mapping = registry.get("Note").mapping
    assert mapping.identity_field.name == "id"
    assert mapping.parent_field.name == "thingId"
    assert set(mapping.attribute_bindings) == {"remark", "seeAlso"}


def test_physical_schema_only_constrains_belongs_to(registry):
    notes = registry.sql_table("Note")
    parts = registry.sql_table("Part")

    assert notes.c.id.primary_key
    assert [fk.target_fullname for fk in notes.c.thing_id.foreign_keys] == ["things.id"]
    assert not notes.c.see_also.foreign_keys
    assert notes.c.see_also.index
    assert [fk.target_fullname for fk in parts.c.thing_id.foreign_keys] == ["things.id"]
    assert isinstance(next(iter(parts.c.thing_id.foreign_keys)), ForeignKey)


def test_default_features_register_in_dependency_order():
    registry = register_default_features()

    assert registry.source_groups() == ["APT_AIXM"]
    assert [table.name for table in registry.get_dependency_order()] == [
        "airports",
        "runways",
        "runway_ends",
        "runway_directions",
    ]


def test_reset_clears_everything(registry):
    registry.reset()
    assert registry.entries == []
    assert registry.get_dependency_order() == []
    assert "Thing" not in registry
