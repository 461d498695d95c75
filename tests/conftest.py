from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from aixm_ingestor.conversion import ValueType
from aixm_ingestor.mapping import (FeatureDescriptor, Relationship, attribute,
                                   foreign, identity, parent)
from aixm_ingestor.models import DatabaseConfig
from aixm_ingestor.registry import FeatureRegistry

THING_GROUP = "THINGS"

THING = FeatureDescriptor(
    name="Thing",
    id_pattern="THING",
    table="things",
    source_group=THING_GROUP,
    fields=(
        identity(),
        attribute("name", "Feature/name"),
        attribute("weight", "Feature/weight", ValueType.DOUBLE),
        attribute("pieces", "Extension/pieces", ValueType.INTEGER),
    ),
)

PART = FeatureDescriptor(
    name="Part",
    id_pattern="PART",
    table="parts",
    source_group=THING_GROUP,
    fields=(
        identity(),
        foreign("thingId", "thing", "Thing"),
        attribute("label", "Feature/label"),
    ),
)

NOTE = FeatureDescriptor(
    name="Note",
    id_pattern="NOTE",
    table="notes",
    parent="Thing",
    fields=(
        identity(),
        parent("thingId"),
        attribute("remark", "remark"),
        foreign("seeAlso", "seeAlso", "Part", Relationship.USES),
    ),
)


def href(feature: str, identity: str) -> str:
    return f"#xpointer(//aixm:{feature}[@gml:id='{identity}'])"


def record(
    name: str,
    identity: str,
    body: Optional[Dict[str, Any]] = None,
    extension: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build a JSON-shaped record laid out like an AIXM member."""
    slice_body = dict(body or {})
    if extension is not None:
        slice_body["extension"] = [{f"{name}Extension": extension}]
    return {name: {"@id": identity, "timeSlice": [{f"{name}TimeSlice": slice_body}]}}


@pytest.fixture
def registry() -> FeatureRegistry:
    registry = FeatureRegistry()
    registry.register_feature_type(THING)
    registry.register_feature_type(PART)
    registry.register_feature_type(NOTE)
    return registry


@pytest.fixture
def database_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(
        url=f"sqlite+aiosqlite:///{tmp_path / 'aixm.db'}",
        connect_timeout=1.0,
        workers=2,
        write_timeout=10.0,
    )
