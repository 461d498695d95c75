"""Runways and their ends share the ``Runway`` element; ids tell them apart."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

from ..conversion import ValueType
from ..mapping import FeatureDescriptor, attribute, foreign, identity
from .common import AIRPORT_FILE

if TYPE_CHECKING:
    from ..db_connector import Database

RUNWAY = FeatureDescriptor(
    name="Runway",
    id_pattern="RWY",
    table="runways",
    source_group=AIRPORT_FILE,
    fields=(
        identity(),
        foreign("airportId", "associatedAirportHeliport", "Airport"),
        attribute("designator", "Feature/designator"),
        attribute("length", "Feature/lengthStrip", ValueType.DOUBLE),
        attribute("width", "Feature/widthStrip", ValueType.DOUBLE),
    ),
)

RUNWAY_END = FeatureDescriptor(
    name="RunwayEnd",
    external_name="Runway",
    id_pattern="(RWY_BASE_END|RWY_RECIPROCAL_END)",
    table="runway_ends",
    source_group=AIRPORT_FILE,
    fields=(
        identity(),
        foreign("airportId", "associatedAirportHeliport", "Airport"),
        attribute("designator", "Feature/designator"),
    ),
)

RUNWAY_DIRECTION = FeatureDescriptor(
    name="RunwayDirection",
    id_pattern="(RWY_DIRECTION_BASE_END|RWY_DIRECTION_RECIPROCAL_END)",
    table="runway_directions",
    source_group=AIRPORT_FILE,
    fields=(
        identity(),
        foreign("runwayEndId", "usedRunway", "RunwayEnd"),
        attribute("latitude", "Extension/ElevatedPoint/pos[1]", ValueType.DOUBLE),
        attribute("longitude", "Extension/ElevatedPoint/pos[0]", ValueType.DOUBLE),
    ),
)


async def runway_direction(database: "Database", runway_end: BaseModel) -> Optional[BaseModel]:
    """Return the direction record that uses ``runway_end``."""
    return await database.select_related(RUNWAY_DIRECTION.name, "runwayEndId", runway_end.id)
