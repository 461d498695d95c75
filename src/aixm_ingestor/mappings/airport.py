from __future__ import annotations

from ..conversion import ValueType
from ..mapping import FeatureDescriptor, attribute, identity
from .common import AIRPORT_FILE, Ownership

AIRPORT = FeatureDescriptor(
    name="Airport",
    external_name="AirportHeliport",
    id_pattern="AH",
    table="airports",
    source_group=AIRPORT_FILE,
    fields=(
        identity(),
        attribute("name", "Feature/name"),
        attribute("iataDesignator", "Feature/designator", column="iata"),
        attribute("icao", "Feature/locationIndicatorICAO"),
        attribute("siteNumber", "Extension/airportSiteNumber"),
        attribute("fieldElevation", "Feature/fieldElevation", ValueType.DOUBLE),
        attribute("landArea", "Extension/landSize", ValueType.DOUBLE),
        # gml:pos is "longitude latitude"
        attribute("latitude", "Feature/ARP/ElevatedPoint/pos[1]", ValueType.DOUBLE),
        attribute("longitude", "Feature/ARP/ElevatedPoint/pos[0]", ValueType.DOUBLE),
        attribute("county", "Extension/countyName"),
        attribute("state", "Extension/stateName"),
        attribute("servedCity", "Feature/servedCity[0]/City/name"),
        attribute("ownership", "Extension/ownershipType", Ownership),
        attribute(
            "numberOfSingleEngineAircraft",
            "Extension/numberOfSingleEngineAircraft",
            ValueType.INTEGER,
        ),
        attribute(
            "numberOfMultiEngineAircraft",
            "Extension/numberOfMultiEngineAircraft",
            ValueType.INTEGER,
        ),
        attribute(
            "numberOfJetEngineAircraft",
            "Extension/numberOfJetEngineAircraft",
            ValueType.INTEGER,
        ),
        attribute("numberOfHelicopters", "Extension/numberOfHelicopter", ValueType.INTEGER),
        attribute("numberOfGliders", "Extension/numberOfOperationalGlider", ValueType.INTEGER),
        attribute(
            "numberOfMilitaryAircraft",
            "Extension/numberOfMilitaryAircraft",
            ValueType.INTEGER,
        ),
        attribute(
            "numberOfUltralightAircraft",
            "Extension/numberOfUltralightAircraft",
            ValueType.INTEGER,
        ),
    ),
)
