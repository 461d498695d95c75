"""Shared enumerations and converters for NASR extension data."""

from __future__ import annotations

from enum import Enum

from ..conversion import ConversionRegistry, EnumConverter

AIRPORT_FILE = "APT_AIXM"


class Ownership(Enum):
    AIR_FORCE = "air_force"
    NAVY = "navy"
    ARMY = "army"
    PRIVATE = "private"
    PUBLIC = "public"


class OwnershipConverter(EnumConverter):
    """NASR ownership codes (MA, MN, MR, PR, PU)."""

    def __init__(self) -> None:
        super().__init__(
            Ownership,
            {
                "MA": Ownership.AIR_FORCE,
                "MN": Ownership.NAVY,
                "MR": Ownership.ARMY,
                "PR": Ownership.PRIVATE,
                "PU": Ownership.PUBLIC,
            },
        )


def register_converters(conversion: ConversionRegistry) -> None:
    conversion.register(OwnershipConverter())
