"""Feature descriptors for the FAA NASR AIXM subscriber files."""

from . import airport, common, registry, runway

__all__ = [
    "airport",
    "common",
    "registry",
    "runway",
]
