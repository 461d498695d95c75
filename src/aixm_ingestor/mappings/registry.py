"""Default feature set, in registration order."""

from __future__ import annotations

from typing import Optional, Tuple

from ..mapping import FeatureDescriptor
from ..registry import FeatureRegistry
from .airport import AIRPORT
from .common import register_converters
from .runway import RUNWAY, RUNWAY_DIRECTION, RUNWAY_END

DEFAULT_FEATURES: Tuple[FeatureDescriptor, ...] = (
    AIRPORT,
    RUNWAY,
    RUNWAY_END,
    RUNWAY_DIRECTION,
)


def register_default_features(registry: Optional[FeatureRegistry] = None) -> FeatureRegistry:
    registry = registry or FeatureRegistry()
    register_converters(registry.conversion)
    for descriptor in DEFAULT_FEATURES:
        registry.register_feature_type(descriptor)
    return registry
