"""Conversion of raw record values into typed column values.

Converters are looked up by the semantic type they produce. Each converter
declares which raw categories (Python types as produced by the record nodes)
it accepts; anything else converts to ``None`` instead of raising.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

LOGGER = logging.getLogger("aixm.ingestor.conversion")


class ValueType(Enum):
    BOOLEAN = "boolean"
    BYTE = "byte"
    SHORT = "short"
    INTEGER = "integer"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    CHARACTER = "character"
    STRING = "string"


SemanticType = Union[ValueType, Type[Enum]]

PYTHON_TYPES: Dict[ValueType, type] = {
    ValueType.BOOLEAN: bool,
    ValueType.BYTE: int,
    ValueType.SHORT: int,
    ValueType.INTEGER: int,
    ValueType.LONG: int,
    ValueType.FLOAT: float,
    ValueType.DOUBLE: float,
    ValueType.CHARACTER: str,
    ValueType.STRING: str,
}

INTEGER_BITS: Dict[ValueType, int] = {
    ValueType.BYTE: 8,
    ValueType.SHORT: 16,
    ValueType.INTEGER: 32,
    ValueType.LONG: 64,
}

TRUE_TOKENS = frozenset({"yes", "true", "1", "y"})
FALSE_TOKENS = frozenset({"no", "false", "0", "n"})


def python_type(target: SemanticType) -> type:
    if isinstance(target, ValueType):
        return PYTHON_TYPES[target]
    return target


def is_enum_type(target: Any) -> bool:
    return isinstance(target, type) and issubclass(target, Enum)


class Converter:
    """Produce values of ``target`` from accepted raw categories."""

    target: SemanticType
    accepts: Tuple[type, ...] = (str,)

    def accepts_value(self, raw: Any) -> bool:
        # bool is an int subclass; only converters that name it accept it
        if isinstance(raw, bool) and bool not in self.accepts:
            return False
        return isinstance(raw, self.accepts)

    def convert(self, raw: Any) -> Any:
        if raw is None or not self.accepts_value(raw):
            return None
        if isinstance(raw, str):
            return self.from_string(raw)
        return self.from_value(raw)

    def from_string(self, text: str) -> Any:
        raise NotImplementedError

    def from_value(self, raw: Any) -> Any:
        return self.from_string(str(raw))

    def to_string(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)


class BooleanConverter(Converter):
    target = ValueType.BOOLEAN
    accepts = (bool, int, str)

    def from_string(self, text: str) -> Optional[bool]:
        token = text.strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        return None

    def from_value(self, raw: Any) -> Optional[bool]:
        if isinstance(raw, bool):
            return raw
        if raw in (0, 1):
            return bool(raw)
        return None

    def to_string(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return "true" if value else "false"


class IntegerConverter(Converter):
    accepts = (int, str)

    def __init__(self, target: ValueType) -> None:
        self.target = target
        bits = INTEGER_BITS[target]
        self.minimum = -(1 << (bits - 1))
        self.maximum = (1 << (bits - 1)) - 1

    def _bounded(self, value: int) -> Optional[int]:
        if self.minimum <= value <= self.maximum:
            return value
        LOGGER.debug("Value %s out of range for %s", value, self.target.name)
        return None

    def from_string(self, text: str) -> Optional[int]:
        try:
            return self._bounded(int(text.strip()))
        except ValueError:
            return None

    def from_value(self, raw: Any) -> Optional[int]:
        return self._bounded(int(raw))


class FloatConverter(Converter):
    accepts = (float, int, str)

    def __init__(self, target: ValueType) -> None:
        self.target = target

    def from_string(self, text: str) -> Optional[float]:
        try:
            return float(text.strip())
        except ValueError:
            return None

    def from_value(self, raw: Any) -> Optional[float]:
        return float(raw)

    def to_string(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return repr(float(value))


class CharacterConverter(Converter):
    target = ValueType.CHARACTER

    def from_string(self, text: str) -> Optional[str]:
        return text if len(text) == 1 else None


class StringConverter(Converter):
    target = ValueType.STRING
    accepts = (str, int, float)

    def from_string(self, text: str) -> str:
        return text


class EnumConverter(Converter):
    """Map raw enumerated tokens onto members of ``enum_type``.

    Tokens not present in ``tokens`` fall back to a member-name lookup, so
    values serialized by :meth:`to_string` always convert back.
    """

    def __init__(
        self, enum_type: Type[Enum], tokens: Optional[Mapping[str, Enum]] = None
    ) -> None:
        self.target = enum_type
        self.tokens: Dict[str, Enum] = dict(tokens or {})

    def accepts_value(self, raw: Any) -> bool:
        return isinstance(raw, (str, self.target))

    def convert(self, raw: Any) -> Optional[Enum]:
        if isinstance(raw, self.target):
            return raw
        return super().convert(raw)

    def from_string(self, text: str) -> Optional[Enum]:
        token = text.strip()
        if token in self.tokens:
            return self.tokens[token]
        return self.target.__members__.get(token)

    def to_string(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        return value.name


class ConversionRegistry:
    """Registry of converters keyed by the semantic type they produce."""

    def __init__(self) -> None:
        self._converters: Dict[SemanticType, Converter] = {}

    def register(self, converter: Converter) -> None:
        if converter.target in self._converters:
            LOGGER.debug("Replacing converter for %s", _type_label(converter.target))
        self._converters[converter.target] = converter

    def get(self, target: SemanticType) -> Optional[Converter]:
        return self._converters.get(target)

    def supports(self, target: SemanticType) -> bool:
        return target in self._converters

    def convert(self, raw: Any, target: SemanticType) -> Any:
        converter = self._converters.get(target)
        if converter is None or raw is None:
            return None
        return converter.convert(raw)

    def convert_from_string(self, text: Optional[str], target: SemanticType) -> Any:
        converter = self._converters.get(target)
        if converter is None or text is None:
            return None
        return converter.from_string(text)

    def convert_to_string(self, value: Any, target: SemanticType) -> Optional[str]:
        converter = self._converters.get(target)
        if converter is None:
            return None
        return converter.to_string(value)

    def reset(self) -> None:
        self._converters.clear()


def _type_label(target: SemanticType) -> str:
    if isinstance(target, ValueType):
        return target.name
    return target.__name__


def register_default_converters(registry: ConversionRegistry) -> ConversionRegistry:
    registry.register(BooleanConverter())
    for value_type in INTEGER_BITS:
        registry.register(IntegerConverter(value_type))
    registry.register(FloatConverter(ValueType.FLOAT))
    registry.register(FloatConverter(ValueType.DOUBLE))
    registry.register(CharacterConverter())
    registry.register(StringConverter())
    return registry


def default_registry() -> ConversionRegistry:
    return register_default_converters(ConversionRegistry())
