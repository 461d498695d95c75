"""Path crawling over hierarchical records.

A path is a ``/`` separated list of steps, each step a child name with an
optional ``[index]``. Missing data resolves to the :data:`NULL` node, which
propagates through the rest of the path. An accessor that the record shape
cannot have at all raises :class:`ExtractionError`.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from typing import (TYPE_CHECKING, Any, Mapping, Optional, Sequence, Tuple,
                    Union)
from urllib.parse import unquote

from .conversion import ConversionRegistry, SemanticType
from .exceptions import ConfigurationError, ExtractionError

if TYPE_CHECKING:
    from .batching import BatchData
    from .registry import FeatureEntry

LOGGER = logging.getLogger("aixm.ingestor.crawling")

FEATURE_BODY = "Feature"
EXTENSION_BODY = "Extension"

_STEP_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_.\-]*)(?:\[([0-9]+)\])?$")
_GML_ID_RE = re.compile(r"\[@gml:id='([A-Z_]+_[0-9_]+)'\]")
_FRAGMENT_RE = re.compile(r"#([A-Z_]+_[0-9_]+)$")


class UnknownAccessor(LookupError):
    """Raised by a node asked for an accessor its shape does not have."""


class HierarchicalNode(ABC):
    """Read-only view over one node of a decoded record."""

    @abstractmethod
    def child(self, name: str) -> "HierarchicalNode":
        """Return the named child, or :data:`NULL` when it is absent."""

    def index(self, position: int) -> "HierarchicalNode":
        raise UnknownAccessor(f"[{position}] on a non-list node")

    def is_list(self) -> bool:
        return False

    def length(self) -> int:
        return 1

    def value(self) -> Any:
        return None

    def attribute(self, name: str) -> Optional[str]:
        return None

    def is_null(self) -> bool:
        return False


class NullNode(HierarchicalNode):
    _instance: Optional["NullNode"] = None

    def __new__(cls) -> "NullNode":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def child(self, name: str) -> HierarchicalNode:
        return self

    def index(self, position: int) -> HierarchicalNode:
        return self

    def length(self) -> int:
        return 0

    def is_null(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "NULL"


NULL = NullNode()


class MappingNode(HierarchicalNode):
    """Node over JSON-shaped data: dicts, lists and scalars.

    Attributes are looked up as ``@name`` keys first, then as plain keys.
    """

    def __init__(self, data: Any) -> None:
        self.data = data

    def child(self, name: str) -> HierarchicalNode:
        if not isinstance(self.data, Mapping):
            raise UnknownAccessor(f"'{name}' on a {type(self.data).__name__}")
        return wrap(self.data.get(name))

    def index(self, position: int) -> HierarchicalNode:
        if not self.is_list():
            raise UnknownAccessor(f"[{position}] on a {type(self.data).__name__}")
        if position >= len(self.data):
            return NULL
        return wrap(self.data[position])

    def is_list(self) -> bool:
        return isinstance(self.data, (list, tuple))

    def length(self) -> int:
        return len(self.data) if self.is_list() else 1

    def value(self) -> Any:
        if isinstance(self.data, (Mapping, list, tuple)):
            return None
        return self.data

    def attribute(self, name: str) -> Optional[str]:
        if not isinstance(self.data, Mapping):
            return None
        found = self.data.get(f"@{name}", self.data.get(name))
        return found if isinstance(found, str) else None

    def __repr__(self) -> str:
        return f"MappingNode({self.data!r})"


class ObjectNode(HierarchicalNode):
    """Node over plain objects exposing their children as attributes.

    A missing attribute is an unknown accessor; an attribute set to ``None``
    is absent data.
    """

    def __init__(self, data: Any) -> None:
        self.data = data

    def child(self, name: str) -> HierarchicalNode:
        if not hasattr(self.data, name):
            raise UnknownAccessor(f"'{name}' on {type(self.data).__name__}")
        found = getattr(self.data, name)
        if found is None:
            return NULL
        return ObjectNode(found)

    def index(self, position: int) -> HierarchicalNode:
        if not self.is_list():
            raise UnknownAccessor(f"[{position}] on {type(self.data).__name__}")
        if position >= len(self.data):
            return NULL
        found = self.data[position]
        return NULL if found is None else ObjectNode(found)

    def is_list(self) -> bool:
        return isinstance(self.data, (list, tuple))

    def length(self) -> int:
        return len(self.data) if self.is_list() else 1

    def value(self) -> Any:
        if isinstance(self.data, (str, int, float, bool)):
            return self.data
        return None

    def attribute(self, name: str) -> Optional[str]:
        found = getattr(self.data, name, None)
        return found if isinstance(found, str) else None


def wrap(data: Any) -> HierarchicalNode:
    if data is None:
        return NULL
    if isinstance(data, HierarchicalNode):
        return data
    return MappingNode(data)


@dataclass(frozen=True)
class PathStep:
    name: str
    index: Optional[int] = None

    def __str__(self) -> str:
        if self.index is None:
            return self.name
        return f"{self.name}[{self.index}]"


@lru_cache(maxsize=1024)
def parse_path(path: str) -> Tuple[PathStep, ...]:
    if not path or not path.strip():
        raise ConfigurationError("Empty path expression")
    steps = []
    for raw in path.split("/"):
        match = _STEP_RE.match(raw.strip())
        if match is None:
            raise ConfigurationError(f"Invalid step '{raw}' in path '{path}'")
        name, index = match.groups()
        steps.append(PathStep(name, int(index) if index is not None else None))
    return tuple(steps)


def split_body(path: str) -> Tuple[str, str]:
    """Split a leading ``Feature/`` or ``Extension/`` segment off ``path``."""
    head, sep, rest = path.partition("/")
    if sep and head in (FEATURE_BODY, EXTENSION_BODY):
        return head, rest
    return FEATURE_BODY, path


def crawl(
    node: HierarchicalNode, path: Union[str, Sequence[PathStep]]
) -> HierarchicalNode:
    steps = parse_path(path) if isinstance(path, str) else tuple(path)
    current = node
    for step in steps:
        if current.is_null():
            return NULL
        try:
            found = current.child(step.name)
            if found.is_null():
                return NULL
            if step.index is None:
                # single-element wrappers are transparent
                if found.is_list() and found.length() == 1:
                    found = found.index(0)
            else:
                found = found.index(step.index)
        except UnknownAccessor as exc:
            label = path if isinstance(path, str) else "/".join(map(str, steps))
            raise ExtractionError(
                f"Cannot resolve step '{step}': {exc}", path=label
            ) from exc
        current = found
    return current


def get(
    node: HierarchicalNode, target: SemanticType, conversion: ConversionRegistry
) -> Any:
    if node.is_null():
        return None
    return conversion.convert(node.value(), target)


def extract_reference(node: HierarchicalNode) -> Optional[str]:
    """Pull the referenced identity out of an ``xlink:href`` style locator."""
    if node.is_null():
        return None
    locator = node.attribute("href")
    if locator is None:
        raw = node.value()
        locator = raw if isinstance(raw, str) else None
    if not locator:
        return None
    decoded = unquote(locator)
    match = _GML_ID_RE.search(decoded) or _FRAGMENT_RE.search(decoded)
    return match.group(1) if match else None


def decode_foreign_id(
    node: HierarchicalNode,
    target: "FeatureEntry",
    batch: Optional["BatchData"] = None,
) -> Optional[str]:
    identity = extract_reference(node)
    if identity is None:
        return None
    if not target.matches(identity):
        LOGGER.debug(
            "Reference %s does not match the id pattern of %s", identity, target.name
        )
        return None
    if batch is not None:
        batch.add_placeholder(target.table_name, identity)
    return identity
