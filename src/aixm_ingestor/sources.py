"""Source providers yielding top-level records per source group.

AIXM subscriber files are streamed with ``lxml.etree.iterparse``; every
``hasMember`` element becomes one record and is cleared once consumed.
"""

from __future__ import annotations

import logging
import zipfile
from contextlib import ExitStack
from datetime import datetime
from pathlib import Path
from typing import (IO, Any, Callable, Iterable, Iterator, List, Mapping,
                    Optional, Protocol, Union)

import lxml.etree as LET
from dateutil import parser as dtparse

from .crawling import NULL, HierarchicalNode, UnknownAccessor, wrap
from .exceptions import SourceError

LOGGER = logging.getLogger("aixm.ingestor.source")

SUBSCRIBER_FILES_DIR = "AIXM_5.1/XML-Subscriber-Files"
MEMBER_TAG = "{*}hasMember"
EFFECTIVE_DATE_TAG = "{*}beginPosition"


def local_name(element: LET._Element) -> str:
    return LET.QName(element).localname


class XmlNode(HierarchicalNode):
    """Node over an lxml element; children and attributes match by local name."""

    def __init__(self, element: LET._Element) -> None:
        self.element = element

    def _children(self, name: str) -> List[LET._Element]:
        return [
            child
            for child in self.element
            if isinstance(child.tag, str) and local_name(child) == name
        ]

    def _is_leaf(self) -> bool:
        return not any(isinstance(child.tag, str) for child in self.element)

    def child(self, name: str) -> HierarchicalNode:
        matches = self._children(name)
        if not matches:
            return NULL
        if len(matches) == 1:
            return XmlNode(matches[0])
        return XmlListNode(matches)

    def index(self, position: int) -> HierarchicalNode:
        if self._is_leaf():
            # gml:pos and friends hold whitespace separated lists
            tokens = (self.element.text or "").split()
            if position >= len(tokens):
                return NULL
            return TokenNode(tokens[position])
        return self if position == 0 else NULL

    def value(self) -> Optional[str]:
        if not self._is_leaf():
            return None
        text = (self.element.text or "").strip()
        return text or None

    def attribute(self, name: str) -> Optional[str]:
        for key, found in self.element.attrib.items():
            if LET.QName(key).localname == name:
                return found
        return None

    def __repr__(self) -> str:
        return f"XmlNode({local_name(self.element)})"


class XmlListNode(HierarchicalNode):
    def __init__(self, elements: List[LET._Element]) -> None:
        self.elements = elements

    def child(self, name: str) -> HierarchicalNode:
        raise UnknownAccessor(f"'{name}' on a list of {len(self.elements)} elements")

    def index(self, position: int) -> HierarchicalNode:
        if position >= len(self.elements):
            return NULL
        return XmlNode(self.elements[position])

    def is_list(self) -> bool:
        return True

    def length(self) -> int:
        return len(self.elements)


class TokenNode(HierarchicalNode):
    def __init__(self, token: str) -> None:
        self.token = token

    def child(self, name: str) -> HierarchicalNode:
        raise UnknownAccessor(f"'{name}' on text value '{self.token}'")

    def value(self) -> str:
        return self.token


class RecordStream:
    """Single-pass iterable of records; close it once exhausted."""

    effective_from: Optional[datetime] = None

    def __iter__(self) -> Iterator[HierarchicalNode]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "RecordStream":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class SourceProvider(Protocol):
    def open_stream(self, group: str) -> Optional[RecordStream]:
        ...


class MemoryStream(RecordStream):
    def __init__(self, records: Iterable[Any], effective_from: Optional[datetime] = None) -> None:
        self._records = records
        self.effective_from = effective_from
        self.closed = False

    def __iter__(self) -> Iterator[HierarchicalNode]:
        for record in self._records:
            yield wrap(record)

    def close(self) -> None:
        self.closed = True


class MemorySource:
    """Serve records from memory; dict records are wrapped as mapping nodes."""

    def __init__(
        self,
        groups: Mapping[str, Iterable[Any]],
        effective_from: Optional[datetime] = None,
    ) -> None:
        self._groups = dict(groups)
        self._effective_from = effective_from
        self.opened: List[MemoryStream] = []

    def open_stream(self, group: str) -> Optional[MemoryStream]:
        records = self._groups.get(group)
        if records is None:
            return None
        stream = MemoryStream(records, self._effective_from)
        self.opened.append(stream)
        return stream


class XmlRecordStream(RecordStream):
    """Stream ``hasMember`` records out of an AIXM XML document."""

    def __init__(self, group: str, handle: IO[bytes], resources: ExitStack) -> None:
        self.group = group
        self._handle = handle
        self._resources = resources
        self.effective_from = None

    def __iter__(self) -> Iterator[HierarchicalNode]:
        try:
            for _, element in LET.iterparse(
                self._handle, events=("end",), tag=MEMBER_TAG, huge_tree=True
            ):
                if self.effective_from is None:
                    self.effective_from = _effective_date(element)
                yield XmlNode(element)
                element.clear()
                while element.getprevious() is not None:
                    del element.getparent()[0]
        except LET.XMLSyntaxError as exc:
            raise SourceError(f"Malformed XML in source group {self.group}: {exc}") from exc

    def close(self) -> None:
        self._resources.close()


def _effective_date(element: LET._Element) -> Optional[datetime]:
    found = next(element.iter(EFFECTIVE_DATE_TAG), None)
    if found is None or not (found.text or "").strip():
        return None
    try:
        return dtparse.parse(found.text.strip())
    except (ValueError, OverflowError):
        LOGGER.warning("Unparseable effective date '%s'", found.text)
        return None


def _open_guarded(group: str, opener: Callable[[ExitStack], Optional[IO[bytes]]]) -> Optional[XmlRecordStream]:
    resources = ExitStack()
    try:
        handle = opener(resources)
    except (OSError, zipfile.BadZipFile) as exc:
        resources.close()
        raise SourceError(f"Cannot open source group {group}: {exc}") from exc
    if handle is None:
        resources.close()
        return None
    return XmlRecordStream(group, handle, resources)


class AixmArchiveSource:
    """FAA NASR subscription archive: one nested ZIP per source group."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def open_stream(self, group: str) -> Optional[XmlRecordStream]:
        def opener(resources: ExitStack) -> Optional[IO[bytes]]:
            LOGGER.info("Opening AIXM archive %s for %s", self.path, group)
            outer = resources.enter_context(zipfile.ZipFile(self.path))
            inner_name = f"{SUBSCRIBER_FILES_DIR}/{group}.zip"
            if inner_name not in outer.namelist():
                LOGGER.info("Archive has no entry %s", inner_name)
                return None
            inner = resources.enter_context(
                zipfile.ZipFile(resources.enter_context(outer.open(inner_name)))
            )
            xml_name = f"{group}.xml"
            if xml_name not in inner.namelist():
                LOGGER.info("Inner archive %s has no entry %s", inner_name, xml_name)
                return None
            return resources.enter_context(inner.open(xml_name))

        return _open_guarded(group, opener)


class AixmDirectorySource:
    """Directory of extracted ``<group>.xml`` subscriber files."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def open_stream(self, group: str) -> Optional[XmlRecordStream]:
        def opener(resources: ExitStack) -> Optional[IO[bytes]]:
            xml_path = self.path / f"{group}.xml"
            if not xml_path.is_file():
                LOGGER.info("No file %s", xml_path)
                return None
            return resources.enter_context(xml_path.open("rb"))

        return _open_guarded(group, opener)


def open_source(path: Union[str, Path]) -> Union[AixmArchiveSource, AixmDirectorySource]:
    location = Path(path)
    if location.is_dir():
        return AixmDirectorySource(location)
    if location.is_file():
        return AixmArchiveSource(location)
    raise SourceError(f"AIXM source {location} does not exist")
