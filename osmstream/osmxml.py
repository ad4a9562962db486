"""A scanner stepping through the elements of an OSM XML stream."""

from __future__ import annotations

import re
import threading
import xml.etree.ElementTree as ET
from concurrent.futures import CancelledError
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

from osmstream.model import (
    ZERO_TIME,
    Bounds,
    Member,
    Node,
    ObjectType,
    Relation,
    ScannerClosedError,
    Tag,
    Tags,
    Update,
    Way,
    WayNode,
)

_CHUNK_SIZE = 64 * 1024

_TIME_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})$"
)
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


# --- value parsing ----------------------------------------------------------


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_time(text: str) -> datetime:
    match = _TIME_RE.match(text.strip())
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "")[:6].ljust(6, "0"))
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tz
    )


def _int(elem: ET.Element, name: str) -> int:
    value = elem.get(name, "").strip()
    return int(value) if value else 0


def _float(elem: ET.Element, name: str) -> float:
    value = elem.get(name, "").strip()
    return float(value) if value else 0.0


def _bool(elem: ET.Element, name: str) -> bool:
    value = elem.get(name, "").strip()
    if not value:
        return False
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean {value!r} for {name}")


def _time(elem: ET.Element, name: str) -> datetime:
    value = elem.get(name)
    return _parse_time(value) if value is not None else ZERO_TIME


def _optional_time(elem: ET.Element, name: str) -> Optional[datetime]:
    value = elem.get(name)
    return _parse_time(value) if value is not None else None


def _children(elem: ET.Element, name: str) -> Iterator[ET.Element]:
    return (child for child in elem if _local(child.tag) == name)


def _tags(elem: ET.Element) -> Tags:
    return Tags(Tag(t.get("k", ""), t.get("v", "")) for t in _children(elem, "tag"))


def _way_nodes(elem: ET.Element) -> list[WayNode]:
    return [
        WayNode(
            id=_int(nd, "ref"),
            version=_int(nd, "version"),
            changeset_id=_int(nd, "changeset"),
            lat=_float(nd, "lat"),
            lon=_float(nd, "lon"),
        )
        for nd in _children(elem, "nd")
    ]


def _updates(elem: ET.Element) -> list[Update]:
    return [
        Update(
            index=_int(u, "index"),
            version=_int(u, "version"),
            timestamp=_time(u, "timestamp"),
            changeset_id=_int(u, "changeset"),
            lat=_float(u, "lat"),
            lon=_float(u, "lon"),
            reverse=_bool(u, "reverse"),
        )
        for u in _children(elem, "update")
    ]


def _member_type(value: str) -> ObjectType | str:
    try:
        return ObjectType(value)
    except ValueError:
        return value


def _common(elem: ET.Element) -> dict[str, Any]:
    return {
        "id": _int(elem, "id"),
        "user": elem.get("user", ""),
        "user_id": _int(elem, "uid"),
        "visible": _bool(elem, "visible"),
        "version": _int(elem, "version"),
        "changeset_id": _int(elem, "changeset"),
        "timestamp": _time(elem, "timestamp"),
        "tags": _tags(elem),
        "committed": _optional_time(elem, "committed"),
    }


# --- element decoders -------------------------------------------------------


@dataclass
class _Record:
    """A changeset, note or user: its id, attributes, tags and simple child values."""

    object_type: ObjectType
    id: int = 0
    attributes: dict[str, str] = field(default_factory=dict)
    tags: Tags = field(default_factory=Tags)
    fields: dict[str, str] = field(default_factory=dict)


def _decode_bounds(elem: ET.Element) -> Bounds:
    return Bounds(
        min_lat=_float(elem, "minlat"),
        max_lat=_float(elem, "maxlat"),
        min_lon=_float(elem, "minlon"),
        max_lon=_float(elem, "maxlon"),
    )


def _decode_node(elem: ET.Element) -> Node:
    return Node(lat=_float(elem, "lat"), lon=_float(elem, "lon"), **_common(elem))


def _decode_way(elem: ET.Element) -> Way:
    return Way(nodes=_way_nodes(elem), updates=_updates(elem), **_common(elem))


def _decode_relation(elem: ET.Element) -> Relation:
    members = [
        Member(
            type=_member_type(m.get("type", "")),
            ref=_int(m, "ref"),
            role=m.get("role", ""),
            version=_int(m, "version"),
            changeset_id=_int(m, "changeset"),
            lat=_float(m, "lat"),
            lon=_float(m, "lon"),
            orientation=_int(m, "orientation"),
            nodes=_way_nodes(m),
        )
        for m in _children(elem, "member")
    ]
    bounds = next(_children(elem, "bounds"), None)
    return Relation(
        members=members,
        updates=_updates(elem),
        bounds=_decode_bounds(bounds) if bounds is not None else None,
        **_common(elem),
    )


def _record(kind: ObjectType) -> Callable[[ET.Element], _Record]:
    def decode(elem: ET.Element) -> _Record:
        fields = {
            _local(child.tag): (child.text or "").strip()
            for child in elem
            if len(child) == 0 and _local(child.tag) != "tag"
        }
        raw_id = elem.get("id") or fields.get("id", "")
        return _Record(
            object_type=kind,
            id=int(raw_id) if raw_id.strip() else 0,
            attributes=dict(elem.attrib),
            tags=_tags(elem),
            fields=fields,
        )

    return decode


_DECODERS: dict[str, Callable[[ET.Element], Any]] = {
    "bounds": _decode_bounds,
    "node": _decode_node,
    "way": _decode_way,
    "relation": _decode_relation,
    "changeset": _record(ObjectType.CHANGESET),
    "note": _record(ObjectType.NOTE),
    "user": _record(ObjectType.USER),
}


# --- scanner ----------------------------------------------------------------


class XMLScanner:
    """Reads bounds, nodes, ways, relations, changesets, notes and users one at a time.

    Scanning stops for good at the end of the data, the first read or XML error,
    a call to ``close`` or the ``cancel`` event being set.
    """

    def __init__(self, reader: Any, *, cancel: Optional[threading.Event] = None) -> None:
        self._reader = reader
        self._cancel = cancel
        self._events = self._read_events()
        self._stack: list[ET.Element] = []
        self._target: Optional[ET.Element] = None
        self._closed = False
        self._done = False
        self._next: Any = None
        self._err: Optional[BaseException] = None

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def _read_events(self) -> Iterator[tuple[str, ET.Element]]:
        parser = ET.XMLPullParser(events=("start", "end"))
        fed = False
        while True:
            yield from parser.read_events()
            chunk = self._reader.read(_CHUNK_SIZE)
            if not chunk:
                if fed:
                    parser.close()
                    yield from parser.read_events()
                return
            if chunk.strip():
                fed = True
            parser.feed(chunk)

    def scan(self) -> bool:
        """Advance to the next element; return False when scanning has stopped."""
        if self._err is not None or self._done:
            return False
        while True:
            if self._closed or self._cancelled():
                return False
            try:
                event, elem = next(self._events)
            except StopIteration:
                self._done = True
                return False
            except Exception as exc:
                self._err = exc
                return False

            if event == "start":
                self._stack.append(elem)
                if self._target is None and _local(elem.tag).lower() in _DECODERS:
                    self._target = elem
                continue

            self._stack.pop()
            if elem is not self._target:
                continue
            self._target = None
            self._next = None
            try:
                obj = _DECODERS[_local(elem.tag).lower()](elem)
            except ValueError as exc:
                self._err = exc
                return False
            elem.clear()
            if self._stack:
                self._stack[-1].remove(elem)
            self._next = obj
            return True

    def object(self) -> Any:
        """Return the element found by the last successful scan."""
        return self._next

    def err(self) -> Optional[BaseException]:
        """Return the error that stopped scanning, or None at a normal end."""
        if self._done:
            return None
        if self._err is not None:
            return self._err
        if self._closed:
            return ScannerClosedError()
        if self._cancelled():
            return CancelledError()
        return None

    def close(self) -> None:
        """Stop scanning; the reader stays open."""
        self._closed = True
        self._events.close()

    def __iter__(self) -> Iterator[Any]:
        while self.scan():
            yield self.object()

    def __enter__(self) -> XMLScanner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()