"""Core OpenStreetMap element types and their JSON/XML representations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class ObjectType(str, Enum):
    """The kind of an OSM object."""

    NODE = "node"
    WAY = "way"
    RELATION = "relation"
    CHANGESET = "changeset"
    NOTE = "note"
    USER = "user"
    BOUNDS = "bounds"


class UpdateIndexOutOfRangeError(IndexError):
    """Raised when an update refers to a member that does not exist."""

    def __init__(self, index: int) -> None:
        super().__init__(f"osm: index {index} is out of range")
        self.index = index


class ScannerClosedError(Exception):
    """Reported by a scanner that was closed by its user."""

    def __init__(self) -> None:
        super().__init__("osm: scanner closed by user")


# --- formatting helpers -----------------------------------------------------


def _decompose(value: float) -> tuple[bool, str, int]:
    """Split a float into sign, shortest significant digits and decimal point."""
    sign, digits, exponent = Decimal(repr(value)).as_tuple()
    text = "".join(str(d) for d in digits).rstrip("0")
    if not text:
        return bool(sign), "0", 1
    exponent += len(digits) - len(text)
    return bool(sign), text, len(text) + exponent


def _fixed(negative: bool, text: str, dp: int) -> str:
    if dp <= 0:
        body = "0." + "0" * (-dp) + text
    elif dp >= len(text):
        body = text + "0" * (dp - len(text))
    else:
        body = text[:dp] + "." + text[dp:]
    return ("-" if negative else "") + body


def _scientific(negative: bool, text: str, dp: int, pad: bool) -> str:
    mantissa = text[0] + ("." + text[1:] if len(text) > 1 else "")
    exp = dp - 1
    digits = f"{abs(exp):02d}" if pad else str(abs(exp))
    return ("-" if negative else "") + mantissa + "e" + ("+" if exp >= 0 else "-") + digits


def _xml_float(value: float) -> str:
    if value == 0:
        return "0"
    negative, text, dp = _decompose(value)
    exp = dp - 1
    if exp < -4 or exp >= 6:
        return _scientific(negative, text, dp, pad=True)
    return _fixed(negative, text, dp)


def _json_float(value: float) -> str:
    if value == 0:
        return "0"
    negative, text, dp = _decompose(value)
    magnitude = abs(value)
    if magnitude < 1e-6 or magnitude >= 1e21:
        return _scientific(negative, text, dp, pad=False)
    return _fixed(negative, text, dp)


def _format_time(t: datetime) -> str:
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    text = (
        f"{t.year:04d}-{t.month:02d}-{t.day:02d}"
        f"T{t.hour:02d}:{t.minute:02d}:{t.second:02d}"
    )
    if t.microsecond:
        text += "." + f"{t.microsecond:06d}".rstrip("0")
    offset = t.utcoffset()
    if not offset:
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    minutes = abs(minutes)
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def _json_string(value: str) -> str:
    text = json.dumps(value, ensure_ascii=False)
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def _dump_json(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _json_float(value)
    if isinstance(value, str):
        return _json_string(value)
    if isinstance(value, dict):
        items = (f"{_json_string(k)}:{_dump_json(v)}" for k, v in value.items())
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_dump_json(v) for v in value) + "]"
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&#34;",
    "'": "&#39;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}


def _xml_escape(value: str) -> str:
    return "".join(_XML_ESCAPES.get(ch, ch) for ch in value)


def _element(name: str, attrs: Iterable[tuple[str, str]], inner: str = "") -> str:
    rendered = "".join(f' {key}="{_xml_escape(val)}"' for key, val in attrs)
    return f"<{name}{rendered}>{inner}</{name}>"


def _type_name(value: ObjectType | str) -> str:
    return value.value if isinstance(value, ObjectType) else str(value)


# --- tags -------------------------------------------------------------------


@dataclass(frozen=True)
class Tag:
    """A single key/value pair."""

    key: str
    value: str

    def _to_xml(self) -> str:
        return _element("tag", [("k", self.key), ("v", self.value)])


class Tags(list):
    """An ordered list of tags."""

    def find(self, key: str) -> str:
        """Return the value for the key, or an empty string if missing."""
        for tag in self:
            if tag.key == key:
                return tag.value
        return ""

    def to_dict(self) -> dict[str, str]:
        """Return the tags as a key/value mapping."""
        return {tag.key: tag.value for tag in self}


def _as_tags(value: Iterable[Tag]) -> Tags:
    return value if isinstance(value, Tags) else Tags(value)


# --- elements ---------------------------------------------------------------


@dataclass
class WayNode:
    """A node reference within a way, optionally carrying its location."""

    id: int = 0
    version: int = 0
    changeset_id: int = 0
    lat: float = 0.0
    lon: float = 0.0

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id:
            data["ref"] = self.id
        if self.version:
            data["version"] = self.version
        if self.changeset_id:
            data["changeset"] = self.changeset_id
        if self.lat:
            data["lat"] = self.lat
        if self.lon:
            data["lon"] = self.lon
        return data

    def _to_xml(self) -> str:
        attrs = []
        if self.id:
            attrs.append(("ref", str(self.id)))
        if self.version:
            attrs.append(("version", str(self.version)))
        if self.changeset_id:
            attrs.append(("changeset", str(self.changeset_id)))
        if self.lat:
            attrs.append(("lat", _xml_float(self.lat)))
        if self.lon:
            attrs.append(("lon", _xml_float(self.lon)))
        return _element("nd", attrs)


@dataclass
class Node:
    """A point with a location and tags."""

    id: int = 0
    lat: float = 0.0
    lon: float = 0.0
    user: str = ""
    user_id: int = 0
    visible: bool = False
    version: int = 0
    changeset_id: int = 0
    timestamp: datetime = ZERO_TIME
    tags: Tags = field(default_factory=Tags)
    committed: datetime | None = None

    def __post_init__(self) -> None:
        self.tags = _as_tags(self.tags)


@dataclass
class Update:
    """A change to a child member independent of the parent."""

    index: int = 0
    version: int = 0
    timestamp: datetime = ZERO_TIME
    changeset_id: int = 0
    lat: float = 0.0
    lon: float = 0.0
    reverse: bool = False

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "version": self.version,
            "timestamp": _format_time(self.timestamp),
        }
        if self.changeset_id:
            data["changeset"] = self.changeset_id
        if self.lat:
            data["lat"] = self.lat
        if self.lon:
            data["lon"] = self.lon
        if self.reverse:
            data["reverse"] = True
        return data

    def _to_xml(self) -> str:
        attrs = [
            ("index", str(self.index)),
            ("version", str(self.version)),
            ("timestamp", _format_time(self.timestamp)),
        ]
        if self.changeset_id:
            attrs.append(("changeset", str(self.changeset_id)))
        if self.lat:
            attrs.append(("lat", _xml_float(self.lat)))
        if self.lon:
            attrs.append(("lon", _xml_float(self.lon)))
        if self.reverse:
            attrs.append(("reverse", "true"))
        return _element("update", attrs)


@dataclass
class Way:
    """An ordered list of nodes with tags."""

    id: int = 0
    user: str = ""
    user_id: int = 0
    visible: bool = False
    version: int = 0
    changeset_id: int = 0
    timestamp: datetime = ZERO_TIME
    nodes: list[WayNode] = field(default_factory=list)
    tags: Tags = field(default_factory=Tags)
    committed: datetime | None = None
    updates: list[Update] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.tags = _as_tags(self.tags)


@dataclass
class Bounds:
    """A latitude/longitude bounding box."""

    min_lat: float = 0.0
    max_lat: float = 0.0
    min_lon: float = 0.0
    max_lon: float = 0.0

    def _to_dict(self) -> dict[str, Any]:
        return {
            "minlat": self.min_lat,
            "minlon": self.min_lon,
            "maxlat": self.max_lat,
            "maxlon": self.max_lon,
        }

    def _to_xml(self) -> str:
        return _element(
            "bounds",
            [
                ("minlat", _xml_float(self.min_lat)),
                ("minlon", _xml_float(self.min_lon)),
                ("maxlat", _xml_float(self.max_lat)),
                ("maxlon", _xml_float(self.max_lon)),
            ],
        )


@dataclass
class Member:
    """A member of a relation."""

    type: ObjectType | str = ""
    ref: int = 0
    role: str = ""
    version: int = 0
    changeset_id: int = 0
    lat: float = 0.0
    lon: float = 0.0
    orientation: int = 0
    nodes: list[WayNode] = field(default_factory=list)

    def point(self) -> tuple[float, float]:
        """Return the (lon, lat) location annotated on the member."""
        return (self.lon, self.lat)

    def to_dict(self) -> dict[str, Any]:
        """Return the member in its JSON form."""
        data: dict[str, Any] = {
            "type": _type_name(self.type),
            "ref": self.ref,
            "role": self.role,
        }
        if self.version:
            data["version"] = self.version
        if self.changeset_id:
            data["changeset"] = self.changeset_id
        if self.lat:
            data["lat"] = self.lat
        if self.lon:
            data["lon"] = self.lon
        if self.orientation:
            data["orientation"] = self.orientation
        if self.nodes:
            data["nodes"] = [n._to_dict() for n in self.nodes]
        return data

    def _to_xml(self) -> str:
        attrs = [
            ("type", _type_name(self.type)),
            ("ref", str(self.ref)),
            ("role", self.role),
        ]
        if self.version:
            attrs.append(("version", str(self.version)))
        if self.changeset_id:
            attrs.append(("changeset", str(self.changeset_id)))
        if self.lat:
            attrs.append(("lat", _xml_float(self.lat)))
        if self.lon:
            attrs.append(("lon", _xml_float(self.lon)))
        if self.orientation:
            attrs.append(("orientation", str(self.orientation)))
        return _element("member", attrs, "".join(n._to_xml() for n in self.nodes))


@dataclass
class Relation:
    """A collection of nodes, ways and other relations."""

    id: int = 0
    user: str = ""
    user_id: int = 0
    visible: bool = False
    version: int = 0
    changeset_id: int = 0
    timestamp: datetime = ZERO_TIME
    tags: Tags = field(default_factory=Tags)
    members: list[Member] = field(default_factory=list)
    committed: datetime | None = None
    updates: list[Update] = field(default_factory=list)
    bounds: Bounds | None = None

    def __post_init__(self) -> None:
        self.tags = _as_tags(self.tags)

    def committed_at(self) -> datetime:
        """Best estimate of when this relation was committed."""
        return self.committed if self.committed is not None else self.timestamp

    def tag_map(self) -> dict[str, str]:
        """Return the tags as a key/value mapping."""
        return self.tags.to_dict()

    def apply_updates_up_to(self, t: datetime) -> None:
        """Apply the updates up to and including the given time."""
        pending = []
        for update in self.updates:
            if update.timestamp > t:
                pending.append(update)
                continue
            self.apply_update(update)
        self.updates = pending

    def apply_update(self, update: Update) -> None:
        """Apply one update to the member it refers to."""
        if not 0 <= update.index < len(self.members):
            raise UpdateIndexOutOfRangeError(update.index)
        member = self.members[update.index]
        member.version = update.version
        member.changeset_id = update.changeset_id
        member.lat = update.lat
        member.lon = update.lon
        if update.reverse:
            member.orientation *= -1

    def to_dict(self) -> dict[str, Any]:
        """Return the relation in its JSON form."""
        data: dict[str, Any] = {"type": ObjectType.RELATION.value, "id": self.id}
        if self.user:
            data["user"] = self.user
        if self.user_id:
            data["uid"] = self.user_id
        data["visible"] = self.visible
        if self.version:
            data["version"] = self.version
        if self.changeset_id:
            data["changeset"] = self.changeset_id
        data["timestamp"] = _format_time(self.timestamp)
        if self.tags:
            data["tags"] = dict(sorted(self.tags.to_dict().items()))
        data["members"] = [m.to_dict() for m in self.members]
        if self.committed is not None:
            data["committed"] = _format_time(self.committed)
        if self.updates:
            data["updates"] = [u._to_dict() for u in self.updates]
        if self.bounds is not None:
            data["bounds"] = self.bounds._to_dict()
        return data

    def to_json(self) -> str:
        """Return the relation as compact JSON text."""
        return _dump_json(self.to_dict())

    def to_xml(self) -> str:
        """Return the relation as an XML element."""
        attrs = [
            ("id", str(self.id)),
            ("user", self.user),
            ("uid", str(self.user_id)),
            ("visible", "true" if self.visible else "false"),
            ("version", str(self.version)),
            ("changeset", str(self.changeset_id)),
            ("timestamp", _format_time(self.timestamp)),
        ]
        if self.committed is not None:
            attrs.append(("committed", _format_time(self.committed)))
        children = [t._to_xml() for t in self.tags]
        children.extend(m._to_xml() for m in self.members)
        children.extend(u._to_xml() for u in self.updates)
        if self.bounds is not None:
            children.append(self.bounds._to_xml())
        return _element("relation", attrs, "".join(children))


class Relations(list):
    """A list of relations."""

    def ids(self) -> list[int]:
        """Return the ids of all the relations."""
        return [r.id for r in self]

    def sort_by_id_version(self) -> None:
        """Sort in place by id, then version, ascending."""
        self.sort(key=lambda r: (r.id, r.version))