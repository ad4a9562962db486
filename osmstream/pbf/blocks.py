"""Decoding of OSMData primitive blocks into nodes, ways and relations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from itertools import accumulate
from typing import Any, Callable, Iterable, Iterator, Optional

from osmstream.model import (
    Member,
    Node,
    ObjectType,
    Relation,
    Tag,
    Tags,
    Way,
    WayNode,
)
from osmstream.pbf.wire import (
    FieldValue,
    WireError,
    WireType,
    iter_fields,
    unpack_varints,
    zigzag_decode,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MASK64 = (1 << 64) - 1

_MEMBER_TYPES = {
    0: ObjectType.NODE,
    1: ObjectType.WAY,
    2: ObjectType.RELATION,
}


# --- scalar conversions -----------------------------------------------------


def _int64(value: int) -> int:
    value &= _MASK64
    return value - (1 << 64) if value >= 1 << 63 else value


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value >= 1 << 31 else value


def _uint32(value: int) -> int:
    return value & 0xFFFFFFFF


def _scalar(number: int, wire_type: WireType, value: FieldValue) -> int:
    if wire_type is not WireType.VARINT or not isinstance(value, int):
        raise WireError(f"field {number}: expected a varint")
    return value


def _message(number: int, wire_type: WireType, value: FieldValue) -> bytes:
    if wire_type is not WireType.BYTES or not isinstance(value, bytes):
        raise WireError(f"field {number}: expected length-delimited data")
    return value


def _repeated(number: int, wire_type: WireType, value: FieldValue) -> list[int]:
    if wire_type is WireType.BYTES and isinstance(value, bytes):
        return unpack_varints(value)
    if wire_type is WireType.VARINT and isinstance(value, int):
        return [value]
    raise WireError(f"field {number}: expected repeated varints")


def _delta_decoded(values: Iterable[int]) -> list[int]:
    return list(accumulate(zigzag_decode(v) for v in values))


def _take(values: Iterator[Any], name: str) -> Any:
    try:
        return next(values)
    except StopIteration:
        raise WireError(f"osmpbf: {name} ended early") from None


# --- block ------------------------------------------------------------------


@dataclass
class DecodeOptions:
    """Which element types to skip and which elements to keep."""

    skip_nodes: bool = False
    skip_ways: bool = False
    skip_relations: bool = False
    filter_node: Optional[Callable[[Node], bool]] = None
    filter_way: Optional[Callable[[Way], bool]] = None
    filter_relation: Optional[Callable[[Relation], bool]] = None


@dataclass
class PrimitiveBlock:
    """The shared context of a data block: string table, scales and raw groups.

    Defaults are those fixed by the file format.
    """

    strings: list[str] = field(default_factory=list)
    granularity: int = 100
    date_granularity: int = 1000
    lat_offset: int = 0
    lon_offset: int = 0
    groups: list[bytes] = field(default_factory=list)

    def _string(self, index: int) -> str:
        if not 0 <= index < len(self.strings):
            raise WireError(f"osmpbf: string index {index} out of range")
        return self.strings[index]

    def _lat(self, value: int) -> float:
        return 1e-9 * (self.lat_offset + self.granularity * value)

    def _lon(self, value: int) -> float:
        return 1e-9 * (self.lon_offset + self.granularity * value)

    def _time(self, value: int) -> datetime:
        return _EPOCH + timedelta(milliseconds=value * self.date_granularity)


def _string_table(data: bytes) -> list[str]:
    strings = []
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            raw = _message(number, wire_type, value)
            strings.append(raw.decode("utf-8", errors="replace"))
    return strings


def parse_primitive_block(data: bytes) -> PrimitiveBlock:
    """Read the string table, scales and raw groups of a primitive block."""
    block = PrimitiveBlock()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            block.strings.extend(_string_table(_message(number, wire_type, value)))
        elif number == 2:
            block.groups.append(_message(number, wire_type, value))
        elif number == 17:
            block.granularity = _int32(_scalar(number, wire_type, value))
        elif number == 18:
            block.date_granularity = _int32(_scalar(number, wire_type, value))
        elif number == 19:
            block.lat_offset = _int64(_scalar(number, wire_type, value))
        elif number == 20:
            block.lon_offset = _int64(_scalar(number, wire_type, value))
    return block


def decode_primitive_block(
    data: bytes, options: Optional[DecodeOptions] = None
) -> list[Any]:
    """Decode every element of a primitive block, in file order."""
    options = options or DecodeOptions()
    block = parse_primitive_block(data)
    objects: list[Any] = []
    for group in block.groups:
        objects.extend(_decode_group(group, block, options))
    return objects


def _decode_group(
    data: bytes, block: PrimitiveBlock, options: DecodeOptions
) -> Iterator[Any]:
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            raise WireError("osmpbf: non-dense nodes are not supported")
        if number == 2 and not options.skip_nodes:
            yield from decode_dense_nodes(
                _message(number, wire_type, value), block, options
            )
        elif number == 3 and not options.skip_ways:
            way = decode_way(_message(number, wire_type, value), block)
            if options.filter_way is None or options.filter_way(way):
                yield way
        elif number == 4 and not options.skip_relations:
            relation = decode_relation(_message(number, wire_type, value), block)
            if options.filter_relation is None or options.filter_relation(relation):
                yield relation


# --- dense nodes ------------------------------------------------------------


def _dense_info(data: bytes) -> dict[int, list[int]]:
    columns: dict[int, list[int]] = {}
    for number, wire_type, value in iter_fields(data):
        if 1 <= number <= 6:
            columns[number] = _repeated(number, wire_type, value)
    return columns


def decode_dense_nodes(
    data: bytes, block: PrimitiveBlock, options: Optional[DecodeOptions] = None
) -> list[Node]:
    """Decode a DenseNodes message; nodes rejected by the filter are dropped."""
    options = options or DecodeOptions()
    ids = lats = lons = keyvals = None
    info: dict[int, list[int]] = {}

    for number, wire_type, value in iter_fields(data):
        if number == 1:
            ids = _repeated(number, wire_type, value)
        elif number == 5:
            info = _dense_info(_message(number, wire_type, value))
        elif number == 8:
            lats = _repeated(number, wire_type, value)
        elif number == 9:
            lons = _repeated(number, wire_type, value)
        elif number == 10:
            keyvals = _repeated(number, wire_type, value)

    if ids is None:
        raise WireError("osmpbf: dense node did not contain ids")
    if lats is None:
        raise WireError("osmpbf: dense node did not contain latitudes")
    if lons is None:
        raise WireError("osmpbf: dense node did not contain longitudes")

    lat_iter = iter(_delta_decoded(lats))
    lon_iter = iter(_delta_decoded(lons))
    kv_iter = iter([_int32(v) for v in keyvals]) if keyvals is not None else None

    def column(number: int, convert: Callable[[list[int]], list[Any]]):
        return iter(convert(info[number])) if number in info else None

    versions = column(1, lambda vs: [_int32(v) for v in vs])
    timestamps = column(2, _delta_decoded)
    changesets = column(3, _delta_decoded)
    uids = column(4, _delta_decoded)
    user_sids = column(5, _delta_decoded)
    visibles = column(6, lambda vs: [v != 0 for v in vs])

    nodes = []
    for node_id in _delta_decoded(ids):
        node = Node(id=node_id, visible=True)
        if versions is not None:
            node.version = _take(versions, "versions")
        if timestamps is not None:
            node.timestamp = block._time(_take(timestamps, "timestamps"))
        if changesets is not None:
            node.changeset_id = _take(changesets, "changesets")
        if uids is not None:
            node.user_id = _take(uids, "uids")
        if user_sids is not None:
            node.user = block._string(_take(user_sids, "user sids"))
        if visibles is not None:
            node.visible = _take(visibles, "visibles")
        node.lat = block._lat(_take(lat_iter, "latitudes"))
        node.lon = block._lon(_take(lon_iter, "longitudes"))

        if kv_iter is not None:
            tags = Tags()
            while True:
                key = _take(kv_iter, "keys_vals")
                if key == 0:
                    break
                val = _take(kv_iter, "keys_vals")
                tags.append(Tag(block._string(key), block._string(val)))
            node.tags = tags

        if options.filter_node is None or options.filter_node(node):
            nodes.append(node)
    return nodes


# --- ways and relations -----------------------------------------------------


def _apply_info(element: Any, data: bytes, block: PrimitiveBlock) -> None:
    for number, wire_type, value in iter_fields(data):
        if number not in range(1, 7):
            continue
        raw = _scalar(number, wire_type, value)
        if number == 1:
            element.version = _int32(raw)
        elif number == 2:
            element.timestamp = block._time(_int64(raw))
        elif number == 3:
            element.changeset_id = _int64(raw)
        elif number == 4:
            element.user_id = _int32(raw)
        elif number == 5:
            element.user = block._string(_uint32(raw))
        else:
            element.visible = raw != 0


def _tags(keys: list[int], vals: list[int], block: PrimitiveBlock) -> Tags:
    if len(vals) < len(keys):
        raise WireError("osmpbf: fewer tag values than keys")
    return Tags(
        Tag(block._string(k), block._string(v)) for k, v in zip(keys, vals)
    )


def _way_nodes(
    refs: Optional[list[int]],
    lats: Optional[list[int]],
    lons: Optional[list[int]],
    block: PrimitiveBlock,
) -> list[WayNode]:
    present = [c for c in (refs, lats, lons) if c is not None]
    if not present:
        return []
    count = len(present[0])
    if any(len(c) != count for c in present):
        raise WireError("osmpbf: way node columns differ in length")

    ids = refs if refs is not None else [0] * count
    lat_values = [block._lat(v) for v in lats] if lats is not None else [0.0] * count
    lon_values = [block._lon(v) for v in lons] if lons is not None else [0.0] * count
    return [
        WayNode(id=node_id, lat=lat, lon=lon)
        for node_id, lat, lon in zip(ids, lat_values, lon_values)
    ]


def decode_way(data: bytes, block: PrimitiveBlock) -> Way:
    """Decode a Way message, including node locations when present."""
    way = Way(visible=True)
    keys = vals = refs = lats = lons = None
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            way.id = _int64(_scalar(number, wire_type, value))
        elif number == 2:
            keys = [_uint32(v) for v in _repeated(number, wire_type, value)]
        elif number == 3:
            vals = [_uint32(v) for v in _repeated(number, wire_type, value)]
        elif number == 4:
            _apply_info(way, _message(number, wire_type, value), block)
        elif number == 8:
            refs = _delta_decoded(_repeated(number, wire_type, value))
        elif number == 9:
            lats = _delta_decoded(_repeated(number, wire_type, value))
        elif number == 10:
            lons = _delta_decoded(_repeated(number, wire_type, value))

    way.nodes = _way_nodes(refs, lats, lons, block)
    if keys is not None and vals is not None:
        way.tags = _tags(keys, vals, block)
    return way


def decode_relation(data: bytes, block: PrimitiveBlock) -> Relation:
    """Decode a Relation message with its tags and members."""
    relation = Relation(visible=True)
    keys = vals = roles = memids = types = None
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            relation.id = _int64(_scalar(number, wire_type, value))
        elif number == 2:
            keys = [_uint32(v) for v in _repeated(number, wire_type, value)]
        elif number == 3:
            vals = [_uint32(v) for v in _repeated(number, wire_type, value)]
        elif number == 4:
            _apply_info(relation, _message(number, wire_type, value), block)
        elif number == 8:
            roles = [_int32(v) for v in _repeated(number, wire_type, value)]
        elif number == 9:
            memids = _delta_decoded(_repeated(number, wire_type, value))
        elif number == 10:
            types = [_int32(v) for v in _repeated(number, wire_type, value)]

    if keys is not None and vals is not None:
        relation.tags = _tags(keys, vals, block)

    if roles is not None and memids is not None and types is not None:
        if not len(roles) == len(memids) == len(types):
            raise WireError("osmpbf: relation member columns differ in length")
        relation.members = [
            Member(type=_MEMBER_TYPES.get(kind, ""), ref=ref, role=block._string(role))
            for role, ref, kind in zip(roles, memids, types)
        ]
    return relation