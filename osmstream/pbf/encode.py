"""Writing of OSM PBF files from nodes, ways and relations."""

from __future__ import annotations

import zlib
from datetime import datetime, timedelta, timezone
from itertools import pairwise
from typing import Any, BinaryIO, Iterable, Iterator, Optional, Sequence

from osmstream.model import Bounds, Node, ObjectType, Relation, Way
from osmstream.pbf.decode import OSM_DATA_TYPE, OSM_HEADER_TYPE
from osmstream.pbf.wire import MessageWriter

BATCH_SIZE = 8000
GRANULARITY = 100
DEFAULT_WRITING_PROGRAM = "osmstream/pbf"
DEFAULT_REQUIRED_FEATURES = ("OsmSchema-V0.6",)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_MEMBER_TYPES = {
    ObjectType.NODE.value: 0,
    ObjectType.WAY.value: 1,
    ObjectType.RELATION.value: 2,
}


# --- string table -----------------------------------------------------------


def build_string_table(strings: Iterable[str]) -> list[str]:
    """Return a string table: the empty string first, then each string once."""
    table = [""]
    seen = {""}
    for s in strings:
        if s not in seen:
            seen.add(s)
            table.append(s)
    return table


def find_string_index(table: Sequence[str], s: str) -> int:
    """Return the index of s in the table; 0 for the empty or a missing string."""
    if s == "":
        return 0
    try:
        return table.index(s)
    except ValueError:
        return 0


class _StringIndex:
    def __init__(self, strings: Iterable[str]) -> None:
        self.table = build_string_table(strings)
        self._index = {s: i for i, s in enumerate(self.table)}

    def __getitem__(self, s: str) -> int:
        return self._index.get(s, 0)

    def to_bytes(self) -> bytes:
        writer = MessageWriter()
        for s in self.table:
            writer.string(1, s)
        return writer.to_bytes()


def _element_strings(elements: Iterable[Any]) -> Iterator[str]:
    for element in elements:
        if element.user:
            yield element.user
        for tag in element.tags:
            yield tag.key
            yield tag.value
        for member in getattr(element, "members", ()):
            yield member.role


# --- conversions ------------------------------------------------------------


def _unix(t: datetime) -> int:
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return (t - _EPOCH) // timedelta(seconds=1)


def _deltas(values: Iterable[int]) -> list[int]:
    return [current - previous for previous, current in pairwise([0, *values])]


def _member_type(value: Any) -> int:
    name = value.value if isinstance(value, ObjectType) else str(value)
    return _MEMBER_TYPES.get(name, 0)


def _info(element: Any, strings: _StringIndex) -> bytes:
    return (
        MessageWriter()
        .varint(1, element.version)
        .varint(2, _unix(element.timestamp))
        .varint(3, element.changeset_id)
        .varint(4, element.user_id)
        .varint(5, strings[element.user])
        .varint(6, bool(element.visible))
        .to_bytes()
    )


# --- groups -----------------------------------------------------------------


def _dense_nodes_group(nodes: Sequence[Node], strings: _StringIndex) -> bytes:
    keys_vals: list[int] = []
    for node in nodes:
        for tag in node.tags:
            keys_vals.extend((strings[tag.key], strings[tag.value]))
        keys_vals.append(0)

    info = (
        MessageWriter()
        .packed_varints(1, [n.version for n in nodes])
        .packed_sints(2, _deltas(_unix(n.timestamp) for n in nodes))
        .packed_sints(3, _deltas(n.changeset_id for n in nodes))
        .packed_sints(4, _deltas(n.user_id for n in nodes))
        .packed_sints(5, _deltas(strings[n.user] for n in nodes))
        .packed_varints(6, [int(bool(n.visible)) for n in nodes])
        .to_bytes()
    )

    dense = (
        MessageWriter()
        .packed_sints(1, _deltas(n.id for n in nodes))
        .bytes_field(5, info)
        .packed_sints(8, _deltas(int(n.lat * 1e7) for n in nodes))
        .packed_sints(9, _deltas(int(n.lon * 1e7) for n in nodes))
        .packed_varints(10, keys_vals)
        .to_bytes()
    )
    return MessageWriter().bytes_field(2, dense).to_bytes()


def _ways_group(ways: Sequence[Way], strings: _StringIndex) -> bytes:
    group = MessageWriter()
    for way in ways:
        message = MessageWriter().varint(1, way.id)
        message.packed_varints(2, [strings[t.key] for t in way.tags])
        message.packed_varints(3, [strings[t.value] for t in way.tags])
        if way.version > 0:
            message.bytes_field(4, _info(way, strings))
        message.packed_sints(8, _deltas(n.id for n in way.nodes))
        group.bytes_field(3, message.to_bytes())
    return group.to_bytes()


def _relations_group(relations: Sequence[Relation], strings: _StringIndex) -> bytes:
    group = MessageWriter()
    for relation in relations:
        message = MessageWriter().varint(1, relation.id)
        message.packed_varints(2, [strings[t.key] for t in relation.tags])
        message.packed_varints(3, [strings[t.value] for t in relation.tags])
        if relation.version > 0:
            message.bytes_field(4, _info(relation, strings))
        message.packed_varints(8, [strings[m.role] for m in relation.members])
        message.packed_sints(9, _deltas(m.ref for m in relation.members))
        message.packed_varints(10, [_member_type(m.type) for m in relation.members])
        group.bytes_field(4, message.to_bytes())
    return group.to_bytes()


def _primitive_block(strings: _StringIndex, group: bytes) -> bytes:
    return (
        MessageWriter()
        .bytes_field(1, strings.to_bytes())
        .bytes_field(2, group)
        .varint(17, GRANULARITY)
        .varint(19, 0)
        .varint(20, 0)
        .to_bytes()
    )


def _header_block(
    bounds: Optional[Bounds],
    required: Sequence[str],
    optional: Sequence[str],
    writing_program: str,
) -> bytes:
    writer = MessageWriter()
    if bounds is not None:
        bbox = (
            MessageWriter()
            .sint(1, int(bounds.min_lon * 1e9))
            .sint(2, int(bounds.max_lon * 1e9))
            .sint(3, int(bounds.max_lat * 1e9))
            .sint(4, int(bounds.min_lat * 1e9))
            .to_bytes()
        )
        writer.bytes_field(1, bbox)
    for feature in required:
        writer.string(4, feature)
    for feature in optional:
        writer.string(5, feature)
    writer.string(16, writing_program)
    return writer.to_bytes()


# --- encoder ----------------------------------------------------------------


class Encoder:
    """Writes nodes, ways and relations to a PBF stream in blocks of 8000.

    Each element type is batched separately; a batch is written when it is
    full, on ``flush`` and on ``close``. ``close`` also closes the writer.
    """

    def __init__(
        self,
        writer: BinaryIO,
        *,
        writing_program: str = DEFAULT_WRITING_PROGRAM,
        compression: bool = True,
        bounding_box: Optional[Bounds] = None,
        required_features: Sequence[str] = DEFAULT_REQUIRED_FEATURES,
        optional_features: Sequence[str] = (),
    ) -> None:
        self.writing_program = writing_program
        self.compression = compression
        self.bounding_box = bounding_box
        self.required_features = list(required_features)
        self.optional_features = list(optional_features)
        self._writer = writer
        self._nodes: list[Node] = []
        self._ways: list[Way] = []
        self._relations: list[Relation] = []
        self._started = False
        self._closed = False

    def start(self) -> None:
        """Write the file header; must be called once before data is flushed."""
        if self._started:
            raise RuntimeError("encoder already started")
        if self._closed:
            raise RuntimeError("encoder closed")
        self._started = True
        header = _header_block(
            self.bounding_box,
            self.required_features,
            self.optional_features,
            self.writing_program,
        )
        self._write_blob(header, OSM_HEADER_TYPE)

    def close(self) -> None:
        """Write all pending elements and close the writer."""
        if self._closed:
            return
        self.flush()
        self._closed = True
        close = getattr(self._writer, "close", None)
        if callable(close):
            close()

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("encoder closed")

    def write_node(self, node: Node) -> None:
        """Queue a node."""
        self._check_open()
        self._nodes.append(node)
        if len(self._nodes) >= BATCH_SIZE:
            self.flush_nodes()

    def write_way(self, way: Way) -> None:
        """Queue a way."""
        self._check_open()
        self._ways.append(way)
        if len(self._ways) >= BATCH_SIZE:
            self.flush_ways()

    def write_relation(self, relation: Relation) -> None:
        """Queue a relation."""
        self._check_open()
        self._relations.append(relation)
        if len(self._relations) >= BATCH_SIZE:
            self.flush_relations()

    def write_object(self, obj: Any) -> None:
        """Queue a node, way or relation; raise TypeError for anything else."""
        if isinstance(obj, Node):
            self.write_node(obj)
        elif isinstance(obj, Way):
            self.write_way(obj)
        elif isinstance(obj, Relation):
            self.write_relation(obj)
        else:
            raise TypeError(f"unsupported object type: {type(obj).__name__}")

    def flush(self) -> None:
        """Write the pending nodes, then ways, then relations."""
        self.flush_nodes()
        self.flush_ways()
        self.flush_relations()

    def flush_nodes(self) -> None:
        """Write the pending nodes as one block."""
        if self._nodes:
            strings = _StringIndex(_element_strings(self._nodes))
            self._write_data(strings, _dense_nodes_group(self._nodes, strings))
            self._nodes = []

    def flush_ways(self) -> None:
        """Write the pending ways as one block."""
        if self._ways:
            strings = _StringIndex(_element_strings(self._ways))
            self._write_data(strings, _ways_group(self._ways, strings))
            self._ways = []

    def flush_relations(self) -> None:
        """Write the pending relations as one block."""
        if self._relations:
            strings = _StringIndex(_element_strings(self._relations))
            self._write_data(strings, _relations_group(self._relations, strings))
            self._relations = []

    def _write_data(self, strings: _StringIndex, group: bytes) -> None:
        if not self._started:
            raise RuntimeError("encoder not started")
        self._write_blob(_primitive_block(strings, group), OSM_DATA_TYPE)

    def _write_blob(self, data: bytes, blob_type: str) -> None:
        blob = MessageWriter()
        if self.compression:
            blob.varint(2, len(data)).bytes_field(3, zlib.compress(data))
        else:
            blob.bytes_field(1, data).varint(2, len(data))
        encoded_blob = blob.to_bytes()
        blob_header = (
            MessageWriter()
            .string(1, blob_type)
            .varint(3, len(encoded_blob))
            .to_bytes()
        )
        self._writer.write(len(blob_header).to_bytes(4, "big"))
        self._writer.write(blob_header)
        self._writer.write(encoded_blob)

    def __enter__(self) -> Encoder:
        if not self._started:
            self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()