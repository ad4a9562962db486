import io
import threading
import zlib
from concurrent.futures import CancelledError
from itertools import pairwise

import pytest

from osmstream.model import Node, Relation, ScannerClosedError, Way
from osmstream.pbf.decode import PBFFormatError
from osmstream.pbf.scanner import Scanner
from osmstream.pbf.wire import MessageWriter

STRINGS = ["", "amenity", "pub", "highway", "residential", "outer"]


def _deltas(values):
    return [b - a for a, b in pairwise([0, *values])]


def _frame(kind, payload):
    blob = MessageWriter().varint(2, len(payload)).bytes_field(3, zlib.compress(payload)).to_bytes()
    header = MessageWriter().string(1, kind).varint(3, len(blob)).to_bytes()
    return len(header).to_bytes(4, "big") + header + blob


def _header_frame(features=("OsmSchema-V0.6", "DenseNodes")):
    writer = MessageWriter()
    for feature in features:
        writer.string(4, feature)
    writer.string(16, "scanner-test")
    return _frame("OSMHeader", writer.to_bytes())


def _block(group):
    table = MessageWriter()
    for s in STRINGS:
        table.string(1, s)
    return MessageWriter().bytes_field(1, table.to_bytes()).bytes_field(2, group).to_bytes()


def _nodes_frame(ids, tagged=()):
    keyvals = []
    for node_id in ids:
        keyvals += [1, 2, 0] if node_id in tagged else [0]
    dense = (
        MessageWriter()
        .packed_sints(1, _deltas(ids))
        .packed_sints(8, _deltas([515000000] * len(ids)))
        .packed_sints(9, _deltas([-2000000] * len(ids)))
        .packed_varints(10, keyvals)
        .to_bytes()
    )
    return _frame("OSMData", _block(MessageWriter().bytes_field(2, dense).to_bytes()))


def _ways_frame(way_id, refs):
    way = (
        MessageWriter()
        .varint(1, way_id)
        .packed_varints(2, [3])
        .packed_varints(3, [4])
        .packed_sints(8, _deltas(refs))
        .to_bytes()
    )
    return _frame("OSMData", _block(MessageWriter().bytes_field(3, way).to_bytes()))


def _relations_frame(relation_id, refs):
    relation = (
        MessageWriter()
        .varint(1, relation_id)
        .packed_varints(8, [5] * len(refs))
        .packed_sints(9, _deltas(refs))
        .packed_varints(10, [1] * len(refs))
        .to_bytes()
    )
    return _frame("OSMData", _block(MessageWriter().bytes_field(4, relation).to_bytes()))


def _file():
    return (
        _header_frame()
        + _nodes_frame([1, 2, 3], tagged=(2,))
        + _ways_frame(10, [1, 2, 3])
        + _relations_frame(20, [10])
    )


def test_scan_all_objects():
    scanner = Scanner(io.BytesIO(_file()))
    objects = list(scanner)
    assert [(type(o), o.id) for o in objects] == [
        (Node, 1),
        (Node, 2),
        (Node, 3),
        (Way, 10),
        (Relation, 20),
    ]
    assert objects[4].members[0].ref == 10
    assert objects[4].members[0].role == "outer"
    assert scanner.err() is None
    scanner.close()


def test_scan_with_several_procs():
    with Scanner(io.BytesIO(_file()), procs=3) as scanner:
        assert [o.id for o in scanner] == [1, 2, 3, 10, 20]


def test_header():
    scanner = Scanner(io.BytesIO(_file()))
    header = scanner.header()
    assert header.writing_program == "scanner-test"
    assert header.required_features == ["OsmSchema-V0.6", "DenseNodes"]
    assert scanner.scan()
    assert scanner.object().id == 1
    scanner.close()


def test_header_error_stops_scanning():
    data = _header_frame(features=("Unknown",)) + _nodes_frame([1])
    scanner = Scanner(io.BytesIO(data))
    with pytest.raises(PBFFormatError, match="Unknown"):
        scanner.header()
    assert scanner.scan() is False
    assert isinstance(scanner.err(), PBFFormatError)


def test_close_stops_scanning():
    scanner = Scanner(io.BytesIO(_file()))
    assert scanner.scan()
    assert scanner.object().id == 1
    scanner.close()
    assert scanner.scan() is False
    assert isinstance(scanner.err(), ScannerClosedError)


def test_close_after_end_reports_no_error():
    scanner = Scanner(io.BytesIO(_file()))
    assert len(list(scanner)) == 5
    scanner.close()
    assert scanner.err() is None


def test_cancel_event():
    cancel = threading.Event()
    scanner = Scanner(io.BytesIO(_file()), cancel=cancel)
    assert scanner.scan()
    cancel.set()
    assert scanner.scan() is False
    assert isinstance(scanner.err(), CancelledError)
    scanner.close()


def test_truncated_stream_reports_error():
    data = _header_frame() + _nodes_frame([1, 2, 3]) + _nodes_frame([7, 8])[:-3]
    scanner = Scanner(io.BytesIO(data))
    assert [o.id for o in scanner] == [1, 2, 3]
    assert isinstance(scanner.err(), PBFFormatError)
    assert scanner.scan() is False
    scanner.close()


def test_empty_stream():
    scanner = Scanner(io.BytesIO(b""))
    assert scanner.scan() is False
    assert scanner.err() is None


def test_filters_match_unfiltered_selection():
    def pub(node):
        return node.tags.find("amenity") == "pub"

    filtered = Scanner(io.BytesIO(_file()))
    filtered.filter_node = pub
    filtered.filter_way = lambda way: False
    kept = list(filtered)
    filtered.close()

    plain = Scanner(io.BytesIO(_file()))
    expected = [o for o in plain if not isinstance(o, Node) or pub(o)]
    expected = [o for o in expected if not isinstance(o, Way)]
    plain.close()

    assert [o.id for o in kept] == [o.id for o in expected]
    assert [o.id for o in kept] == [2, 20]


def test_skip_flags():
    scanner = Scanner(io.BytesIO(_file()))
    scanner.skip_nodes = True
    scanner.skip_relations = True
    objects = list(scanner)
    assert [(type(o), o.id) for o in objects] == [(Way, 10)]
    scanner.close()


def test_fully_scanned_bytes_tracks_blocks():
    head = _header_frame()
    first = _nodes_frame([1, 2, 3])
    second = _nodes_frame([10, 11, 12])
    scanner = Scanner(io.BytesIO(head + first + second))
    assert scanner.fully_scanned_bytes() == 0

    seen = []
    for obj in scanner:
        seen.append(scanner.fully_scanned_bytes())
    assert seen == sorted(seen)
    assert scanner.fully_scanned_bytes() == len(head) + len(first)
    assert scanner.previous_fully_scanned_bytes() == len(head)
    scanner.close()


def test_restart_from_fully_scanned_bytes():
    stream = io.BytesIO(_header_frame() + _nodes_frame([1, 2, 3]) + _nodes_frame([10, 11, 12]))
    scanner = Scanner(stream)
    while scanner.scan():
        if scanner.object().id == 11:
            break
    offset = scanner.fully_scanned_bytes()
    scanner.close()

    stream.seek(offset)
    restarted = Scanner(stream, procs=2)
    assert restarted.header() is None
    assert [o.id for o in restarted] == [10, 11, 12]
    restarted.close()