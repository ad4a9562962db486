import io
import threading
import xml.etree.ElementTree as ET
from concurrent.futures import CancelledError
from datetime import datetime, timezone

import pytest

from osmstream.model import Bounds, Node, ObjectType, Relation, ScannerClosedError, Way
from osmstream.osmxml import XMLScanner

CHANGESETS = b"""<?xml version="1.0" encoding="UTF-8"?>
<osm version="0.6" generator="replicate_changesets.rb">
  <changeset id="41226352" created_at="2016-08-03T22:40:15Z" closed_at="2016-08-04T01:41:27Z" open="false" num_changes="112" user="mapper_one" uid="1001" min_lat="36.496286" max_lat="36.6110983" min_lon="136.6138636" max_lon="136.644462" comments_count="0">
    <tag k="comment" v="updated fire hydrant details"/>
    <tag k="created_by" v="HydrantEditor v0.3"/>
  </changeset>
  <changeset id="41227987" created_at="2016-08-04T01:41:04Z" closed_at="2016-08-04T01:41:07Z" open="false" num_changes="7" user="mapper_two" uid="1002" min_lat="-33.7963817" max_lat="-33.7881945" min_lon="151.2527542" max_lon="151.2667464" comments_count="0">
    <tag k="comment" v="Updated Burnt Creek Deviation to Motorway Standard"/>
    <tag k="locale" v="en"/>
    <tag k="imagery_used" v="Bing"/>
    <tag k="created_by" v="iD 1.9.7"/>
  </changeset>
</osm>"""

CHANGESETS_TRUNCATED = b"""<?xml version="1.0" encoding="UTF-8"?>
<osm version="0.6" generator="replicate_changesets.rb">
  <changeset id="41226352" created_at="2016-08-03T22:40:15Z" open="false" user="mapper_one" uid="1001">
    <tag k="comment" v="updated fire hydrant details"/>
  </changeset>
  <changeset id="41227987" created_at="2016-08-04T01:41:04Z" open="false" user="mapper_two" uid="1002">
    <tag k="comment" v="Updated Burnt Creek Deviation to Motorway Standard"/>"""

USER_NOTE = b"""<?xml version="1.0" encoding="UTF-8"?>
<osm>
  <user id="1"></user>
  <note><id>2</id></note>
</osm>"""

BOUNDS = b"""<?xml version="1.0" encoding="UTF-8"?>
<osm>
	<bounds minlat="1" minlon="2" maxlat="3" maxlon="4"/>
</osm>"""

ELEMENTS = b"""<osm>
  <node id="10" lat="1.5" lon="2.5" version="3" visible="true" user="someone" uid="7" timestamp="2012-01-01T00:00:00Z">
    <tag k="amenity" v="pub"/>
  </node>
  <way id="20" version="2">
    <nd ref="10"/><nd ref="11"/>
    <tag k="highway" v="residential"/>
  </way>
  <relation id="30" visible="false">
    <member type="way" ref="20" role="outer"><nd lat="1" lon="2"/></member>
    <member type="node" ref="10" role=""/>
    <tag k="type" v="multipolygon"/>
  </relation>
</osm>"""


def test_scanner_changesets():
    scanner = XMLScanner(io.BytesIO(CHANGESETS))

    assert scanner.scan()
    assert scanner.object().id == 41226352

    assert scanner.scan()
    changeset = scanner.object()
    assert changeset.id == 41227987
    assert changeset.object_type is ObjectType.CHANGESET
    assert changeset.tags.find("locale") == "en"
    assert changeset.attributes["user"] == "mapper_two"

    assert not scanner.scan()
    assert scanner.err() is None


def test_scanner_cancel():
    cancel = threading.Event()
    scanner = XMLScanner(io.BytesIO(CHANGESETS), cancel=cancel)

    assert scanner.scan()
    assert scanner.object().id == 41226352

    cancel.set()
    assert not scanner.scan()
    assert isinstance(scanner.err(), CancelledError)


def test_scanner_close():
    scanner = XMLScanner(io.BytesIO(CHANGESETS))

    assert scanner.scan()
    assert scanner.object().id == 41226352

    scanner.close()
    assert not scanner.scan()
    assert isinstance(scanner.err(), ScannerClosedError)


def test_scanner_err():
    scanner = XMLScanner(io.BytesIO(CHANGESETS_TRUNCATED))

    assert scanner.scan()
    assert scanner.object().id == 41226352

    assert not scanner.scan()
    assert not scanner.scan()
    assert isinstance(scanner.err(), ET.ParseError)

    scanner.close()
    assert isinstance(scanner.err(), ET.ParseError)


def test_scanner_user_note():
    scanner = XMLScanner(io.BytesIO(USER_NOTE))

    assert scanner.scan()
    user = scanner.object()
    assert user.object_type is ObjectType.USER
    assert user.id == 1

    assert scanner.scan()
    note = scanner.object()
    assert note.object_type is ObjectType.NOTE
    assert note.id == 2


def test_scanner_bounds():
    scanner = XMLScanner(io.BytesIO(BOUNDS))
    assert scanner.scan()
    assert scanner.object() == Bounds(min_lat=1, min_lon=2, max_lat=3, max_lon=4)


def test_scanner_elements():
    objects = list(XMLScanner(io.BytesIO(ELEMENTS)))
    assert [type(o) for o in objects] == [Node, Way, Relation]

    node, way, relation = objects
    assert (node.id, node.lat, node.lon, node.version) == (10, 1.5, 2.5, 3)
    assert node.visible is True
    assert node.user == "someone"
    assert node.timestamp == datetime(2012, 1, 1, tzinfo=timezone.utc)
    assert node.tags.find("amenity") == "pub"

    assert [n.id for n in way.nodes] == [10, 11]
    assert way.tags.find("highway") == "residential"

    assert relation.visible is False
    assert [(m.type, m.ref, m.role) for m in relation.members] == [
        (ObjectType.WAY, 20, "outer"),
        (ObjectType.NODE, 10, ""),
    ]
    assert (relation.members[0].nodes[0].lat, relation.members[0].nodes[0].lon) == (1.0, 2.0)


def test_scanner_reads_text_streams_and_ignores_case():
    scanner = XMLScanner(io.StringIO('<osm><Node id="5" lat="1" lon="2"/></osm>'))
    assert scanner.scan()
    assert scanner.object().id == 5


def test_scanner_invalid_value_is_an_error():
    scanner = XMLScanner(io.BytesIO(b'<osm><node id="abc"/></osm>'))
    assert not scanner.scan()
    assert isinstance(scanner.err(), ValueError)
    assert scanner.object() is None


def test_scanner_empty_input_ends_cleanly():
    scanner = XMLScanner(io.BytesIO(b""))
    assert not scanner.scan()
    assert scanner.err() is None


@pytest.mark.parametrize("visible", ["yes", "maybe"])
def test_scanner_invalid_boolean(visible):
    data = f'<osm><node id="1" visible="{visible}"/></osm>'.encode()
    scanner = XMLScanner(io.BytesIO(data))
    assert not scanner.scan()
    assert isinstance(scanner.err(), ValueError)