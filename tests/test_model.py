from datetime import datetime, timezone

import pytest

from osmstream.model import (
    ZERO_TIME,
    Bounds,
    Member,
    ObjectType,
    Relation,
    Relations,
    ScannerClosedError,
    Tag,
    Tags,
    Update,
    UpdateIndexOutOfRangeError,
    WayNode,
)


def utc(year, month=1, day=1):
    return datetime(year, month, day, tzinfo=timezone.utc)


def test_relation_to_json_empty():
    r = Relation(id=123)
    assert r.to_json() == (
        '{"type":"relation","id":123,"visible":false,'
        '"timestamp":"0001-01-01T00:00:00Z","members":[]}'
    )


def test_relation_to_json_with_members():
    r = Relation(
        id=123,
        members=[Member(type=ObjectType.NODE, ref=123, role="outer", version=1)],
    )
    assert r.to_json() == (
        '{"type":"relation","id":123,"visible":false,'
        '"timestamp":"0001-01-01T00:00:00Z",'
        '"members":[{"type":"node","ref":123,"role":"outer","version":1}]}'
    )


def test_relation_to_dict():
    r = Relation(id=5, tags=[Tag("b", "2"), Tag("a", "1")])
    data = r.to_dict()
    assert data["type"] == "relation"
    assert data["members"] == []
    assert list(data["tags"].items()) == [("a", "1"), ("b", "2")]


def test_apply_updates_up_to():
    updates = [
        Update(index=0, timestamp=utc(2012), version=11),
        Update(index=1, timestamp=utc(2014), version=12),
        Update(index=2, timestamp=utc(2013), version=13, lat=10, lon=20),
    ]
    r = Relation(id=123, members=[Member(version=1), Member(version=2), Member(version=3)])

    r.updates = updates
    r.apply_updates_up_to(utc(2011))
    assert [m.version for m in r.members] == [1, 2, 3]

    r.updates = updates
    r.apply_updates_up_to(utc(2013))
    assert [m.version for m in r.members] == [11, 2, 13]
    assert r.members[2].lat == 10
    assert r.members[2].lon == 20
    assert len(r.updates) == 1
    assert r.updates[0].index == 1


def test_apply_update():
    r = Relation(id=123, members=[Member(ref=1, type=ObjectType.WAY, orientation=-1)])
    r.apply_update(Update(index=0, version=1, changeset_id=2, reverse=True))
    assert r.members[0] == Member(
        ref=1, type=ObjectType.WAY, version=1, changeset_id=2, orientation=1
    )


def test_apply_update_error():
    r = Relation(id=123, members=[Member(ref=1, type=ObjectType.NODE)])
    with pytest.raises(UpdateIndexOutOfRangeError) as info:
        r.apply_update(Update(index=1))
    assert info.value.index == 1


def test_relation_to_xml():
    r = Relation(id=123)
    base = (
        '<relation id="123" user="" uid="0" visible="false" version="0" '
        'changeset="0" timestamp="0001-01-01T00:00:00Z">'
    )
    assert r.to_xml() == base + "</relation>"

    r.members = [Member(type=ObjectType.NODE, ref=123, role="child")]
    assert r.to_xml() == (
        base + '<member type="node" ref="123" role="child"></member></relation>'
    )

    r.members = [
        Member(
            type=ObjectType.WAY,
            ref=123,
            role="child",
            nodes=[WayNode(lat=1, lon=2), WayNode(lat=3, lon=4)],
        )
    ]
    assert r.to_xml() == (
        base
        + '<member type="way" ref="123" role="child">'
        + '<nd lat="1" lon="2"></nd><nd lat="3" lon="4"></nd></member></relation>'
    )

    r.members = []
    r.updates = [Update(index=0, version=1, changeset_id=123, timestamp=utc(2012))]
    assert r.to_xml() == (
        base
        + '<update index="0" version="1" timestamp="2012-01-01T00:00:00Z" '
        + 'changeset="123"></update></relation>'
    )


def test_relation_to_xml_escapes_attributes():
    r = Relation(id=1, user='a"b<c')
    assert 'user="a&#34;b&lt;c"' in r.to_xml()


def test_relation_to_xml_bounds_and_tags():
    r = Relation(id=1, tags=[Tag("type", "route")], bounds=Bounds(1, 3, 2, 4))
    xml = r.to_xml()
    assert '<tag k="type" v="route"></tag>' in xml
    assert '<bounds minlat="1" minlon="2" maxlat="3" maxlon="4"></bounds>' in xml


def test_relations_ids():
    rs = Relations([Relation(id=1, version=3), Relation(id=2, version=4)])
    assert rs.ids() == [1, 2]


def test_relations_sort_by_id_version():
    rs = Relations(
        [
            Relation(id=7, version=3),
            Relation(id=2, version=4),
            Relation(id=5, version=2),
            Relation(id=5, version=3),
            Relation(id=5, version=4),
            Relation(id=3, version=4),
            Relation(id=4, version=4),
            Relation(id=9, version=4),
        ]
    )
    rs.sort_by_id_version()
    assert [(r.id, r.version) for r in rs] == [
        (2, 4),
        (3, 4),
        (4, 4),
        (5, 2),
        (5, 3),
        (5, 4),
        (7, 3),
        (9, 4),
    ]


def test_committed_at():
    r = Relation(id=1, timestamp=utc(2012))
    assert r.committed_at() == utc(2012)
    r.committed = utc(2013)
    assert r.committed_at() == utc(2013)


def test_tags_find_and_map():
    tags = Tags([Tag("a", "1"), Tag("b", "2")])
    assert tags.find("b") == "2"
    assert tags.find("missing") == ""
    assert Relation(tags=tags).tag_map() == {"a": "1", "b": "2"}


def test_member_point():
    assert Member(lat=10, lon=20).point() == (20, 10)


def test_member_to_dict_omits_empty():
    m = Member(type=ObjectType.WAY, ref=4, role="outer")
    assert m.to_dict() == {"type": "way", "ref": 4, "role": "outer"}


def test_zero_time_default():
    assert Relation().timestamp == ZERO_TIME


def test_scanner_closed_error_message():
    assert str(ScannerClosedError()) == "osm: scanner closed by user"