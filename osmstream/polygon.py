"""Heuristics deciding whether an OSM way or relation describes an area."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from osmstream.model import Relation, Way


class Condition(str, Enum):
    """How a key's values decide whether a way is a polygon."""

    ALL = "all"
    BLACKLIST = "blacklist"
    WHITELIST = "whitelist"


@dataclass(frozen=True)
class PolygonCondition:
    """A polygon rule for one tag key; values are kept sorted."""

    key: str
    condition: Condition
    values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(sorted(self.values)))


POLYGON_CONDITIONS: tuple[PolygonCondition, ...] = (
    PolygonCondition("building", Condition.ALL),
    PolygonCondition(
        "highway", Condition.WHITELIST, ("services", "rest_area", "escape", "elevator")
    ),
    PolygonCondition(
        "natural",
        Condition.BLACKLIST,
        ("coastline", "cliff", "ridge", "arete", "tree_row"),
    ),
    PolygonCondition("landuse", Condition.ALL),
    PolygonCondition(
        "waterway", Condition.WHITELIST, ("riverbank", "dock", "boatyard", "dam")
    ),
    PolygonCondition("amenity", Condition.ALL),
    PolygonCondition("leisure", Condition.ALL),
    PolygonCondition(
        "barrier",
        Condition.WHITELIST,
        ("city_wall", "ditch", "hedge", "retaining_wall", "wall", "spikes"),
    ),
    PolygonCondition(
        "railway", Condition.WHITELIST, ("station", "turntable", "roundhouse", "platform")
    ),
    PolygonCondition("boundary", Condition.ALL),
    PolygonCondition(
        "man_made", Condition.BLACKLIST, ("cutline", "embankment", "pipeline")
    ),
    PolygonCondition(
        "power", Condition.WHITELIST, ("plant", "substation", "generator", "transformer")
    ),
    PolygonCondition("place", Condition.ALL),
    PolygonCondition("shop", Condition.ALL),
    PolygonCondition("aeroway", Condition.BLACKLIST, ("taxiway",)),
    PolygonCondition("tourism", Condition.ALL),
    PolygonCondition("historic", Condition.ALL),
    PolygonCondition("public_transport", Condition.ALL),
    PolygonCondition("office", Condition.ALL),
    PolygonCondition("building:part", Condition.ALL),
    PolygonCondition("military", Condition.ALL),
    PolygonCondition("ruins", Condition.ALL),
    PolygonCondition("area:highway", Condition.ALL),
    PolygonCondition("craft", Condition.ALL),
    PolygonCondition("golf", Condition.ALL),
    PolygonCondition("indoor", Condition.ALL),
)


def _condition_met(condition: PolygonCondition, value: str) -> bool:
    if condition.condition is Condition.ALL:
        return True
    if condition.condition is Condition.WHITELIST:
        return value in condition.values
    return value not in condition.values


def way_is_polygon(way: Way) -> bool:
    """Return True if the way should be considered a closed polygon area."""
    nodes = way.nodes
    # The first node is repeated at the end, so a ring needs more than three.
    if len(nodes) <= 3:
        return False
    if nodes[0].id != nodes[-1].id:
        return False

    area = way.tags.find("area")
    if area == "no":
        return False
    if area:
        return True

    for condition in POLYGON_CONDITIONS:
        value = way.tags.find(condition.key)
        if value in ("", "no"):
            continue
        if _condition_met(condition, value):
            return True
    return False


def relation_is_polygon(relation: Relation) -> bool:
    """Return True if the relation is a multipolygon or a boundary."""
    return relation.tags.find("type") in ("multipolygon", "boundary")