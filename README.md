# osmstream

Read and write OpenStreetMap data as a stream of nodes, ways and relations.
The package has no dependencies beyond the standard library.

- `osmstream.pbf.scanner.Scanner` steps through an `.osm.pbf` stream. It can
  skip element types or filter elements as they are decoded.
- `osmstream.pbf.encode.Encoder` writes nodes, ways and relations to a PBF
  stream in blocks of up to 8000 elements of one type.
  `osmstream.pbf.streaming.StreamingEncoder` writes a block each time a batch
  of a chosen size fills up.
- `osmstream.osmxml.XMLScanner` reads OSM XML: bounds, nodes, ways,
  relations, changesets, notes and users.
- `osmstream.model` holds the element types: `Node`, `Way`, `WayNode`,
  `Relation`, `Member`, `Update`, `Bounds`, `Tag` and `Tags`.
- `osmstream.polygon.way_is_polygon` and `relation_is_polygon` decide whether
  an element should be treated as an area.
- `osmstream.listscanner.ListScanner` offers the same scanning interface over
  a plain list of objects, which is handy in tests.

Every scanner works the same way: call `scan()` until it returns `False`,
read the current element with `object()`, then check `err()`. `err()`
returns `None` at a normal end of the data, the error that stopped the scan,
a `ScannerClosedError` after `close()`, or a `CancelledError` if the
`cancel` event passed to the scanner was set. Scanners are also iterable and
work as context managers.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Reading a PBF file

```python
from osmstream.model import Node, Way, Relation
from osmstream.pbf.scanner import Scanner

with open("region.osm.pbf", "rb") as f:
    with Scanner(f, procs=2) as scanner:
        counts = {Node: 0, Way: 0, Relation: 0}
        while scanner.scan():
            counts[type(scanner.object())] += 1
        error = scanner.err()

if error is not None:
    raise error
print(counts)
```

`procs` sets how many threads decompress and decode data blocks; elements
always come back in file order.

Before the first `scan()`, set `skip_nodes`, `skip_ways` or `skip_relations`
to leave an element type out, and `filter_node`, `filter_way` or
`filter_relation` to a function that returns `True` for the elements to keep.

`scanner.header()` returns the file header: bounds, required and optional
features, writing program, source and replication details. Reading stops
with an error if the file requires a feature other than `OsmSchema-V0.6`,
`DenseNodes` or `HistoricalInformation`.

`fully_scanned_bytes()` returns the byte offset of the block being scanned,
so a later run can seek to that point and carry on from there;
`previous_fully_scanned_bytes()` returns the offset of the block before it.

## Writing a PBF file

```python
from osmstream.model import Bounds, Node, Tag, Tags
from osmstream.pbf.encode import Encoder

with open("out.osm.pbf", "wb") as f:
    encoder = Encoder(
        f,
        writing_program="my-tool",
        compression=True,
        bounding_box=Bounds(min_lat=51.5, max_lat=51.6, min_lon=-0.2, max_lon=-0.1),
    )
    encoder.start()
    encoder.write_node(Node(id=1, lat=51.5074, lon=-0.1278,
                            tags=Tags([Tag("amenity", "pub")])))
    encoder.close()
```

`start()` writes the header and must come before any data is written.
`write_object()` accepts a node, way or relation and raises `TypeError` for
anything else. `flush()` writes the pending nodes, then ways, then
relations; `close()` flushes and closes the writer. Used as a context
manager, the encoder starts on entry and closes on exit.

`StreamingEncoder` takes the same keyword options plus `batch_size` and
`error_handler`; the handler is called with the error before `write_object()`
raises it for an unsupported object.

## Reading OSM XML

```python
from osmstream.osmxml import XMLScanner

with open("changesets.osm", "rb") as f:
    scanner = XMLScanner(f)
    while scanner.scan():
        print(scanner.object())
```

Bounds, nodes, ways and relations come back as the `osmstream.model` types.
Changesets, notes and users come back as simple records with an
`object_type`, an `id`, their `attributes`, their `tags` and the text of
their simple child elements in `fields`.

## Polygons

```python
from osmstream.model import Way, WayNode, Tag, Tags
from osmstream.polygon import way_is_polygon

ring = [WayNode(id=i) for i in (1, 2, 3, 1)]
way_is_polygon(Way(nodes=ring, tags=Tags([Tag("building", "yes")])))  # True
```

A way is a polygon when it is closed, has more than three nodes, and its
`area` tag or one of the known area keys says so. A relation is a polygon
when its `type` is `multipolygon` or `boundary`.

## What it does not do

- There is no command-line tool; everything is used from Python.
- The PBF reader handles dense nodes only; a block with plain (non-dense)
  nodes stops the scan with an error.
- The PBF writer stores way node references but not node locations on ways.
- XML can be read but not written, except that `Relation` has `to_xml()`
  and `to_json()`. Nodes and ways have no serialisation of their own.
- Nothing is downloaded: scanners read from streams you open yourself.