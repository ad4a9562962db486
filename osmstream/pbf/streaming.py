"""An encoder that writes a block every time a batch of one element type fills up."""

from __future__ import annotations

from typing import Any, BinaryIO, Callable, Optional

from osmstream.model import Node, Relation, Way
from osmstream.pbf.encode import BATCH_SIZE, Encoder

ErrorHandler = Callable[[BaseException], None]


def _print_error(error: BaseException) -> None:
    print(f"StreamingEncoder error: {error}")


class StreamingEncoder:
    """Writes nodes, ways and relations, flushing each type every ``batch_size`` elements.

    Keyword arguments other than ``batch_size`` and ``error_handler`` configure
    the underlying :class:`Encoder`. The error handler is told about objects
    that cannot be written; by default it prints them.
    """

    def __init__(
        self,
        writer: BinaryIO,
        *,
        batch_size: int = BATCH_SIZE,
        error_handler: Optional[ErrorHandler] = None,
        **encoder_options: Any,
    ) -> None:
        self.encoder = Encoder(writer, **encoder_options)
        self.batch_size = batch_size
        self.error_handler: ErrorHandler = (
            error_handler if error_handler is not None else _print_error
        )
        self._node_count = 0
        self._way_count = 0
        self._relation_count = 0
        self._started = False

    def start(self) -> None:
        """Write the file header."""
        self.encoder.start()
        self._started = True

    def close(self) -> None:
        """Flush all pending elements and close the encoder and its writer."""
        self.flush()
        self.encoder.close()

    def flush(self) -> None:
        """Write all pending elements and reset the batch counters."""
        self.encoder.flush()
        self._node_count = 0
        self._way_count = 0
        self._relation_count = 0

    def write_node(self, node: Node) -> None:
        """Queue a node, flushing the nodes when the batch is full."""
        self.encoder.write_node(node)
        self._node_count += 1
        if self._node_count >= self.batch_size:
            self.encoder.flush_nodes()
            self._node_count = 0

    def write_way(self, way: Way) -> None:
        """Queue a way, flushing the ways when the batch is full."""
        self.encoder.write_way(way)
        self._way_count += 1
        if self._way_count >= self.batch_size:
            self.encoder.flush_ways()
            self._way_count = 0

    def write_relation(self, relation: Relation) -> None:
        """Queue a relation, flushing the relations when the batch is full."""
        self.encoder.write_relation(relation)
        self._relation_count += 1
        if self._relation_count >= self.batch_size:
            self.encoder.flush_relations()
            self._relation_count = 0

    def write_object(self, obj: Any) -> None:
        """Queue a node, way or relation; report and raise TypeError for anything else."""
        if isinstance(obj, Node):
            self.write_node(obj)
        elif isinstance(obj, Way):
            self.write_way(obj)
        elif isinstance(obj, Relation):
            self.write_relation(obj)
        else:
            error = TypeError(f"unsupported object type: {type(obj).__name__}")
            self.error_handler(error)
            raise error

    def __enter__(self) -> StreamingEncoder:
        if not self._started:
            self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()