"""A scanner stepping through the elements of an OSM PBF stream."""

from __future__ import annotations

import threading
from concurrent.futures import CancelledError
from typing import Any, BinaryIO, Callable, Iterator, Optional

from osmstream.model import Node, Relation, ScannerClosedError, Way
from osmstream.pbf.blocks import DecodeOptions
from osmstream.pbf.decode import Decoder, Header


class Scanner:
    """Reads nodes, ways and relations from a PBF stream one at a time.

    Scanning stops for good at the end of the data, the first error, a call to
    ``close`` or the ``cancel`` event being set. The skip flags and filters must
    be set before the first call to ``scan`` or ``header``.
    """

    def __init__(
        self,
        stream: BinaryIO,
        procs: int = 1,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.skip_nodes = False
        self.skip_ways = False
        self.skip_relations = False
        self.filter_node: Optional[Callable[[Node], bool]] = None
        self.filter_way: Optional[Callable[[Way], bool]] = None
        self.filter_relation: Optional[Callable[[Relation], bool]] = None

        self._cancel = cancel
        self._procs = procs
        self._decoder = Decoder(stream)
        self._started = False
        self._closed = False
        self._done = False
        self._next: Any = None
        self._err: Optional[BaseException] = None

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def _start(self) -> None:
        if self._started:
            return
        self._started = True
        self._decoder.options = DecodeOptions(
            skip_nodes=self.skip_nodes,
            skip_ways=self.skip_ways,
            skip_relations=self.skip_relations,
            filter_node=self.filter_node,
            filter_way=self.filter_way,
            filter_relation=self.filter_relation,
        )
        try:
            self._decoder.start(self._procs)
        except Exception as exc:
            self._err = exc

    def header(self) -> Optional[Header]:
        """Return the file header; raise the error that reading it caused."""
        self._start()
        if self._err is not None:
            raise self._err
        return self._decoder.header

    def scan(self) -> bool:
        """Advance to the next element; return False when scanning has stopped."""
        self._start()
        if self._err is not None or self._done or self._closed or self._cancelled():
            return False
        try:
            obj = self._decoder.next()
        except Exception as exc:
            self._err = exc
            return False
        if obj is None:
            self._done = True
            return False
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
        """Stop scanning and release the decoder; the stream stays open."""
        self._closed = True
        self._decoder.close()

    def fully_scanned_bytes(self) -> int:
        """Bytes of the blocks that precede the block currently being scanned."""
        return self._decoder.offset

    def previous_fully_scanned_bytes(self) -> int:
        """The value fully_scanned_bytes had before the current block began."""
        return self._decoder.previous_offset

    def __iter__(self) -> Iterator[Any]:
        while self.scan():
            yield self.object()

    def __enter__(self) -> Scanner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()