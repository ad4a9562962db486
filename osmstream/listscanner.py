"""A scanner over an in-memory list of objects, useful for stubbing."""

from __future__ import annotations

from typing import Any, Iterable, Iterator


class ListScanner:
    """Steps through a list of objects with the scanner protocol.

    Setting ``scan_error`` makes ``scan`` return False and ``err`` return it.
    """

    def __init__(self, objects: Iterable[Any]) -> None:
        self._objects = list(objects)
        self._offset = -1
        self._closed = False
        self.scan_error: BaseException | None = None

    @property
    def closed(self) -> bool:
        """True once ``close`` has been called."""
        return self._closed

    def scan(self) -> bool:
        """Advance to the next object; return False when done, failed or closed."""
        if self.scan_error is not None or self._closed:
            return False
        self._offset += 1
        return self._offset < len(self._objects)

    def object(self) -> Any:
        """Return the current object."""
        if not 0 <= self._offset < len(self._objects):
            raise IndexError("no current object")
        return self._objects[self._offset]

    def err(self) -> BaseException | None:
        """Return the configured scan error, if any."""
        return self.scan_error

    def close(self) -> None:
        """Stop the scanner; later calls to ``scan`` return False."""
        self._closed = True

    def __iter__(self) -> Iterator[Any]:
        while self.scan():
            yield self.object()

    def __enter__(self) -> ListScanner:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()