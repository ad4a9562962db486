"""Reading of OSM PBF files: file blocks, the header block and ordered data decoding."""

from __future__ import annotations

import zlib
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, BinaryIO, Iterator, Optional

from osmstream.model import ZERO_TIME, Bounds
from osmstream.pbf.blocks import DecodeOptions, decode_primitive_block
from osmstream.pbf.wire import FieldValue, WireError, WireType, iter_fields, zigzag_decode

MAX_BLOB_HEADER_SIZE = 64 * 1024
MAX_BLOB_SIZE = 32 * 1024 * 1024

OSM_HEADER_TYPE = "OSMHeader"
OSM_DATA_TYPE = "OSMData"

PARSE_CAPABILITIES = frozenset({"OsmSchema-V0.6", "DenseNodes", "HistoricalInformation"})


class PBFFormatError(WireError):
    """Raised when a PBF stream is malformed or cannot be read."""


@dataclass
class Header:
    """The contents of the header block of a PBF file."""

    bounds: Optional[Bounds] = None
    required_features: list[str] = field(default_factory=list)
    optional_features: list[str] = field(default_factory=list)
    writing_program: str = ""
    source: str = ""
    replication_timestamp: datetime = ZERO_TIME
    replication_seq_num: int = 0
    replication_base_url: str = ""


@dataclass
class BlobHeader:
    """The header that precedes every blob in the file."""

    type: str = ""
    indexdata: Optional[bytes] = None
    datasize: int = 0


@dataclass
class Blob:
    """A block of raw or zlib compressed data."""

    raw: Optional[bytes] = None
    raw_size: int = 0
    zlib_data: Optional[bytes] = None


# --- field helpers ----------------------------------------------------------


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _varint(number: int, wire_type: WireType, value: FieldValue) -> int:
    if wire_type is not WireType.VARINT or not isinstance(value, int):
        raise PBFFormatError(f"field {number}: expected a varint")
    return value


def _bytes(number: int, wire_type: WireType, value: FieldValue) -> bytes:
    if wire_type is not WireType.BYTES or not isinstance(value, bytes):
        raise PBFFormatError(f"field {number}: expected length-delimited data")
    return value


def _text(number: int, wire_type: WireType, value: FieldValue) -> str:
    return _bytes(number, wire_type, value).decode("utf-8", errors="replace")


# --- messages ---------------------------------------------------------------


def parse_blob_header(data: bytes) -> BlobHeader:
    """Parse a BlobHeader message."""
    header = BlobHeader()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            header.type = _text(number, wire_type, value)
        elif number == 2:
            header.indexdata = _bytes(number, wire_type, value)
        elif number == 3:
            header.datasize = _signed(_varint(number, wire_type, value), 32)
    return header


def parse_blob(data: bytes) -> Blob:
    """Parse a Blob message."""
    blob = Blob()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            blob.raw = _bytes(number, wire_type, value)
        elif number == 2:
            blob.raw_size = _signed(_varint(number, wire_type, value), 32)
        elif number == 3:
            blob.zlib_data = _bytes(number, wire_type, value)
    return blob


def blob_data(blob: Blob) -> bytes:
    """Return the uncompressed contents of a blob."""
    if blob.raw is not None:
        return blob.raw
    if blob.zlib_data is not None:
        try:
            data = zlib.decompress(blob.zlib_data)
        except zlib.error as exc:
            raise PBFFormatError(f"zlib: {exc}") from exc
        if len(data) != blob.raw_size:
            raise PBFFormatError(
                f"raw blob data size {len(data)} but expected {blob.raw_size}"
            )
        return data
    raise PBFFormatError("unknown blob data")


def _bbox(data: bytes) -> Bounds:
    sides: dict[int, int] = {}
    for number, wire_type, value in iter_fields(data):
        if 1 <= number <= 4:
            sides[number] = _signed(zigzag_decode(_varint(number, wire_type, value)), 64)
    left, right, top, bottom = (sides.get(i, 0) for i in (1, 2, 3, 4))
    # Bounding box units are always nanodegrees, independent of granularity.
    return Bounds(
        min_lon=1e-9 * left,
        max_lon=1e-9 * right,
        min_lat=1e-9 * bottom,
        max_lat=1e-9 * top,
    )


def decode_header_block(data: bytes) -> Header:
    """Decode an uncompressed HeaderBlock and check the required features."""
    header = Header()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            header.bounds = _bbox(_bytes(number, wire_type, value))
        elif number == 4:
            header.required_features.append(_text(number, wire_type, value))
        elif number == 5:
            header.optional_features.append(_text(number, wire_type, value))
        elif number == 16:
            header.writing_program = _text(number, wire_type, value)
        elif number == 17:
            header.source = _text(number, wire_type, value)
        elif number == 32:
            seconds = _signed(_varint(number, wire_type, value), 64)
            header.replication_timestamp = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif number == 33:
            header.replication_seq_num = _varint(number, wire_type, value)
        elif number == 34:
            header.replication_base_url = _text(number, wire_type, value)

    for feature in header.required_features:
        if feature not in PARSE_CAPABILITIES:
            raise PBFFormatError(f"parser does not have {feature} capability")
    return header


# --- stream -----------------------------------------------------------------


def _read_exact(stream: BinaryIO, size: int, allow_eof: bool = False) -> Optional[bytes]:
    chunks = bytearray()
    while len(chunks) < size:
        chunk = stream.read(size - len(chunks))
        if not chunk:
            break
        chunks += chunk
    if allow_eof and not chunks and size:
        return None
    if len(chunks) < size:
        raise PBFFormatError("unexpected end of file")
    return bytes(chunks)


def read_file_block(stream: BinaryIO) -> Optional[tuple[BlobHeader, Blob, int]]:
    """Read one file block; return its header, blob and byte length, or None at the end."""
    size_bytes = _read_exact(stream, 4, allow_eof=True)
    if size_bytes is None:
        return None
    header_size = int.from_bytes(size_bytes, "big")
    if header_size >= MAX_BLOB_HEADER_SIZE:
        raise PBFFormatError("blobHeader size >= 64Kb")

    blob_header = parse_blob_header(_read_exact(stream, header_size) or b"")
    if blob_header.datasize >= MAX_BLOB_SIZE:
        raise PBFFormatError("blob size >= 32Mb")
    if blob_header.datasize < 0:
        raise PBFFormatError(f"negative blob size {blob_header.datasize}")

    blob = parse_blob(_read_exact(stream, blob_header.datasize) or b"")
    return blob_header, blob, 4 + header_size + blob_header.datasize


class Decoder:
    """Reads file blocks from a stream and decodes their data blocks in file order.

    Decompression and decoding of data blocks run on a pool of ``procs`` threads;
    objects are always returned in the order they appear in the file.
    """

    def __init__(self, stream: BinaryIO, options: Optional[DecodeOptions] = None) -> None:
        self.options = options or DecodeOptions()
        self.header: Optional[Header] = None
        self.bytes_read = 0
        self.offset = 0
        self.previous_offset = 0
        self._stream = stream
        self._procs = 1
        self._executor: Optional[ThreadPoolExecutor] = None
        self._results: Optional[Iterator[tuple[int, list[Any]]]] = None
        self._objects: list[Any] = []
        self._index = 0
        self._closed = False

    def start(self, procs: int = 1) -> None:
        """Read the header block and begin decoding with ``procs`` workers."""
        self._procs = max(int(procs), 1)
        first = read_file_block(self._stream)
        if first is None:
            return
        blob_header, blob, size = first
        self.bytes_read += size

        pending: Optional[tuple[int, Blob]] = None
        if blob_header.type == OSM_HEADER_TYPE:
            self.header = decode_header_block(blob_data(blob))
        else:
            # Reading began mid-file: the first block already holds data.
            pending = (0, blob)

        self._executor = ThreadPoolExecutor(max_workers=self._procs)
        self._results = self._decoded(self._blocks(pending))

    def _blocks(self, first: Optional[tuple[int, Blob]]) -> Iterator[tuple[int, Blob]]:
        if first is not None:
            yield first
        while True:
            offset = self.bytes_read
            block = read_file_block(self._stream)
            if block is None:
                return
            blob_header, blob, size = block
            self.bytes_read += size
            if blob_header.type != OSM_DATA_TYPE:
                raise PBFFormatError(f"unexpected fileblock of type {blob_header.type}")
            yield offset, blob

    def _decode(self, blob: Blob) -> list[Any]:
        return decode_primitive_block(blob_data(blob), self.options)

    def _decoded(
        self, blocks: Iterator[tuple[int, Blob]]
    ) -> Iterator[tuple[int, list[Any]]]:
        assert self._executor is not None
        window = max(self._procs * 2, 2)
        pending: deque[tuple[int, Future]] = deque()
        exhausted = False
        error: Optional[BaseException] = None
        while True:
            while not exhausted and len(pending) < window:
                try:
                    offset, blob = next(blocks)
                except StopIteration:
                    exhausted = True
                except Exception as exc:
                    exhausted = True
                    error = exc
                else:
                    pending.append((offset, self._executor.submit(self._decode, blob)))
            if not pending:
                if error is not None:
                    raise error
                return
            offset, future = pending.popleft()
            yield offset, future.result()

    def next(self) -> Any:
        """Return the next decoded object, or None at the end of the data."""
        while self._index >= len(self._objects):
            if self._closed or self._results is None:
                return None
            try:
                offset, objects = next(self._results)
            except StopIteration:
                self._results = None
                return None
            self.previous_offset = self.offset
            self.offset = offset
            self._objects = objects
            self._index = 0

        obj = self._objects[self._index]
        self._index += 1
        return obj

    def close(self) -> None:
        """Stop decoding and release the worker threads; the stream stays open."""
        self._closed = True
        if self._results is not None:
            self._results.close()
            self._results = None
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def __iter__(self) -> Iterator[Any]:
        while True:
            obj = self.next()
            if obj is None:
                return
            yield obj

    def __enter__(self) -> Decoder:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()