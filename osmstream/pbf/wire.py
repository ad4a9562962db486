"""Protocol buffer wire-format primitives for reading and writing messages."""

from __future__ import annotations

from enum import IntEnum
from typing import Iterable, Iterator, Union

_MASK64 = (1 << 64) - 1

FieldValue = Union[int, bytes]


class WireType(IntEnum):
    """Protocol buffer wire types."""

    VARINT = 0
    FIXED64 = 1
    BYTES = 2
    START_GROUP = 3
    END_GROUP = 4
    FIXED32 = 5


class WireError(ValueError):
    """Raised on malformed protocol buffer data."""


def encode_varint(value: int) -> bytes:
    """Encode an integer as a varint; negatives use 64-bit two's complement."""
    if value < 0:
        value &= _MASK64
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_varint(data: bytes, pos: int = 0) -> tuple[int, int]:
    """Decode an unsigned varint at pos; return the value and the next position."""
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise WireError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if byte < 0x80:
            return result & _MASK64, pos
        shift += 7
        if shift >= 70:
            raise WireError("varint overflow")


def zigzag_encode(value: int) -> int:
    """Map a signed integer onto an unsigned one."""
    return value << 1 if value >= 0 else ((-value) << 1) - 1


def zigzag_decode(value: int) -> int:
    """Invert zigzag_encode."""
    return (value >> 1) ^ -(value & 1)


def _take(data: bytes, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise WireError("unexpected end of data")
    return bytes(data[pos:end]), end


def iter_fields(data: bytes) -> Iterator[tuple[int, WireType, FieldValue]]:
    """Yield (field number, wire type, value) for each field of a message.

    Varint and fixed values are unsigned integers; length-delimited values are bytes.
    """
    pos = 0
    while pos < len(data):
        key, pos = decode_varint(data, pos)
        number = key >> 3
        if number == 0:
            raise WireError("invalid field number 0")
        try:
            wire_type = WireType(key & 0x7)
        except ValueError:
            raise WireError(f"invalid wire type {key & 0x7}") from None

        value: FieldValue
        if wire_type is WireType.VARINT:
            value, pos = decode_varint(data, pos)
        elif wire_type is WireType.FIXED64:
            raw, pos = _take(data, pos, 8)
            value = int.from_bytes(raw, "little")
        elif wire_type is WireType.FIXED32:
            raw, pos = _take(data, pos, 4)
            value = int.from_bytes(raw, "little")
        elif wire_type is WireType.BYTES:
            length, pos = decode_varint(data, pos)
            value, pos = _take(data, pos, length)
        else:
            raise WireError("group wire types are not supported")
        yield number, wire_type, value


def unpack_varints(data: bytes) -> list[int]:
    """Decode a packed run of unsigned varints."""
    values = []
    pos = 0
    while pos < len(data):
        value, pos = decode_varint(data, pos)
        values.append(value)
    return values


class MessageWriter:
    """Builds a protocol buffer message field by field."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def _key(self, field: int, wire_type: WireType) -> None:
        if field < 1:
            raise WireError(f"invalid field number {field}")
        self._buf += encode_varint((field << 3) | wire_type)

    def varint(self, field: int, value: int) -> MessageWriter:
        """Write an integer or boolean as a varint."""
        self._key(field, WireType.VARINT)
        self._buf += encode_varint(int(value))
        return self

    def sint(self, field: int, value: int) -> MessageWriter:
        """Write a zigzag-encoded signed integer."""
        return self.varint(field, zigzag_encode(value))

    def bytes_field(self, field: int, value: bytes) -> MessageWriter:
        """Write a length-delimited byte string."""
        self._key(field, WireType.BYTES)
        self._buf += encode_varint(len(value))
        self._buf += value
        return self

    def string(self, field: int, value: str) -> MessageWriter:
        """Write a UTF-8 string."""
        return self.bytes_field(field, value.encode("utf-8"))

    def packed_varints(self, field: int, values: Iterable[int]) -> MessageWriter:
        """Write packed varints; nothing is written for an empty sequence."""
        payload = b"".join(encode_varint(int(v)) for v in values)
        if payload:
            self.bytes_field(field, payload)
        return self

    def packed_sints(self, field: int, values: Iterable[int]) -> MessageWriter:
        """Write packed zigzag-encoded signed integers."""
        return self.packed_varints(field, (zigzag_encode(v) for v in values))

    def to_bytes(self) -> bytes:
        """Return the encoded message."""
        return bytes(self._buf)