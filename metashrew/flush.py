"""Wire format of the key/value flush message sent by an indexer."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

__all__ = ["DecodeError", "KeyValueFlush"]

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LENGTH = 2
_WIRE_START_GROUP = 3
_WIRE_END_GROUP = 4
_WIRE_FIXED32 = 5

_LIST_FIELD = 1
_LIST_TAG = (_LIST_FIELD << 3) | _WIRE_LENGTH

_MAX_VARINT_BYTES = 10
_MAX_FIELD_NUMBER = (1 << 29) - 1


class DecodeError(ValueError):
    """Raised when bytes are not a valid key/value flush message."""


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift_index in range(_MAX_VARINT_BYTES):
        if pos >= len(data):
            raise DecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << (7 * shift_index)
        if not byte & 0x80:
            if result >= 1 << 64:
                raise DecodeError("varint overflows 64 bits")
            return result, pos
    raise DecodeError("varint is too long")


def _read_tag(data: bytes, pos: int) -> tuple[int, int, int]:
    tag, pos = _read_varint(data, pos)
    if tag > 0xFFFFFFFF:
        raise DecodeError("tag overflows 32 bits")
    field_number, wire_type = tag >> 3, tag & 0x7
    if field_number == 0 or field_number > _MAX_FIELD_NUMBER:
        raise DecodeError(f"invalid field number {field_number}")
    return field_number, wire_type, pos


def _take(data: bytes, pos: int, size: int) -> int:
    end = pos + size
    if end > len(data):
        raise DecodeError("unexpected end of message")
    return end


def _skip_field(data: bytes, pos: int, field_number: int, wire_type: int) -> int:
    if wire_type == _WIRE_VARINT:
        _, pos = _read_varint(data, pos)
        return pos
    if wire_type == _WIRE_FIXED64:
        return _take(data, pos, 8)
    if wire_type == _WIRE_FIXED32:
        return _take(data, pos, 4)
    if wire_type == _WIRE_LENGTH:
        size, pos = _read_varint(data, pos)
        return _take(data, pos, size)
    if wire_type == _WIRE_START_GROUP:
        while True:
            if pos >= len(data):
                raise DecodeError("unterminated group")
            inner_number, inner_type, pos = _read_tag(data, pos)
            if inner_type == _WIRE_END_GROUP:
                if inner_number != field_number:
                    raise DecodeError("mismatched end of group")
                return pos
            pos = _skip_field(data, pos, inner_number, inner_type)
    if wire_type == _WIRE_END_GROUP:
        raise DecodeError("unexpected end of group")
    raise DecodeError(f"invalid wire type {wire_type}")


@dataclass
class KeyValueFlush:
    """A flat list of alternating keys and values, plus any unknown fields."""

    entries: list[bytes] = field(default_factory=list)
    unknown: bytes = b""

    def encode(self) -> bytes:
        """Serialise to the wire format; unknown fields follow the entries."""
        out = bytearray()
        for entry in self.entries:
            out += bytes((_LIST_TAG,))
            out += _encode_varint(len(entry))
            out += entry
        out += self.unknown
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes) -> KeyValueFlush:
        """Parse a message, keeping fields other than the list as raw bytes."""
        data = bytes(data)
        entries: list[bytes] = []
        unknown = bytearray()
        pos = 0
        while pos < len(data):
            start = pos
            field_number, wire_type, pos = _read_tag(data, pos)
            if field_number == _LIST_FIELD and wire_type == _WIRE_LENGTH:
                size, pos = _read_varint(data, pos)
                end = _take(data, pos, size)
                entries.append(data[pos:end])
                pos = end
            else:
                pos = _skip_field(data, pos, field_number, wire_type)
                unknown += data[start:pos]
        return cls(entries=entries, unknown=bytes(unknown))

    def pairs(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield (key, value) pairs; a trailing unpaired entry is dropped."""
        it = iter(self.entries)
        return zip(it, it)