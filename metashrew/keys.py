"""Byte layouts of the list, length and annotated-value keys."""

from __future__ import annotations

__all__ = [
    "MemoryAccessError",
    "u32_bytes",
    "make_list_key",
    "make_length_key",
    "make_updated_key",
    "annotate_value",
    "try_read_arraybuffer",
    "read_arraybuffer",
]

_U32_MAX = 0xFFFFFFFF


class MemoryAccessError(Exception):
    """Raised when a length-prefixed buffer cannot be read from memory."""


def u32_bytes(value: int) -> bytes:
    """Encode an unsigned 32-bit integer as four little-endian bytes."""
    if not 0 <= value <= _U32_MAX:
        raise ValueError(f"{value} does not fit in an unsigned 32-bit integer")
    return value.to_bytes(4, "little")


def make_list_key(key: bytes, index: int) -> bytes:
    """Key of the entry at ``index`` in the list stored under ``key``."""
    return bytes(key) + u32_bytes(index)


def make_length_key(key: bytes) -> bytes:
    """Key holding the length of the list stored under ``key``."""
    return make_list_key(key, _U32_MAX)


def make_updated_key(key: bytes) -> bytes:
    """Key of the list of keys updated at a block; the key itself."""
    return bytes(key)


def annotate_value(value: bytes, height: int) -> bytes:
    """Append the block height to a value."""
    return bytes(value) + u32_bytes(height)


def try_read_arraybuffer(data: bytes, start: int) -> bytes:
    """Read the buffer at ``start`` whose length sits in the four bytes before it."""
    if start < 4:
        raise MemoryAccessError("memory error")
    if start > len(data):
        raise MemoryAccessError("length prefix lies outside memory")
    length = int.from_bytes(data[start - 4:start], "little")
    end = start + length
    if end > len(data):
        raise MemoryAccessError("buffer lies outside memory")
    return bytes(data[start:end])


def read_arraybuffer(data: bytes, start: int) -> bytes:
    """Like :func:`try_read_arraybuffer`, but give empty bytes on failure."""
    try:
        return try_read_arraybuffer(data, start)
    except MemoryAccessError:
        return b""