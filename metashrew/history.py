"""Height-annotated value history kept as lists in a key/value store."""

from __future__ import annotations

from dataclasses import dataclass

from metashrew.keys import (
    annotate_value,
    make_length_key,
    make_list_key,
    make_updated_key,
    u32_bytes,
)
from metashrew.store import KeyValueStore, WriteBatch

__all__ = [
    "HistoryError",
    "RuntimeContext",
    "length_at_key",
    "updated_keys_for_block",
    "updated_keys_for_block_range",
    "value_at_block",
    "rollback_key",
    "set_length",
    "latest_block_for_reorg",
    "append_annotated",
    "append",
    "create_empty_update_list",
]


class HistoryError(Exception):
    """Raised when stored history is malformed or incomplete."""


@dataclass
class RuntimeContext:
    """The store, current height and block handed to an indexer run."""

    db: KeyValueStore
    height: int = 0
    block: bytes = b""
    state: int = 0

    def copy(self) -> RuntimeContext:
        """Return a context over a copy of the store with the same fields."""
        return RuntimeContext(
            db=self.db.copy(), height=self.height, block=self.block, state=self.state
        )


def _value_height(value: bytes) -> int:
    if len(value) < 4:
        raise HistoryError(f"Invalid value length: {len(value)}")
    return int.from_bytes(value[-4:], "little")


def length_at_key(context: RuntimeContext, length_key: bytes) -> int:
    """Read a four-byte little-endian length; an absent key means zero."""
    value = context.db.get(length_key)
    if value is None:
        return 0
    if len(value) != 4:
        raise HistoryError(f"Invalid length value: {value!r}")
    return int.from_bytes(value, "little")


def updated_keys_for_block(context: RuntimeContext, height: int) -> set[bytes]:
    """Return the set of keys recorded as updated at ``height``."""
    updated_key = make_updated_key(u32_bytes(height))
    length = length_at_key(context, updated_key)
    keys: set[bytes] = set()
    for index in range(length):
        value = context.db.get(make_list_key(updated_key, index))
        if value is None:
            raise HistoryError(f"Missing value for key at index {index}")
        keys.add(value)
    return keys


def updated_keys_for_block_range(
    context: RuntimeContext, start: int, end: int
) -> set[bytes]:
    """Union of the updated keys of every block from ``start`` to ``end`` inclusive."""
    keys: set[bytes] = set()
    for height in range(start, end + 1):
        keys |= updated_keys_for_block(context, height)
    return keys


def value_at_block(context: RuntimeContext, key: bytes, height: int) -> bytes:
    """Return the latest value of ``key`` written at or before ``height``."""
    length = length_at_key(context, make_length_key(key))
    for index in reversed(range(length)):
        value = context.db.get(make_list_key(key, index))
        if value is None:
            value = make_list_key(b"", 0)
        if height >= _value_height(value):
            return value[:-4]
    return b""


def rollback_key(context: RuntimeContext, key: bytes, to_block: int) -> None:
    """Delete the trailing entries of ``key`` written at or after ``to_block``."""
    length = length_at_key(context, key)
    end_length = length
    for index in reversed(range(length)):
        list_key = make_list_key(key, index)
        value = context.db.get(list_key)
        if value is None:
            break
        if to_block <= _value_height(value):
            context.db.delete(list_key)
            end_length -= 1
        else:
            break
    if end_length != length:
        set_length(context, key, end_length)


def set_length(context: RuntimeContext, key: bytes, length: int) -> None:
    """Record the list length of ``key``; a zero length removes the length key."""
    length_key = make_length_key(key)
    if length == 0:
        context.db.delete(length_key)
        return
    context.db.put(length_key, u32_bytes(length + 1))


def latest_block_for_reorg(context: RuntimeContext, height: int) -> int:
    """Return the first height from ``height`` on with no update list."""
    while context.db.get(make_length_key(make_updated_key(u32_bytes(height)))) is not None:
        height += 1
    return height


def append_annotated(
    context: RuntimeContext,
    batch: WriteBatch,
    key: bytes,
    value: bytes,
    height: int,
) -> None:
    """Queue ``value`` tagged with ``height`` as the next entry of ``key``."""
    length_key = make_length_key(key)
    length = length_at_key(context, length_key)
    batch.put(make_list_key(key, length), annotate_value(value, height))
    batch.put(length_key, u32_bytes(length + 1))


def append(
    context: RuntimeContext, batch: WriteBatch, key: bytes, value: bytes
) -> None:
    """Queue ``value`` as the next entry of the list under ``key``."""
    length_key = make_length_key(key)
    length = length_at_key(context, length_key)
    batch.put(make_list_key(key, length), value)
    batch.put(length_key, u32_bytes(length + 1))


def create_empty_update_list(batch: WriteBatch, height: int) -> None:
    """Queue an empty update list for ``height``."""
    key = make_length_key(make_updated_key(u32_bytes(height)))
    batch.put(key, u32_bytes(0))