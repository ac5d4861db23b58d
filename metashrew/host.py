"""Host functions an indexer module imports from the ``env`` namespace."""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TextIO

from metashrew.flush import DecodeError, KeyValueFlush
from metashrew.history import (
    HistoryError,
    RuntimeContext,
    append,
    append_annotated,
    create_empty_update_list,
    value_at_block,
)
from metashrew.keys import (
    MemoryAccessError,
    annotate_value,
    try_read_arraybuffer,
    u32_bytes,
)
from metashrew.store import WriteBatch

__all__ = ["Mode", "HostState", "HostEnvironment"]

_I32_MAX = 0x7FFFFFFF


class Mode(Enum):
    """How flushed key/value pairs are handled."""

    INDEXER = "indexer"
    VIEW = "view"
    PREVIEW = "preview"


@dataclass
class HostState:
    """Per-instance state the host functions record into."""

    had_failure: bool = False


@dataclass
class HostEnvironment:
    """The host side of an indexer module: its context, memory and state.

    ``memory`` is the module's linear memory; until it is set, calls that need
    it record a failure (or return the error length for ``get_len``).
    """

    context: RuntimeContext
    mode: Mode = Mode.INDEXER
    memory: bytearray | None = None
    state: HostState = field(default_factory=HostState)
    output: TextIO | None = None

    def _fail(self) -> None:
        self.state.had_failure = True

    def _write(self, offset: int, data: bytes) -> bool:
        if self.memory is None or offset < 0 or offset + len(data) > len(self.memory):
            return False
        self.memory[offset:offset + len(data)] = data
        return True

    def host_len(self) -> int:
        """Size of the input handed to the module: block plus four height bytes."""
        return len(self.context.block) + 4

    def load_input(self, data_start: int) -> None:
        """Write the height followed by the block into memory at ``data_start``."""
        if self.memory is None:
            self._fail()
            return
        payload = u32_bytes(self.context.height) + self.context.block
        if data_start < 0 or not self._write(data_start, payload):
            self._fail()

    def log(self, data_start: int) -> None:
        """Print the UTF-8 text buffer at ``data_start``; bad input is ignored."""
        if self.memory is None:
            return
        try:
            raw = try_read_arraybuffer(bytes(self.memory), data_start)
            text = raw.decode("utf-8")
        except (MemoryAccessError, UnicodeDecodeError):
            return
        stream = self.output if self.output is not None else sys.stdout
        stream.write(text)

    def abort(self, message: int, filename: int, line: int, column: int) -> None:
        """Record that the module aborted."""
        self._fail()

    def flush(self, encoded: int) -> None:
        """Persist the key/value pairs encoded at ``encoded`` according to the mode."""
        if self.mode is Mode.VIEW:
            return
        if self.mode is Mode.INDEXER:
            self._flush_indexer(encoded)
        else:
            self._flush_preview(encoded)

    def _read_flush(self, encoded: int) -> KeyValueFlush | None:
        if self.memory is None:
            return None
        try:
            data = try_read_arraybuffer(bytes(self.memory), encoded)
            return KeyValueFlush.decode(data)
        except (MemoryAccessError, DecodeError):
            return None

    def _flush_indexer(self, encoded: int) -> None:
        height = self.context.height
        message = self._read_flush(encoded)
        if message is None:
            self._fail()
            return
        batch = WriteBatch()
        try:
            create_empty_update_list(batch, height)
            update_key = u32_bytes(height)
            for key, value in message.pairs():
                append_annotated(self.context, batch, key, value, height)
                append(self.context, batch, update_key, key)
        except (HistoryError, ValueError):
            self._fail()
            return
        self.context.state = 1
        self.context.db.write(batch)

    def _flush_preview(self, encoded: int) -> None:
        height = self.context.height
        message = self._read_flush(encoded)
        if message is None:
            self._fail()
            return
        self.context.state = 1
        try:
            for key, value in message.pairs():
                self.context.db.put(key, annotate_value(value, height))
        except ValueError:
            self._fail()

    def get(self, key: int, value: int) -> None:
        """Write the value of the key at ``key``, as of the current height, to ``value``.

        When the key cannot be read, the error length is written just before ``value``.
        """
        if self.memory is None:
            self._fail()
            return
        try:
            key_bytes = try_read_arraybuffer(bytes(self.memory), key)
        except MemoryAccessError:
            if not self._write(value - 4, u32_bytes(_I32_MAX)):
                self._fail()
            return
        try:
            lookup = value_at_block(self.context, key_bytes, self.context.height)
        except HistoryError:
            self._fail()
            return
        if not self._write(value, lookup):
            self._fail()

    def get_len(self, key: int) -> int:
        """Length of the value of the key at ``key``, or ``2**31 - 1`` on error."""
        if self.memory is None:
            return _I32_MAX
        try:
            key_bytes = try_read_arraybuffer(bytes(self.memory), key)
            return len(value_at_block(self.context, key_bytes, self.context.height))
        except (MemoryAccessError, HistoryError):
            return _I32_MAX

    def imports(self) -> dict[str, dict[str, Callable[..., object]]]:
        """The host functions by module namespace and import name."""
        return {
            "env": {
                "__host_len": self.host_len,
                "__load_input": self.load_input,
                "__log": self.log,
                "abort": self.abort,
                "__flush": self.flush,
                "__get": self.get,
                "__get_len": self.get_len,
            }
        }