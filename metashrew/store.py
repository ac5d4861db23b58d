"""Key/value stores used by the runtime: an in-memory store and a preview overlay."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field

__all__ = ["KeyValueStore", "WriteBatch", "MemoryStore", "PreviewStore"]


@dataclass
class WriteBatch:
    """An ordered list of puts to apply to a store in one write."""

    puts: list[tuple[bytes, bytes]] = field(default_factory=list)

    def put(self, key: bytes, value: bytes) -> None:
        """Queue a put of ``value`` under ``key``."""
        self.puts.append((bytes(key), bytes(value)))

    def __iter__(self) -> Iterator[tuple[bytes, bytes]]:
        return iter(self.puts)

    def __len__(self) -> int:
        return len(self.puts)


class KeyValueStore(ABC):
    """Interface of a byte-keyed store the runtime reads and writes."""

    @abstractmethod
    def get(self, key: bytes) -> bytes | None:
        """Return the value under ``key``, or None when it is absent."""

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def delete(self, key: bytes) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    def write(self, batch: WriteBatch) -> None:
        """Apply every put of ``batch`` in order."""

    @abstractmethod
    def copy(self) -> KeyValueStore:
        """Return a store holding the same contents."""


class MemoryStore(KeyValueStore):
    """A store kept in a dictionary."""

    def __init__(self, data: dict[bytes, bytes] | None = None) -> None:
        self._data: dict[bytes, bytes] = dict(data or {})

    def get(self, key: bytes) -> bytes | None:
        return self._data.get(bytes(key))

    def put(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def delete(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def write(self, batch: WriteBatch) -> None:
        for key, value in batch:
            self._data[key] = value

    def copy(self) -> MemoryStore:
        """Return an independent store with the same contents."""
        return MemoryStore(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key) in self._data


class PreviewStore(KeyValueStore):
    """Reads through to an underlying store; puts land only in an overlay.

    Batch writes and deletes are ignored, so the underlying store is never changed.
    """

    def __init__(
        self,
        underlying: KeyValueStore,
        overlay: dict[bytes, bytes] | None = None,
    ) -> None:
        self.underlying = underlying
        self.overlay: dict[bytes, bytes] = dict(overlay or {})

    def get(self, key: bytes) -> bytes | None:
        key = bytes(key)
        if key in self.overlay:
            return self.overlay[key]
        return self.underlying.get(key)

    def put(self, key: bytes, value: bytes) -> None:
        self.overlay[bytes(key)] = bytes(value)

    def delete(self, key: bytes) -> None:
        """Deletes have no effect on a preview."""

    def write(self, batch: WriteBatch) -> None:
        """Batch writes have no effect on a preview."""

    def copy(self) -> PreviewStore:
        return PreviewStore(self.underlying.copy(), self.overlay)