"""Runs an indexer module against a store: indexing, views and previews."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TextIO

from metashrew.history import (
    RuntimeContext,
    latest_block_for_reorg,
    rollback_key,
    updated_keys_for_block_range,
)
from metashrew.host import HostEnvironment, Mode
from metashrew.keys import read_arraybuffer
from metashrew.store import KeyValueStore, PreviewStore

__all__ = ["IndexerError", "Instance", "Module", "MetashrewRuntime"]

Imports = Mapping[str, Mapping[str, Callable[..., object]]]


class IndexerError(Exception):
    """Raised when an indexer module cannot be run or misbehaves."""


@dataclass
class Instance:
    """A live indexer: its exported functions and its linear memory.

    The memory must be changed in place so the host always sees its contents.
    """

    exports: dict[str, Callable[..., object]]
    memory: bytearray = field(default_factory=bytearray)

    def _function(self, name: str, what: str) -> Callable[..., object]:
        func = self.exports.get(name)
        if not callable(func):
            raise IndexerError(what)
        return func


@dataclass(frozen=True)
class Module:
    """A loaded indexer; ``factory`` builds a fresh instance from host imports."""

    factory: Callable[[Imports], Instance]


def _instantiate(
    module: Module,
    context: RuntimeContext,
    mode: Mode,
    output: TextIO | None,
    what: str,
) -> tuple[Instance, HostEnvironment]:
    host = HostEnvironment(context=context, mode=mode, output=output)
    try:
        instance = module.factory(host.imports())
    except Exception as exc:
        raise IndexerError(what) from exc
    host.memory = instance.memory
    return instance, host


def _call(func: Callable[..., object], what: str) -> object:
    try:
        return func()
    except Exception as exc:
        raise IndexerError(what) from exc


def _check_flushed(context: RuntimeContext, host: HostEnvironment, what: str) -> None:
    if context.state != 1 and not host.state.had_failure:
        raise IndexerError(what)


def _result_pointer(result: object, symbol: str) -> int:
    if not isinstance(result, int) or isinstance(result, bool):
        raise IndexerError(f"view function '{symbol}' did not return a pointer")
    return result


class MetashrewRuntime:
    """Holds an indexer instance and the context it indexes blocks into."""

    def __init__(
        self,
        module: Module,
        db: KeyValueStore,
        output: TextIO | None = None,
    ) -> None:
        self.module = module
        self.output = output
        self.context = RuntimeContext(db=db)
        self.instance, self.host = _instantiate(
            module, self.context, Mode.INDEXER, output, "Failed to instantiate module"
        )

    def run(self) -> None:
        """Index the context's block at the context's height."""
        self.context.state = 0
        self.instance._function("_start", "Failed to get _start function")
        self.handle_reorg()
        start = self.instance._function("_start", "Failed to get _start function")
        _call(start, "Error calling _start function")
        _check_flushed(self.context, self.host, "indexer exited unexpectedly")

    def refresh_memory(self) -> None:
        """Replace the instance with a fresh one, clearing its memory and state."""
        self.instance, self.host = _instantiate(
            self.module,
            self.context,
            Mode.INDEXER,
            self.output,
            "Failed to instantiate module during memory refresh",
        )

    def handle_reorg(self) -> None:
        """Roll back keys updated at or after the current height, if any were."""
        height = self.context.height
        latest = latest_block_for_reorg(self.context, height)
        if latest == height:
            return
        keys = updated_keys_for_block_range(self.context, height, latest)
        if keys:
            self.refresh_memory()
        for key in keys:
            rollback_key(self.context, key, height)

    def view(self, symbol: str, input: bytes, height: int) -> bytes:
        """Call the view function ``symbol`` with ``input`` as of ``height``."""
        context = RuntimeContext(
            db=self.context.db,
            height=height,
            block=bytes(input),
            state=self.context.state,
        )
        instance, _ = _instantiate(
            self.module,
            context,
            Mode.VIEW,
            self.output,
            "Failed to instantiate module for view",
        )
        func = instance._function(symbol, f"Failed to get view function '{symbol}'")
        result = _call(func, f"Failed to execute view function '{symbol}'")
        return read_arraybuffer(bytes(instance.memory), _result_pointer(result, symbol))

    def preview(self, block: bytes, symbol: str, input: bytes, height: int) -> bytes:
        """Index ``block`` into a throwaway overlay, then call a view against it."""
        preview_db = PreviewStore(self.context.db)
        context = RuntimeContext(db=preview_db, height=height, block=bytes(block))
        instance, host = _instantiate(
            self.module, context, Mode.PREVIEW, self.output, "Failed to instantiate module"
        )
        start = instance._function("_start", "Failed to get _start function for preview")
        _call(start, "Error executing _start in preview")
        _check_flushed(context, host, "indexer exited unexpectedly during preview")

        view_context = RuntimeContext(
            db=PreviewStore(preview_db.underlying, preview_db.overlay),
            height=height,
            block=bytes(input),
        )
        view_instance, _ = _instantiate(
            self.module,
            view_context,
            Mode.PREVIEW,
            self.output,
            "Failed to instantiate module",
        )
        func = view_instance._function(symbol, "Failed to get view function")
        result = _call(func, "Failed to execute view function")
        return read_arraybuffer(
            bytes(view_instance.memory), _result_pointer(result, symbol)
        )