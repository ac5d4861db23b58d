"""Keeps an indexer in step with a node: pulls blocks and runs the indexer on them."""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from typing import TextIO, TypeVar

from metashrew.rpc import RpcClient, RpcError
from metashrew.runtime import MetashrewRuntime

__all__ = ["Syncer"]

log = logging.getLogger(__name__)

HEIGHT_TO_HASH = b"/__INTERNAL/height-to-hash/"

_GET_RETRIES = 100
_PUT_RETRIES = 0x7FFFFFFF
_POLL_DELAY = 3.0

_T = TypeVar("_T")


def _retry(operation: Callable[[], _T], retries: int, what: str) -> _T:
    failures = 0
    while True:
        try:
            return operation()
        except Exception:
            if failures > retries:
                raise
            failures += 1
            log.debug("err: retrying %s", what)


def _hash_key(height: int) -> bytes:
    return HEIGHT_TO_HASH + str(height).encode()


class Syncer:
    """Indexes blocks one by one from ``start_block``, following reorgs on the node."""

    def __init__(
        self,
        runtime: MetashrewRuntime,
        rpc: RpcClient,
        start_block: int = 0,
        exit_at: int | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        output: TextIO | None = None,
    ) -> None:
        self.runtime = runtime
        self.rpc = rpc
        self.start_block = start_block
        self.exit_at = exit_at
        self.sleep = sleep
        self.output = output

    def stored_blockhash(self, height: int) -> bytes | None:
        """Hash recorded for ``height`` when its block was pulled, if any."""
        db = self.runtime.context.db
        return _retry(lambda: db.get(_hash_key(height)), _GET_RETRIES, "GET")

    def _store_blockhash(self, height: int, blockhash: bytes) -> None:
        db = self.runtime.context.db
        _retry(lambda: db.put(_hash_key(height), blockhash), _PUT_RETRIES, "PUT")

    def best_height(self, height: int) -> int:
        """Walk back from ``height`` near the tip until stored and node hashes agree."""
        best = height
        tip = self.rpc.block_count()
        if best >= tip - min(6, tip):
            while best != 0:
                stored = self.stored_blockhash(best)
                if stored is None:
                    raise LookupError("failed to retrieve blockhash")
                if stored == self.rpc.block_hash(best):
                    break
                best -= 1
        return best

    def pull_block(self, height: int) -> bytes:
        """Wait until the node has ``height``, record its hash and return the block."""
        while height > self.rpc.block_count():
            self.sleep(_POLL_DELAY)
        blockhash = self.rpc.block_hash(height)
        self._store_blockhash(height, blockhash)
        return self.rpc.raw_block(blockhash)

    def process_block(self, height: int) -> None:
        """Pull the block at ``height`` and index it, retrying once on fresh memory."""
        block = self.pull_block(height)
        context = self.runtime.context
        context.block = block
        context.height = height
        try:
            self.runtime.run()
        except Exception:
            log.debug("respawn cache")
            self.runtime.refresh_memory()
            self.runtime.run()

    def run(self) -> None:
        """Index blocks until ``exit_at`` is reached, or forever when it is None."""
        height = self.start_block
        while True:
            if self.exit_at is not None and height >= self.exit_at:
                stream = self.output if self.output is not None else sys.stdout
                print(
                    f"Reached exit-at block {self.exit_at}, shutting down gracefully",
                    file=stream,
                )
                return
            try:
                best = self.best_height(height)
            except (RpcError, LookupError, ValueError):
                best = height
            self.process_block(best)
            height += 1