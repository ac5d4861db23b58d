import pytest

from metashrew.flush import KeyValueFlush
from metashrew.history import value_at_block
from metashrew.runtime import IndexerError, Instance, MetashrewRuntime, Module
from metashrew.store import MemoryStore

INPUT_AT = 64
FLUSH_AT = 1024
KEY_AT = 2048
VALUE_AT = 3072
MEMORY_SIZE = 8192


def _put_buffer(memory, offset, data):
    memory[offset:offset + 4] = len(data).to_bytes(4, "little")
    memory[offset + 4:offset + 4 + len(data)] = data
    return offset + 4


class ToyIndexer:
    """Stores each block under b"block" and offers a "lookup" view."""

    def __init__(self, flush=True, abort=False, fail=False, with_start=True):
        self.flush = flush
        self.abort = abort
        self.fail = fail
        self.with_start = with_start
        self.instantiations = 0
        self.seen = []

    def factory(self, imports):
        self.instantiations += 1
        env = imports["env"]
        memory = bytearray(MEMORY_SIZE)

        def start():
            if self.fail:
                raise RuntimeError("trap")
            size = env["__host_len"]()
            env["__load_input"](INPUT_AT)
            raw = bytes(memory[INPUT_AT:INPUT_AT + size])
            height = int.from_bytes(raw[:4], "little")
            block = raw[4:]
            self.seen.append((height, block))
            if self.abort:
                env["abort"](0, 0, 0, 0)
                return
            if self.flush:
                message = KeyValueFlush(entries=[b"block", block])
                env["__flush"](_put_buffer(memory, FLUSH_AT, message.encode()))

        def lookup():
            size = env["__host_len"]()
            env["__load_input"](INPUT_AT)
            key = bytes(memory[INPUT_AT + 4:INPUT_AT + size])
            key_ptr = _put_buffer(memory, KEY_AT, key)
            length = env["__get_len"](key_ptr)
            memory[VALUE_AT:VALUE_AT + 4] = length.to_bytes(4, "little")
            env["__get"](key_ptr, VALUE_AT + 4)
            return VALUE_AT + 4

        exports = {"lookup": lookup}
        if self.with_start:
            exports["_start"] = start
        return Instance(exports=exports, memory=memory)


def _runtime(indexer=None, store=None):
    indexer = indexer or ToyIndexer()
    store = store if store is not None else MemoryStore()
    return MetashrewRuntime(Module(indexer.factory), store), indexer, store


def _index(runtime, height, block):
    runtime.context.height = height
    runtime.context.block = block
    runtime.run()


def test_run_stores_block_value_at_height():
    runtime, indexer, _ = _runtime()
    _index(runtime, 5, b"abc")
    assert indexer.seen == [(5, b"abc")]
    assert value_at_block(runtime.context, b"block", 5) == b"abc"
    assert runtime.context.state == 1


def test_view_reads_value_as_of_height():
    runtime, _, _ = _runtime()
    _index(runtime, 1, b"one")
    _index(runtime, 2, b"two")
    assert runtime.view("lookup", b"block", 1) == b"one"
    assert runtime.view("lookup", b"block", 2) == b"two"
    assert runtime.view("lookup", b"block", 0) == b""


def test_view_does_not_change_store():
    runtime, _, store = _runtime()
    _index(runtime, 1, b"one")
    before = dict(store._data)
    runtime.view("lookup", b"block", 1)
    assert store._data == before


def test_view_missing_symbol_raises():
    runtime, _, _ = _runtime()
    with pytest.raises(IndexerError, match="missing"):
        runtime.view("missing", b"", 0)


def test_run_without_start_raises():
    runtime, _, _ = _runtime(ToyIndexer(with_start=False))
    with pytest.raises(IndexerError, match="_start"):
        runtime.run()


def test_run_without_flush_raises():
    runtime, _, _ = _runtime(ToyIndexer(flush=False))
    with pytest.raises(IndexerError, match="indexer exited unexpectedly"):
        runtime.run()


def test_run_after_abort_is_accepted():
    runtime, indexer, store = _runtime(ToyIndexer(abort=True))
    runtime.run()
    assert runtime.host.state.had_failure is True
    assert len(store) == 0
    assert indexer.seen == [(0, b"")]


def test_run_wraps_module_exception():
    runtime, _, _ = _runtime(ToyIndexer(fail=True))
    with pytest.raises(IndexerError) as info:
        runtime.run()
    assert isinstance(info.value.__cause__, RuntimeError)


def test_refresh_memory_builds_new_instance_and_clears_failure():
    runtime, indexer, _ = _runtime(ToyIndexer(abort=True))
    runtime.run()
    assert runtime.host.state.had_failure is True
    runtime.refresh_memory()
    assert runtime.host.state.had_failure is False
    assert indexer.instantiations == 2


def test_handle_reorg_without_later_blocks_keeps_instance():
    runtime, indexer, _ = _runtime()
    _index(runtime, 1, b"one")
    runtime.context.height = 2
    runtime.handle_reorg()
    assert indexer.instantiations == 1


def test_handle_reorg_with_later_blocks_refreshes_instance():
    runtime, indexer, _ = _runtime()
    _index(runtime, 1, b"one")
    _index(runtime, 2, b"two")
    runtime.context.height = 1
    runtime.handle_reorg()
    assert indexer.instantiations == 2


def test_reindexing_a_height_gives_new_value():
    runtime, _, _ = _runtime()
    _index(runtime, 1, b"one")
    _index(runtime, 2, b"two")
    _index(runtime, 1, b"uno")
    assert runtime.view("lookup", b"block", 2) == b"uno"


def test_preview_leaves_store_unchanged():
    runtime, indexer, store = _runtime()
    _index(runtime, 1, b"one")
    before = dict(store._data)
    result = runtime.preview(b"two", "lookup", b"block", 2)
    assert store._data == before
    assert indexer.seen[-1] == (2, b"two")
    assert result == b"one"


def test_preview_on_empty_store():
    runtime, _, store = _runtime()
    assert runtime.preview(b"blk", "lookup", b"block", 3) == b""
    assert len(store) == 0


def test_preview_without_flush_raises():
    runtime, _, _ = _runtime(ToyIndexer(flush=False))
    with pytest.raises(IndexerError, match="during preview"):
        runtime.preview(b"x", "lookup", b"block", 1)


def test_preview_missing_symbol_raises():
    runtime, _, _ = _runtime()
    with pytest.raises(IndexerError, match="Failed to get view function"):
        runtime.preview(b"x", "missing", b"block", 1)