# metashrew

`metashrew` hosts a block indexer. An indexer reads each block, works
out which keys change, and hands the changes back as a flush. The host
stores every value together with the height it was written at. It can
then answer lookups as of any past height, and it can roll the data back
when the chain reorganises.

## Modules

- `metashrew.flush`: `KeyValueFlush` is the message an indexer sends on
  flush. It holds a flat list of byte strings (`entries`), and `pairs()`
  reads them as key/value pairs. A trailing unpaired entry is dropped.
  `encode()` and `KeyValueFlush.decode(data)` convert the message to and
  from its wire format. Fields other than the list are kept as raw bytes
  in `unknown`. Malformed input raises `DecodeError`.
- `metashrew.keys`: the storage layout. `u32_bytes`, `make_list_key`,
  `make_length_key`, `make_updated_key` and `annotate_value` build keys
  and values. `try_read_arraybuffer(data, start)` reads a buffer whose
  length sits in the four bytes before `start`; it raises
  `MemoryAccessError` when the buffer lies outside `data`.
  `read_arraybuffer` returns `b""` in that case instead.
- `metashrew.store`: the `KeyValueStore` interface (`get`, `put`,
  `delete`, `write`, `copy`), with two stores. `WriteBatch` is an ordered
  list of puts. `MemoryStore` keeps its data in a dictionary.
  `PreviewStore` reads through to an underlying store. Its puts go only
  to an overlay, and it ignores deletes and batch writes.
- `metashrew.history`: `RuntimeContext` holds the store, the height, the
  block and the flush state. This module also has the history
  operations: `value_at_block`, `append_annotated`, `append`,
  `length_at_key`, `updated_keys_for_block`,
  `updated_keys_for_block_range`, `rollback_key`, `set_length`,
  `latest_block_for_reorg` and `create_empty_update_list`. Malformed
  stored history raises `HistoryError`.
- `metashrew.host`: `HostEnvironment` provides the functions an indexer
  imports from the `env` namespace: `__host_len`, `__load_input`,
  `__log`, `abort`, `__flush`, `__get` and `__get_len`. `imports()`
  returns them in a dictionary. What `__flush` does depends on the `Mode`:
  - `INDEXER` appends the flushed pairs to the history, together with the
    block's update list.
  - `PREVIEW` puts the annotated values straight into the store.
  - `VIEW` ignores the flush.

  Failures are recorded in `HostState.had_failure`.
- `metashrew.runtime`: `MetashrewRuntime(module, db)` runs an indexer
  `Module`.
  - `run()` first calls `handle_reorg()`, which rolls back keys updated at
    or after the current height. It then calls the indexer's `_start`.
  - `view(symbol, input, height)` calls an exported view function on a
    fresh instance.
  - `preview(block, symbol, input, height)` first indexes `block` into a
    `PreviewStore` overlay, then calls the view against that overlay. The
    real store is left unchanged.
  - `refresh_memory()` replaces the instance with a fresh one.

  Problems raise `IndexerError`.
- `metashrew.rpc`: `RpcClient(url, auth=None)` talks JSON-RPC to a node.
  It has `call`, `block_count`, `block_hash` and `raw_block`. `auth` has
  the form `"user:password"`. A request that fails in transport is retried
  (11 times by default, with 3 seconds between tries) and then raises
  `RpcError`. A response with no result also raises `RpcError`.
- `metashrew.sync`: `Syncer(runtime, rpc, start_block=0, exit_at=None)`
  keeps the index in step with the node. `best_height` walks back from
  near the tip until the stored block hash matches the node's.
  `pull_block` waits for the node to reach a height, records the block
  hash under `/__INTERNAL/height-to-hash/<height>`, and fetches the raw
  block. `process_block` indexes it. If the indexer fails, it refreshes
  memory and retries once. `run()` loops from `start_block` and stops
  once it reaches `exit_at`.

## Storage layout

Each key `k` keeps an append-only list of its values:

- The length of the list is stored under `make_length_key(k)`, which is
  `k` followed by `0xffffffff`.
- Entry `i` is stored under `make_list_key(k, i)`, which is `k` followed
  by `i` as a little-endian 32-bit number.
- Each entry is the value followed by the height it was written at.

```python
from metashrew.keys import annotate_value, make_length_key, make_list_key, u32_bytes

assert u32_bytes(1) == b"\x01\x00\x00\x00"
assert make_length_key(b"k") == b"k\xff\xff\xff\xff"
assert make_list_key(b"k", 2) == b"k\x02\x00\x00\x00"
assert annotate_value(b"v", 5) == b"v\x05\x00\x00\x00"
```

```python
from metashrew.history import RuntimeContext, append_annotated, value_at_block
from metashrew.store import MemoryStore, WriteBatch

context = RuntimeContext(db=MemoryStore())
batch = WriteBatch()
append_annotated(context, batch, b"k", b"v1", 10)
context.db.write(batch)

assert value_at_block(context, b"k", 10) == b"v1"
assert value_at_block(context, b"k", 9) == b""
```

Each indexed block also records which keys it touched, in a list keyed
by its four-byte height. `handle_reorg` uses these lists to find the keys
it must roll back.

## Writing an indexer

A `Module` wraps a factory. The factory receives the host imports and
returns an `Instance`, which holds the exported functions and a
`bytearray` of linear memory. The host reads and writes that memory in
place. A view function returns a pointer to a length-prefixed buffer in
that memory.

```python
from metashrew.flush import KeyValueFlush
from metashrew.history import value_at_block
from metashrew.runtime import Instance, MetashrewRuntime, Module
from metashrew.store import MemoryStore


def factory(imports):
    env = imports["env"]
    memory = bytearray(256)

    def start():
        message = KeyValueFlush([b"key", b"value"]).encode()
        memory[100:104] = len(message).to_bytes(4, "little")
        memory[104:104 + len(message)] = message
        env["__flush"](104)

    return Instance(exports={"_start": start}, memory=memory)


runtime = MetashrewRuntime(Module(factory), MemoryStore())
runtime.context.height = 1
runtime.run()
assert value_at_block(runtime.context, b"key", 1) == b"value"
```

## What the package does not do

- It has no command-line entry point. To sync, build a
  `MetashrewRuntime`, an `RpcClient` and a `Syncer` in your own code.
- It does not load compiled WebAssembly modules. An indexer is a Python
  `Module` factory that uses the host imports.
- The only store it ships is the in-memory `MemoryStore`, so nothing is
  persisted to disk. For persistence, subclass `KeyValueStore`.

## Running the tests

Install the `test` extra. The test suite runs under pytest.