"""Block indexer host: height-annotated key-value history, reorg rollback and chain sync."""

__version__ = "8.6.1"

__all__ = ["flush", "keys", "store", "history", "host", "runtime", "rpc", "sync"]