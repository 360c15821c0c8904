"""A durable key-value store built on a write-ahead log with checkpointed, sparsely indexed segments."""

__version__ = "0.1.0"

__all__ = ["config", "errors", "records", "wal", "memstate", "recovery", "store", "cli"]