"""Durable engine state — key-value backends, checkpoint, pass lock."""

from .checkpoint import CheckpointStore
from .kv import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .lock import PassLock

__all__ = [
    "KeyValueStore",
    "FileKeyValueStore",
    "MemoryKeyValueStore",
    "CheckpointStore",
    "PassLock",
]
