"""
Storage Module - key-value persistence and the repositories built on it
"""

from .kv_store import KeyValueStore, MemoryStore, JsonFileStore
from .repositories import (
    CursorRepository,
    LinkRepository,
    LocalRecordRepository,
    StoredRecord,
    SyncHistory,
    TokenStore,
)
from .config_store import MappingConfigStore

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "CursorRepository",
    "LinkRepository",
    "LocalRecordRepository",
    "StoredRecord",
    "SyncHistory",
    "TokenStore",
    "MappingConfigStore",
]
