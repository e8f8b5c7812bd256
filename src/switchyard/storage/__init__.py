from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides the public API for switchyard storage: key-value stores
with TTL, relational record stores, and the generic CRUD capability.
"""

from .crud import Crud
from .factory import create_kv_store_from_env, create_record_store_from_env
from .kv import InMemoryKeyValueStore, KeyValueStore
from .models import JsonObject, JsonPrimitive, JsonValue, json_dumps, json_loads, new_id, now_ms
from .records import (
    InMemoryRecordStore,
    RecordAlreadyExistsError,
    RecordStore,
    RecordUpdate,
    SQLiteRecordStore,
)


def __getattr__(name: str):
    if name == "RedisKeyValueStore":
        from .kv.redis import RedisKeyValueStore

        return RedisKeyValueStore
    if name == "PostgresRecordStore":
        from .records.postgres import PostgresRecordStore

        return PostgresRecordStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "Crud",
    "JsonPrimitive",
    "JsonValue",
    "JsonObject",
    "json_dumps",
    "json_loads",
    "new_id",
    "now_ms",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "RedisKeyValueStore",
    "RecordStore",
    "RecordUpdate",
    "RecordAlreadyExistsError",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "PostgresRecordStore",
    "create_kv_store_from_env",
    "create_record_store_from_env",
]
