from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides factory functions for creating storage backends based on environment variables.
"""

import os

from .kv.base import KeyValueStore
from .kv.in_memory import InMemoryKeyValueStore
from .records.base import RecordStore
from .records.in_memory import InMemoryRecordStore
from .records.sqlite import SQLiteRecordStore


def _env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable with common truthy values."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _redis_url_from_env() -> str:
    url = os.getenv("SWITCHYARD_REDIS_URL")
    if url:
        return url
    host = os.getenv("SWITCHYARD_REDIS_HOST", "localhost")
    port = os.getenv("SWITCHYARD_REDIS_PORT", "6379")
    db = os.getenv("SWITCHYARD_REDIS_DB", "0")
    password = os.getenv("SWITCHYARD_REDIS_PASSWORD", "")
    return (
        f"redis://:{password}@{host}:{port}/{db}"
        if password
        else f"redis://{host}:{port}/{db}"
    )


def create_kv_store_from_env() -> KeyValueStore:
    """Create a key-value store based on `SWITCHYARD_KV_BACKEND` and related settings."""
    backend = os.getenv("SWITCHYARD_KV_BACKEND", "memory").strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryKeyValueStore()

    if backend in ("redis",):
        from .kv.redis import RedisKeyValueStore

        return RedisKeyValueStore(url=_redis_url_from_env())

    raise ValueError(f"Unknown SWITCHYARD_KV_BACKEND: {backend}")


def create_record_store_from_env() -> RecordStore:
    """Create a record store based on `SWITCHYARD_RECORD_BACKEND` and related settings."""
    backend = os.getenv("SWITCHYARD_RECORD_BACKEND", "sqlite").strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryRecordStore()

    if backend in ("sqlite", "sqlite3"):
        path = os.getenv("SWITCHYARD_SQLITE_PATH", "switchyard.sqlite3")
        return SQLiteRecordStore(path=path)

    if backend in ("pg", "postgres", "postgresql"):
        from .records.postgres import PostgresRecordStore

        dsn = os.getenv("SWITCHYARD_PG_DSN")
        if not dsn:
            host = os.getenv("SWITCHYARD_PG_HOST", "localhost")
            port = os.getenv("SWITCHYARD_PG_PORT", "5432")
            user = os.getenv("SWITCHYARD_PG_USER", "postgres")
            password = os.getenv("SWITCHYARD_PG_PASSWORD", "")
            db = os.getenv("SWITCHYARD_PG_DB", "switchyard")
            auth = f"{user}:{password}@" if password else f"{user}@"
            dsn = f"postgresql://{auth}{host}:{port}/{db}"

        ssl = _env_bool("SWITCHYARD_PG_SSL", False)
        pool_min = int(os.getenv("SWITCHYARD_PG_POOL_MIN", "1"))
        pool_max = int(os.getenv("SWITCHYARD_PG_POOL_MAX", "10"))
        return PostgresRecordStore(
            dsn=dsn, pool_min=pool_min, pool_max=pool_max, ssl=ssl
        )

    raise ValueError(f"Unknown SWITCHYARD_RECORD_BACKEND: {backend}")
