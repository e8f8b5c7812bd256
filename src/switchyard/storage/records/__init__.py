from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides record store implementations and the base contract.
"""

from .base import RecordAlreadyExistsError, RecordStore, RecordUpdate
from .in_memory import InMemoryRecordStore
from .sqlite import SQLiteRecordStore


def __getattr__(name: str):
    if name == "PostgresRecordStore":
        from .postgres import PostgresRecordStore

        return PostgresRecordStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "RecordAlreadyExistsError",
    "RecordStore",
    "RecordUpdate",
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "PostgresRecordStore",
]
