from __future__ import annotations

"""In-process record store implementation for local development and tests."""

import asyncio
import copy
from typing import Any, Mapping, Sequence

from ..models import JsonObject, JsonPrimitive, merge_json, now_ms
from .base import RecordAlreadyExistsError, RecordStore, RecordUpdate


class InMemoryRecordStore(RecordStore):
    """Process-local record backend; a single lock makes every write atomic."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = asyncio.Lock()
        # (table, id) -> (data, created_at, updated_at)
        self._rows: dict[tuple[str, str], tuple[JsonObject, int, int]] = {}
        self._sequence: dict[tuple[str, str], int] = {}
        self._next_sequence = 0

    async def create(self, table: str, record_id: str, data: JsonObject) -> JsonObject:
        self._ensure_setup()
        async with self._lock:
            key = (table, record_id)
            if key in self._rows:
                raise RecordAlreadyExistsError(
                    f"Record already exists: {table}/{record_id}"
                )
            ts = now_ms()
            self._rows[key] = (copy.deepcopy(data), ts, ts)
            self._sequence[key] = self._next_sequence
            self._next_sequence += 1
            return copy.deepcopy(data)

    async def get(self, table: str, record_id: str) -> JsonObject | None:
        self._ensure_setup()
        async with self._lock:
            row = self._rows.get((table, record_id))
            return None if row is None else copy.deepcopy(row[0])

    async def update(
        self, table: str, record_id: str, partial: Mapping[str, Any]
    ) -> JsonObject | None:
        self._ensure_setup()
        async with self._lock:
            return self._apply(table, record_id, partial)

    def _apply(
        self, table: str, record_id: str, partial: Mapping[str, Any]
    ) -> JsonObject | None:
        key = (table, record_id)
        row = self._rows.get(key)
        if row is None:
            return None
        data, created_at, _ = row
        merged = merge_json(data, copy.deepcopy(dict(partial)))
        self._rows[key] = (merged, created_at, now_ms())
        return copy.deepcopy(merged)

    async def delete(self, table: str, record_id: str) -> bool:
        self._ensure_setup()
        async with self._lock:
            self._sequence.pop((table, record_id), None)
            return self._rows.pop((table, record_id), None) is not None

    async def list(
        self,
        table: str,
        *,
        where: Mapping[str, JsonPrimitive] | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[JsonObject]:
        self._ensure_setup()
        async with self._lock:
            matches: list[tuple[int, JsonObject]] = []
            for (row_table, row_id), (data, _, _) in self._rows.items():
                if row_table != table:
                    continue
                if where and any(data.get(field) != value for field, value in where.items()):
                    continue
                matches.append((self._sequence[(row_table, row_id)], data))
            matches.sort(key=lambda item: item[0], reverse=newest_first)
            window = matches[offset : offset + limit]
            return [copy.deepcopy(data) for _, data in window]

    async def bulk_update(self, table: str, updates: Sequence[RecordUpdate]) -> int:
        self._ensure_setup()
        if not updates:
            return 0
        async with self._lock:
            matched = 0
            for record_id, partial in updates:
                if self._apply(table, record_id, partial) is not None:
                    matched += 1
            return matched
