from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a SQLite record backend storing JSON documents per table.
"""

import asyncio
import re
from typing import Any, Mapping, Sequence, cast

import aiosqlite

from ..models import JsonObject, JsonPrimitive, json_dumps, json_loads, merge_json, now_ms
from .base import RecordAlreadyExistsError, RecordStore, RecordUpdate

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _where_sql(where: Mapping[str, JsonPrimitive] | None) -> tuple[str, list[Any]]:
    if not where:
        return "", []
    clauses: list[str] = []
    params: list[Any] = []
    for field, value in where.items():
        if not _FIELD_RE.match(field):
            raise ValueError(f"Invalid filter field: {field!r}")
        if value is None:
            clauses.append(f"json_extract(data_json, '$.{field}') IS NULL")
        else:
            clauses.append(f"json_extract(data_json, '$.{field}') = ?")
            params.append(value)
    return " AND " + " AND ".join(clauses), params


class SQLiteRecordStore(RecordStore):
    """Persistent local record backend backed by SQLite."""

    def __init__(self, path: str = "switchyard.sqlite3") -> None:
        super().__init__()
        self.path = path
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def setup(self) -> None:
        self._connection = await aiosqlite.connect(self.path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA synchronous=NORMAL;")
        await self._create_tables()
        await self._connection.commit()
        await super().setup()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
        await super().close()

    def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "SQLiteRecordStore is not initialized. Call setup() first."
            )
        return self._connection

    async def _create_tables(self) -> None:
        db = self._db()
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
              table_name TEXT NOT NULL,
              id TEXT NOT NULL,
              data_json TEXT NOT NULL,
              created_at INTEGER NOT NULL,
              updated_at INTEGER NOT NULL,
              PRIMARY KEY(table_name, id)
            );
            """,
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_table_time ON records(table_name, created_at DESC);"
        )

    async def create(self, table: str, record_id: str, data: JsonObject) -> JsonObject:
        self._ensure_setup()
        db = self._db()
        ts = now_ms()
        async with self._write_lock:
            try:
                await db.execute(
                    """
                    INSERT INTO records (table_name, id, data_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (table, record_id, json_dumps(data), ts, ts),
                )
            except aiosqlite.IntegrityError as e:
                await db.rollback()
                raise RecordAlreadyExistsError(
                    f"Record already exists: {table}/{record_id}"
                ) from e
            await db.commit()
        return dict(data)

    async def _fetch_data(self, table: str, record_id: str) -> JsonObject | None:
        cursor = await self._db().execute(
            "SELECT data_json FROM records WHERE table_name=? AND id=?",
            (table, record_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return cast(JsonObject, json_loads(cast(str, row["data_json"])))

    async def get(self, table: str, record_id: str) -> JsonObject | None:
        self._ensure_setup()
        return await self._fetch_data(table, record_id)

    async def _merge_one(
        self, table: str, record_id: str, partial: Mapping[str, Any]
    ) -> JsonObject | None:
        current = await self._fetch_data(table, record_id)
        if current is None:
            return None
        merged = merge_json(current, dict(partial))
        await self._db().execute(
            "UPDATE records SET data_json=?, updated_at=? WHERE table_name=? AND id=?",
            (json_dumps(merged), now_ms(), table, record_id),
        )
        return merged

    async def update(
        self, table: str, record_id: str, partial: Mapping[str, Any]
    ) -> JsonObject | None:
        self._ensure_setup()
        db = self._db()
        async with self._write_lock:
            try:
                merged = await self._merge_one(table, record_id, partial)
            except Exception:
                await db.rollback()
                raise
            await db.commit()
        return merged

    async def delete(self, table: str, record_id: str) -> bool:
        self._ensure_setup()
        db = self._db()
        async with self._write_lock:
            cursor = await db.execute(
                "DELETE FROM records WHERE table_name=? AND id=?",
                (table, record_id),
            )
            await db.commit()
        return (cursor.rowcount or 0) > 0

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
        where_clause, params = _where_sql(where)
        direction = "DESC" if newest_first else "ASC"
        cursor = await self._db().execute(
            f"""
            SELECT data_json FROM records
            WHERE table_name=?{where_clause}
            ORDER BY created_at {direction}, rowid {direction}
            LIMIT ? OFFSET ?
            """,
            (table, *params, limit, offset),
        )
        rows = await cursor.fetchall()
        return [cast(JsonObject, json_loads(cast(str, row["data_json"]))) for row in rows]

    async def bulk_update(self, table: str, updates: Sequence[RecordUpdate]) -> int:
        self._ensure_setup()
        if not updates:
            return 0
        db = self._db()
        async with self._write_lock:
            await db.execute("BEGIN IMMEDIATE")
            try:
                matched = 0
                for record_id, partial in updates:
                    if await self._merge_one(table, record_id, partial) is not None:
                        matched += 1
            except Exception:
                await db.rollback()
                raise
            await db.commit()
        return matched
