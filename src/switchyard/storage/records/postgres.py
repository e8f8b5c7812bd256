from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a PostgreSQL record backend storing JSONB documents per table.
"""

from typing import Any, Mapping, Sequence, cast

import asyncpg

from ..models import JsonObject, JsonPrimitive, json_dumps, json_loads, merge_json, now_ms
from .base import RecordAlreadyExistsError, RecordStore, RecordUpdate


def _decode(raw: Any) -> JsonObject:
    if isinstance(raw, str):
        return cast(JsonObject, json_loads(raw))
    return cast(JsonObject, dict(raw))


class PostgresRecordStore(RecordStore):
    """Production record store using one JSONB table keyed by `(table_name, id)`."""

    def __init__(
        self,
        *,
        dsn: str,
        pool_min: int = 1,
        pool_max: int = 10,
        ssl: bool = False,
    ) -> None:
        super().__init__()
        self.dsn = dsn
        self.pool_min = pool_min
        self.pool_max = pool_max
        self.ssl = ssl
        self._pool: asyncpg.Pool | None = None

    async def setup(self) -> None:
        self._pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=self.pool_min,
            max_size=self.pool_max,
            ssl=self.ssl if self.ssl else None,
        )
        await self._create_schema()
        await super().setup()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        await super().close()

    def _pool_required(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError(
                "PostgresRecordStore is not initialized. Call setup() first."
            )
        return self._pool

    async def _create_schema(self) -> None:
        pool = self._pool_required()
        async with pool.acquire() as connection:
            await connection.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                  table_name TEXT NOT NULL,
                  id TEXT NOT NULL,
                  data JSONB NOT NULL,
                  created_at BIGINT NOT NULL,
                  updated_at BIGINT NOT NULL,
                  seq BIGSERIAL,
                  PRIMARY KEY(table_name, id)
                );
                """,
            )
            await connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_records_table_time ON records(table_name, created_at DESC);"
            )

    async def create(self, table: str, record_id: str, data: JsonObject) -> JsonObject:
        self._ensure_setup()
        pool = self._pool_required()
        ts = now_ms()
        async with pool.acquire() as connection:
            try:
                await connection.execute(
                    """
                    INSERT INTO records (table_name, id, data, created_at, updated_at)
                    VALUES ($1, $2, $3::jsonb, $4, $4)
                    """,
                    table,
                    record_id,
                    json_dumps(data),
                    ts,
                )
            except asyncpg.UniqueViolationError as e:
                raise RecordAlreadyExistsError(
                    f"Record already exists: {table}/{record_id}"
                ) from e
        return dict(data)

    async def get(self, table: str, record_id: str) -> JsonObject | None:
        self._ensure_setup()
        pool = self._pool_required()
        async with pool.acquire() as connection:
            row = await connection.fetchrow(
                "SELECT data FROM records WHERE table_name=$1 AND id=$2",
                table,
                record_id,
            )
        return None if row is None else _decode(row["data"])

    async def update(
        self, table: str, record_id: str, partial: Mapping[str, Any]
    ) -> JsonObject | None:
        self._ensure_setup()
        pool = self._pool_required()
        async with pool.acquire() as connection:
            row = await connection.fetchrow(
                """
                UPDATE records SET data = data || $3::jsonb, updated_at = $4
                WHERE table_name=$1 AND id=$2
                RETURNING data
                """,
                table,
                record_id,
                json_dumps(dict(partial)),
                now_ms(),
            )
        return None if row is None else _decode(row["data"])

    async def delete(self, table: str, record_id: str) -> bool:
        self._ensure_setup()
        pool = self._pool_required()
        async with pool.acquire() as connection:
            status = await connection.execute(
                "DELETE FROM records WHERE table_name=$1 AND id=$2",
                table,
                record_id,
            )
        return status.endswith(" 1")

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
        pool = self._pool_required()
        direction = "DESC" if newest_first else "ASC"
        async with pool.acquire() as connection:
            rows = await connection.fetch(
                f"""
                SELECT data FROM records
                WHERE table_name=$1 AND data @> $2::jsonb
                ORDER BY created_at {direction}, seq {direction}
                LIMIT $3 OFFSET $4
                """,
                table,
                json_dumps(dict(where or {})),
                limit,
                offset,
            )
        return [_decode(row["data"]) for row in rows]

    async def bulk_update(self, table: str, updates: Sequence[RecordUpdate]) -> int:
        self._ensure_setup()
        if not updates:
            return 0
        # repeated ids collapse into one merged patch; the UPDATE touches each row once
        collapsed: dict[str, JsonObject] = {}
        entries: dict[str, int] = {}
        for record_id, partial in updates:
            collapsed[record_id] = merge_json(collapsed.get(record_id, {}), dict(partial))
            entries[record_id] = entries.get(record_id, 0) + 1
        ids = list(collapsed.keys())
        patches = [json_dumps(collapsed[record_id]) for record_id in ids]

        pool = self._pool_required()
        async with pool.acquire() as connection:
            async with connection.transaction():
                rows = await connection.fetch(
                    """
                    UPDATE records AS r
                    SET data = r.data || u.patch::jsonb, updated_at = $4
                    FROM UNNEST($2::text[], $3::text[]) AS u(id, patch)
                    WHERE r.table_name = $1 AND r.id = u.id
                    RETURNING r.id
                    """,
                    table,
                    ids,
                    patches,
                    now_ms(),
                )
        return sum(entries[row["id"]] for row in rows)
