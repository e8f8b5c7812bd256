from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a Redis job queue built on sorted sets.

Layout per queue (`{prefix}:{name}` namespace):
- `jobs`: hash of job id to JSON job document
- `waiting`: sorted set scored by priority, then due time
- `delayed`: sorted set scored by due time in epoch ms
- `active`: set of reserved job ids
- `completed` / `failed`: sets of settled job ids
"""

from typing import Any, Callable

from redis.asyncio import Redis

from ...storage.models import json_dumps, json_loads, new_id, now_ms
from ..models import PRIORITY_RANK, QueueJob, QueueJobInput, QueueStats
from .base import QueueClient

# Priority dominates the waiting score; due time breaks ties (FIFO).
_PRIORITY_SPAN = 10**13


def _waiting_score(priority: str, due_at_ms: int) -> float:
    return float((3 - PRIORITY_RANK[priority]) * _PRIORITY_SPAN + due_at_ms)


class RedisQueueClient(QueueClient):
    """Redis-backed queue; `reserve` promotes due delayed jobs before popping."""

    def __init__(
        self,
        name: str,
        *,
        url: str,
        client: Any | None = None,
        prefix: str = "switchyard:queue",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(name)
        self.url = url
        self.prefix = prefix
        self._clock = clock
        self._redis_client: Redis | None = client
        self._owns_client = client is None

    async def setup(self) -> None:
        if self._redis_client is None:
            self._redis_client = Redis.from_url(self.url, decode_responses=True)
        await self._redis_client.ping()
        await super().setup()

    async def close(self) -> None:
        if self._redis_client is not None and self._owns_client:
            await self._redis_client.aclose()
            self._redis_client = None
        await super().close()

    def _redis(self) -> Redis:
        if self._redis_client is None:
            raise RuntimeError("RedisQueueClient is not initialized. Call setup() first.")
        return self._redis_client

    def _key(self, part: str) -> str:
        return f"{self.prefix}:{self.name}:{part}"

    @staticmethod
    def _to_job(doc: dict[str, Any]) -> QueueJob:
        return QueueJob(
            id=doc["id"],
            name=doc["name"],
            data=doc.get("data") or {},
            attempts_made=int(doc.get("attempts_made", 0)),
            timestamp_ms=int(doc["timestamp_ms"]),
        )

    async def _load(self, job_id: str) -> dict[str, Any] | None:
        raw = await self._redis().hget(self._key("jobs"), job_id)
        return None if raw is None else json_loads(raw)

    async def enqueue(self, job: QueueJobInput) -> QueueJob:
        self._ensure_setup()
        now = self._clock()
        delay = max(0, int(job.delay_ms))
        doc = {
            "id": job.id or new_id("job"),
            "name": job.name,
            "data": job.data,
            "priority": job.priority,
            "attempts_made": 0,
            "timestamp_ms": now,
        }
        async with self._redis().pipeline(transaction=True) as pipe:
            pipe.hset(self._key("jobs"), doc["id"], json_dumps(doc))
            if delay > 0:
                pipe.zadd(self._key("delayed"), {doc["id"]: now + delay})
            else:
                pipe.zadd(self._key("waiting"), {doc["id"]: _waiting_score(job.priority, now)})
            await pipe.execute()
        return self._to_job(doc)

    async def remove(self, job_id: str) -> bool:
        self._ensure_setup()
        r = self._redis()
        if await r.sismember(self._key("active"), job_id):
            return False
        async with r.pipeline(transaction=True) as pipe:
            pipe.hdel(self._key("jobs"), job_id)
            pipe.zrem(self._key("waiting"), job_id)
            pipe.zrem(self._key("delayed"), job_id)
            pipe.srem(self._key("completed"), job_id)
            pipe.srem(self._key("failed"), job_id)
            removed, *_ = await pipe.execute()
        return int(removed or 0) > 0

    async def get_job(self, job_id: str) -> QueueJob | None:
        self._ensure_setup()
        raw = await self._redis().hget(self._key("jobs"), job_id)
        return None if raw is None else self._to_job(json_loads(raw))

    async def get_stats(self) -> QueueStats:
        self._ensure_setup()
        now = self._clock()
        async with self._redis().pipeline(transaction=False) as pipe:
            pipe.zcard(self._key("waiting"))
            pipe.zcount(self._key("delayed"), "-inf", now)
            pipe.zcount(self._key("delayed"), f"({now}", "+inf")
            pipe.scard(self._key("active"))
            pipe.scard(self._key("completed"))
            pipe.scard(self._key("failed"))
            waiting, due, delayed, active, completed, failed = await pipe.execute()
        return QueueStats(
            waiting=int(waiting) + int(due),
            delayed=int(delayed),
            active=int(active),
            completed=int(completed),
            failed=int(failed),
        )

    async def _promote_due(self) -> None:
        r = self._redis()
        now = self._clock()
        due_ids = await r.zrangebyscore(self._key("delayed"), "-inf", now)
        for job_id in due_ids:
            doc = await self._load(job_id)
            if doc is None:
                await r.zrem(self._key("delayed"), job_id)
                continue
            if await r.zrem(self._key("delayed"), job_id):
                await r.zadd(
                    self._key("waiting"),
                    {job_id: _waiting_score(doc.get("priority", "normal"), now)},
                )

    async def reserve(self) -> QueueJob | None:
        self._ensure_setup()
        await self._promote_due()
        r = self._redis()
        popped = await r.zpopmin(self._key("waiting"), 1)
        if not popped:
            return None
        job_id = popped[0][0]
        doc = await self._load(job_id)
        if doc is None:
            return None
        doc["attempts_made"] = int(doc.get("attempts_made", 0)) + 1
        async with r.pipeline(transaction=True) as pipe:
            pipe.hset(self._key("jobs"), job_id, json_dumps(doc))
            pipe.sadd(self._key("active"), job_id)
            await pipe.execute()
        return self._to_job(doc)

    async def complete(self, job_id: str) -> None:
        self._ensure_setup()
        async with self._redis().pipeline(transaction=True) as pipe:
            pipe.srem(self._key("active"), job_id)
            pipe.sadd(self._key("completed"), job_id)
            await pipe.execute()

    async def fail(self, job_id: str, *, retry_delay_ms: int | None = None) -> None:
        self._ensure_setup()
        async with self._redis().pipeline(transaction=True) as pipe:
            pipe.srem(self._key("active"), job_id)
            if retry_delay_ms is None:
                pipe.sadd(self._key("failed"), job_id)
            else:
                pipe.zadd(self._key("delayed"), {job_id: self._clock() + max(0, int(retry_delay_ms))})
            await pipe.execute()
