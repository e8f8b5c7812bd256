from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module provides a Redis key-value backend using native key expiry for TTLs.
"""

import math
from typing import Any

from redis.asyncio import Redis

from ..models import JsonValue, json_dumps, json_loads
from .base import KeyValueStore

# compare-and-act scripts; values are stored as the same compact JSON text
_DELETE_IF_EQUALS = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""

_PEXPIRE_IF_EQUALS = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
else
    return 0
end
"""


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed key-value store; values are JSON strings, TTLs use `PX`."""

    def __init__(self, *, url: str, client: Any | None = None) -> None:
        super().__init__()
        self.url = url
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
            raise RuntimeError(
                "RedisKeyValueStore is not initialized. Call setup() first."
            )
        return self._redis_client

    @staticmethod
    def _ttl_ms(ttl_s: float | None) -> int | None:
        if ttl_s is None:
            return None
        return max(1, int(math.ceil(float(ttl_s) * 1000)))

    async def get(self, key: str) -> JsonValue | None:
        self._ensure_setup()
        raw = await self._redis().get(key)
        if raw is None:
            return None
        return json_loads(raw)

    async def set(self, key: str, value: JsonValue, *, ttl_s: float | None = None) -> None:
        self._ensure_setup()
        await self._redis().set(key, json_dumps(value), px=self._ttl_ms(ttl_s))

    async def set_if_absent(
        self, key: str, value: JsonValue, *, ttl_s: float | None = None
    ) -> bool:
        self._ensure_setup()
        stored = await self._redis().set(
            key, json_dumps(value), px=self._ttl_ms(ttl_s), nx=True
        )
        return bool(stored)

    async def delete(self, key: str) -> bool:
        self._ensure_setup()
        removed = await self._redis().delete(key)
        return int(removed or 0) > 0

    async def delete_if_equals(self, key: str, expected: JsonValue) -> bool:
        self._ensure_setup()
        removed = await self._redis().eval(_DELETE_IF_EQUALS, 1, key, json_dumps(expected))
        return int(removed or 0) > 0

    async def expire_if_equals(self, key: str, expected: JsonValue, *, ttl_s: float) -> bool:
        self._ensure_setup()
        updated = await self._redis().eval(
            _PEXPIRE_IF_EQUALS, 1, key, json_dumps(expected), self._ttl_ms(ttl_s)
        )
        return int(updated or 0) > 0
