from __future__ import annotations

"""In-process key-value store implementation for local development and tests."""

import asyncio
import copy
import time
from typing import Callable

from ..models import JsonValue
from .base import KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local key-value backend with lazy TTL expiry."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._values: dict[str, tuple[JsonValue, float | None]] = {}

    def _live(self, key: str) -> tuple[JsonValue, float | None] | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._values.pop(key, None)
            return None
        return entry

    def _expiry(self, ttl_s: float | None) -> float | None:
        return None if ttl_s is None else self._clock() + float(ttl_s)

    async def get(self, key: str) -> JsonValue | None:
        self._ensure_setup()
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            return copy.deepcopy(entry[0])

    async def set(self, key: str, value: JsonValue, *, ttl_s: float | None = None) -> None:
        self._ensure_setup()
        async with self._lock:
            self._values[key] = (copy.deepcopy(value), self._expiry(ttl_s))

    async def set_if_absent(
        self, key: str, value: JsonValue, *, ttl_s: float | None = None
    ) -> bool:
        self._ensure_setup()
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._values[key] = (copy.deepcopy(value), self._expiry(ttl_s))
            return True

    async def delete(self, key: str) -> bool:
        self._ensure_setup()
        async with self._lock:
            existed = self._live(key) is not None
            self._values.pop(key, None)
            return existed

    async def delete_if_equals(self, key: str, expected: JsonValue) -> bool:
        self._ensure_setup()
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != expected:
                return False
            del self._values[key]
            return True

    async def expire_if_equals(self, key: str, expected: JsonValue, *, ttl_s: float) -> bool:
        self._ensure_setup()
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry[0] != expected:
                return False
            self._values[key] = (entry[0], self._expiry(ttl_s))
            return True
