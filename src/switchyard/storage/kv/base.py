from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the abstract key-value store contract used for ephemeral
run state, run locks and cancellation signals.
"""

from abc import ABC, abstractmethod

from ..models import JsonValue


class KeyValueStore(ABC):
    """
    Base contract for key-value backends with per-key TTL.

    Values are JSON-like. A `ttl_s` of `None` stores the key without expiry.
    Expired keys behave exactly like missing keys.
    """

    def __init__(self) -> None:
        self._is_setup = False

    async def setup(self) -> None:
        """Initialize backend resources."""
        self._is_setup = True

    async def close(self) -> None:
        """Release backend resources."""
        self._is_setup = False

    async def __aenter__(self) -> "KeyValueStore":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError(
                "KeyValueStore is not initialized. Call setup() or use `async with`."
            )

    @abstractmethod
    async def get(self, key: str) -> JsonValue | None:
        """Return the stored value, or `None` when missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: JsonValue, *, ttl_s: float | None = None) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    async def set_if_absent(
        self, key: str, value: JsonValue, *, ttl_s: float | None = None
    ) -> bool:
        """Store a value only when the key is absent. Returns `True` on success."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns `True` when a live key was removed."""

    @abstractmethod
    async def delete_if_equals(self, key: str, expected: JsonValue) -> bool:
        """
        Atomically delete `key` when its live value equals `expected`.

        Returns:
            `True` when the key was removed.
        """

    @abstractmethod
    async def expire_if_equals(self, key: str, expected: JsonValue, *, ttl_s: float) -> bool:
        """
        Atomically reset the TTL of `key` when its live value equals `expected`.

        Returns:
            `True` when the TTL was updated.
        """
