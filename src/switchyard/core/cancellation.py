"""
Cooperative cancellation signals and per-run locks.

Cancellation is a TTL-bound marker in the key-value store, keyed by run id.
Runs poll for it between steps only; a step already dispatched to the model
or a tool always runs to completion.
"""

from __future__ import annotations

import time
from typing import Callable, Sequence

from ..storage.kv import KeyValueStore
from ..storage.models import new_id, now_ms

CANCEL_KEY_PREFIX = "switchyard:cancel:"
RUN_LOCK_KEY_PREFIX = "switchyard:run-lock:"


def cancel_key(run_id: str) -> str:
    return f"{CANCEL_KEY_PREFIX}{run_id}"


def run_lock_key(state_id: str) -> str:
    return f"{RUN_LOCK_KEY_PREFIX}{state_id}"


class CancellationWatch:
    """
    Throttled view of the cancellation signal for one run.

    The first `poll()` always reads the store; later calls read it at most
    once per `poll_interval_ms`. Once a signal is observed it sticks.
    Sub-agent watches also observe their ancestors' signals.
    """

    def __init__(
        self,
        monitor: "CancellationMonitor",
        run_ids: Sequence[str],
        *,
        poll_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._monitor = monitor
        self._run_ids = tuple(run_ids)
        self._poll_interval_ms = poll_interval_ms
        self._clock = clock
        self._last_poll_s: float | None = None
        self._observed: str | None = None

    @property
    def observed(self) -> str | None:
        return self._observed

    async def poll(self) -> str | None:
        """Return the cancellation reason, or `None` when no signal is set."""
        if self._observed is not None:
            return self._observed
        now = self._clock()
        if (
            self._last_poll_s is not None
            and (now - self._last_poll_s) * 1000.0 < self._poll_interval_ms
        ):
            return None
        self._last_poll_s = now
        for run_id in self._run_ids:
            reason = await self._monitor.signal(run_id)
            if reason is not None:
                self._observed = reason
                return reason
        return None


class CancellationMonitor:
    """Writes, reads and clears cancellation markers."""

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        poll_interval_ms: int = 1000,
        signal_ttl_s: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.kv = kv
        self.poll_interval_ms = poll_interval_ms
        self.signal_ttl_s = signal_ttl_s
        self._clock = clock

    async def request(self, run_id: str, reason: str = "Cancelled by caller") -> None:
        await self.kv.set(
            cancel_key(run_id),
            {"reason": reason, "requested_at_ms": now_ms()},
            ttl_s=self.signal_ttl_s,
        )

    async def signal(self, run_id: str) -> str | None:
        raw = await self.kv.get(cancel_key(run_id))
        if raw is None:
            return None
        if isinstance(raw, dict) and isinstance(raw.get("reason"), str):
            return raw["reason"]
        return "Cancelled"

    def watch(self, run_id: str, *, ancestors: Sequence[str] = ()) -> CancellationWatch:
        return CancellationWatch(
            self,
            [run_id, *ancestors],
            poll_interval_ms=self.poll_interval_ms,
            clock=self._clock,
        )

    async def clear(self, run_id: str) -> None:
        await self.kv.delete(cancel_key(run_id))


class RunLock:
    """
    Exclusive marker held while a run executes.

    A running state without a held lock belongs to a crashed process.
    """

    def __init__(self, kv: KeyValueStore, *, ttl_s: float = 600) -> None:
        self.kv = kv
        self.ttl_s = ttl_s

    async def acquire(self, state_id: str) -> str | None:
        """Return an owner token when the lock was taken, `None` when held."""
        owner = new_id("lock")
        taken = await self.kv.set_if_absent(run_lock_key(state_id), owner, ttl_s=self.ttl_s)
        return owner if taken else None

    async def refresh(self, state_id: str, owner: str) -> bool:
        """Extend the lock TTL when `owner` still holds it."""
        return await self.kv.expire_if_equals(run_lock_key(state_id), owner, ttl_s=self.ttl_s)

    async def release(self, state_id: str, owner: str) -> bool:
        """Drop the lock only when `owner` still holds it."""
        return await self.kv.delete_if_equals(run_lock_key(state_id), owner)

    async def is_held(self, state_id: str) -> bool:
        return await self.kv.get(run_lock_key(state_id)) is not None
