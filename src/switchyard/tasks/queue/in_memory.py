from __future__ import annotations

"""In-process job queue for local development and tests."""

import asyncio
import copy
import itertools
from dataclasses import dataclass, replace
from typing import Callable, Literal

from ...storage.models import new_id, now_ms
from ..models import PRIORITY_RANK, QueueJob, QueueJobInput, QueueStats
from .base import QueueClient

_JobState = Literal["waiting", "delayed", "active", "completed", "failed"]


@dataclass(slots=True)
class _Entry:
    job: QueueJob
    priority: str
    state: _JobState
    due_at_ms: int
    seq: int


class InMemoryQueueClient(QueueClient):
    """Process-local queue; delayed jobs become due lazily on `reserve`."""

    def __init__(self, name: str, *, clock: Callable[[], int] = now_ms) -> None:
        super().__init__(name)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._entries: dict[str, _Entry] = {}
        self._seq = itertools.count()

    def _snapshot(self, entry: _Entry) -> QueueJob:
        return replace(entry.job, data=copy.deepcopy(entry.job.data))

    async def enqueue(self, job: QueueJobInput) -> QueueJob:
        self._ensure_setup()
        now = self._clock()
        delay = max(0, int(job.delay_ms))
        queued = QueueJob(
            id=job.id or new_id("job"),
            name=job.name,
            data=copy.deepcopy(job.data),
            attempts_made=0,
            timestamp_ms=now,
        )
        async with self._lock:
            self._entries[queued.id] = _Entry(
                job=queued,
                priority=job.priority,
                state="delayed" if delay > 0 else "waiting",
                due_at_ms=now + delay,
                seq=next(self._seq),
            )
        return replace(queued, data=copy.deepcopy(queued.data))

    async def remove(self, job_id: str) -> bool:
        self._ensure_setup()
        async with self._lock:
            entry = self._entries.get(job_id)
            if entry is None or entry.state == "active":
                return False
            del self._entries[job_id]
            return True

    async def get_job(self, job_id: str) -> QueueJob | None:
        self._ensure_setup()
        async with self._lock:
            entry = self._entries.get(job_id)
            return None if entry is None else self._snapshot(entry)

    async def get_stats(self) -> QueueStats:
        self._ensure_setup()
        async with self._lock:
            counts = {"waiting": 0, "delayed": 0, "active": 0, "completed": 0, "failed": 0}
            now = self._clock()
            for entry in self._entries.values():
                state = entry.state
                if state == "delayed" and entry.due_at_ms <= now:
                    state = "waiting"
                counts[state] += 1
            return QueueStats(**counts)

    async def reserve(self) -> QueueJob | None:
        self._ensure_setup()
        async with self._lock:
            now = self._clock()
            due = [
                e
                for e in self._entries.values()
                if e.state in ("waiting", "delayed") and e.due_at_ms <= now
            ]
            if not due:
                return None
            entry = min(due, key=lambda e: (-PRIORITY_RANK[e.priority], e.due_at_ms, e.seq))
            entry.state = "active"
            entry.job = replace(entry.job, attempts_made=entry.job.attempts_made + 1)
            return self._snapshot(entry)

    async def complete(self, job_id: str) -> None:
        self._ensure_setup()
        async with self._lock:
            entry = self._entries.get(job_id)
            if entry is not None:
                entry.state = "completed"

    async def fail(self, job_id: str, *, retry_delay_ms: int | None = None) -> None:
        self._ensure_setup()
        async with self._lock:
            entry = self._entries.get(job_id)
            if entry is None:
                return
            if retry_delay_ms is None:
                entry.state = "failed"
                return
            delay = max(0, int(retry_delay_ms))
            entry.state = "delayed" if delay > 0 else "waiting"
            entry.due_at_ms = self._clock() + delay
            entry.seq = next(self._seq)
