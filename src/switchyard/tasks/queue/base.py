"""
Queue client contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import QueueJob, QueueJobInput, QueueStats


class QueueClient(ABC):
    """
    Base contract for one named job queue.

    Producer side: `enqueue`, `remove`, `get_job`, `get_stats`. Worker side:
    `reserve` hands out the next due job and marks it active; `complete` and
    `fail` settle it. Jobs are ordered by priority, then by due time.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._is_setup = False

    async def setup(self) -> None:
        """Initialize backend resources."""
        self._is_setup = True

    async def close(self) -> None:
        """Release backend resources."""
        self._is_setup = False

    async def __aenter__(self) -> "QueueClient":
        await self.setup()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_setup(self) -> None:
        if not self._is_setup:
            raise RuntimeError(
                "QueueClient is not initialized. Call setup() or use `async with`."
            )

    @abstractmethod
    async def enqueue(self, job: QueueJobInput) -> QueueJob:
        """Add a job; it becomes due after `job.delay_ms`."""

    @abstractmethod
    async def remove(self, job_id: str) -> bool:
        """Remove a job that is not active. Returns `True` when removed."""

    @abstractmethod
    async def get_job(self, job_id: str) -> QueueJob | None:
        raise NotImplementedError

    @abstractmethod
    async def get_stats(self) -> QueueStats:
        raise NotImplementedError

    @abstractmethod
    async def reserve(self) -> QueueJob | None:
        """Return the next due job and mark it active, or `None` when idle."""

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def fail(self, job_id: str, *, retry_delay_ms: int | None = None) -> None:
        """
        Settle an active job as failed.

        With `retry_delay_ms` the job is scheduled again after that delay;
        without it the job is failed permanently.
        """
