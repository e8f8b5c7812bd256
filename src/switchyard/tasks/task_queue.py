"""
Per-queue adapter between task records and queue jobs.
"""

from __future__ import annotations

from ..core.telemetry import SafeTelemetry
from .models import QueueJob, QueueJobInput, QueueStats, TaskRecord
from .queue.base import QueueClient
from .repo import TasksRepo


class TaskQueue:
    """
    Enqueues task records on one `QueueClient` and links the resulting job.

    The job carries only the task id; handlers always read the record.
    """

    def __init__(
        self,
        name: str,
        client: QueueClient,
        repo: TasksRepo,
        *,
        telemetry: SafeTelemetry | None = None,
    ) -> None:
        self.name = name
        self.client = client
        self.repo = repo
        self._telemetry = telemetry or SafeTelemetry()

    async def enqueue(self, record: TaskRecord, *, delay_ms: int = 0) -> QueueJob:
        """
        Enqueue `record` and store the job id as its `external_id`.

        Failing to store `external_id` does not fail the enqueue.
        """
        job = await self.client.enqueue(
            QueueJobInput(
                name=record.task_name,
                data={"task_id": record.id},
                priority=record.priority,
                delay_ms=max(0, delay_ms),
                max_attempts=record.max_attempts,
            )
        )
        try:
            await self.repo.update(record.id, {"external_id": job.id})
        except Exception as e:
            self._telemetry.counter(
                "tasks.external_id.failures.total",
                attributes={"queue_name": self.name, "error_type": type(e).__name__},
            )
        return job

    async def remove(self, job_id: str) -> bool:
        return await self.client.remove(job_id)

    async def get_job(self, job_id: str) -> QueueJob | None:
        return await self.client.get_job(job_id)

    async def get_stats(self) -> QueueStats:
        return await self.client.get_stats()

    async def close(self) -> None:
        await self.client.close()
