"""
Task scheduling: validate, persist, enqueue.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ..core.telemetry import SafeTelemetry, TelemetrySink
from ..storage.models import new_id, now_ms
from .definition import TaskDefinition
from .models import TaskRecord
from .queue.registry import QueueRegistry
from .repo import TasksRepo
from .task_queue import TaskQueue


class TaskScheduler:
    """
    Schedules task records and keeps one `TaskQueue` per queue name.

    The record is written before the job is enqueued, so a failed enqueue
    leaves a `pending` or `delayed` record behind.
    """

    def __init__(
        self,
        *,
        repo: TasksRepo,
        queues: QueueRegistry,
        telemetry: TelemetrySink | None = None,
    ) -> None:
        self.repo = repo
        self.queues = queues
        self._telemetry = SafeTelemetry(telemetry)
        self._task_queues: dict[str, TaskQueue] = {}
        self._lock = asyncio.Lock()

    async def queue(self, name: str) -> TaskQueue:
        """Return the cached `TaskQueue` for `name`."""
        task_queue = self._task_queues.get(name)
        if task_queue is not None:
            return task_queue
        async with self._lock:
            task_queue = self._task_queues.get(name)
            if task_queue is None:
                client = await self.queues.get(name)
                task_queue = TaskQueue(name, client, self.repo, telemetry=self._telemetry)
                self._task_queues[name] = task_queue
            return task_queue

    async def schedule(
        self,
        task: TaskDefinition[Any],
        payload: Any,
        *,
        user_id: str | None = None,
        delay_ms: int = 0,
    ) -> TaskRecord:
        """
        Validate, persist and enqueue one task.

        Args:
            task: Task definition.
            payload: Raw payload or an instance of `task.payload_model`.
            user_id: Optional owner of the task.
            delay_ms: Delay before the task becomes due.

        Returns:
            The persisted record, including `external_id` when it was stored.

        Raises:
            BadRequestError: If the payload fails validation. No record is
                written.
            Exception: Any enqueue failure, re-raised after the record was
                written.
        """
        validated = task.validate_payload(payload)
        span = self._telemetry.start_span(
            "tasks.schedule",
            attributes={"task_name": task.name, "queue_name": task.queue_name},
        )
        try:
            now = now_ms()
            is_delayed = delay_ms > 0
            record = await self.repo.create(
                TaskRecord(
                    id=new_id("task"),
                    task_name=task.name,
                    queue_name=task.queue_name,
                    payload=validated.model_dump(mode="json"),
                    status="delayed" if is_delayed else "pending",
                    priority=task.options.priority,
                    attempts=0,
                    max_attempts=task.options.max_attempts,
                    enqueued_at_ms=now,
                    delay_until_ms=now + delay_ms if is_delayed else None,
                    user_id=user_id,
                    created_at_ms=now,
                    updated_at_ms=now,
                )
            )
            try:
                task_queue = await self.queue(task.queue_name)
                delay = max(0, (record.delay_until_ms or now) - now_ms())
                await task_queue.enqueue(record, delay_ms=delay)
            except Exception:
                self._telemetry.counter(
                    "tasks.enqueue.failures.total",
                    attributes={"task_name": task.name, "queue_name": task.queue_name},
                )
                raise
        except Exception as e:
            self._telemetry.end_span(span, status="error", error=str(e))
            raise
        self._telemetry.end_span(span, status="ok", attributes={"task_id": record.id})
        self._telemetry.counter(
            "tasks.scheduled.total",
            attributes={"task_name": task.name, "delayed": is_delayed},
        )
        return (await self.repo.get(record.id)) or record
