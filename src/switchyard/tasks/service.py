"""
Read and control operations over scheduled tasks.
"""

from __future__ import annotations

from typing import Any

from .errors import invalid_task_state_error, task_not_found_error, task_operation_error
from .models import QueueStats, TaskRecord, TaskStatus
from .repo import TasksRepo
from .scheduler import TaskScheduler


class TasksService:
    """Query, cancel and retry tasks through the repository and scheduler."""

    def __init__(self, *, repo: TasksRepo, scheduler: TaskScheduler) -> None:
        self.repo = repo
        self.scheduler = scheduler

    async def get(self, task_id: str) -> TaskRecord:
        """
        Raises:
            NotFoundError: If no task has `task_id`.
        """
        return await self.repo.require(task_id)

    async def list_tasks(self, **filters: Any) -> list[TaskRecord]:
        return await self.repo.list_tasks(**filters)

    async def get_by_status(self, status: TaskStatus, *, limit: int = 100) -> list[TaskRecord]:
        return await self.repo.get_by_status(status, limit=limit)

    async def get_by_task_name(self, task_name: str, *, limit: int = 100) -> list[TaskRecord]:
        return await self.repo.get_by_task_name(task_name, limit=limit)

    async def get_by_user_id(self, user_id: str, *, limit: int = 100) -> list[TaskRecord]:
        return await self.repo.get_by_user_id(user_id, limit=limit)

    async def get_queue_stats(self, queue_name: str) -> QueueStats:
        task_queue = await self.scheduler.queue(queue_name)
        return await task_queue.get_stats()

    async def cancel_task(self, task_id: str) -> TaskRecord:
        """
        Cancel a task that has not started yet.

        Raises:
            NotFoundError: If the task does not exist.
            BadRequestError: If the task is not `pending` or `delayed`.
        """
        record = await self.repo.require(task_id)
        if record.status not in ("pending", "delayed"):
            raise invalid_task_state_error(task_id, record.status, "cancel")
        if record.external_id:
            task_queue = await self.scheduler.queue(record.queue_name)
            await task_queue.remove(record.external_id)
        updated = await self.repo.update(task_id, {"status": "cancelled"})
        if updated is None:
            raise task_not_found_error(task_id)
        return updated

    async def retry_task(self, task_id: str) -> TaskRecord:
        """
        Re-enqueue a failed task with a fresh attempt budget.

        Raises:
            NotFoundError: If the task does not exist.
            BadRequestError: If the task is not `failed`.
            InternalServerError: If the task could not be re-enqueued.
        """
        record = await self.repo.require(task_id)
        if record.status != "failed":
            raise invalid_task_state_error(task_id, record.status, "retry")
        updated = await self.repo.update(
            task_id,
            {
                "status": "pending",
                "attempts": 0,
                "error": None,
                "failed_at_ms": None,
                "delay_until_ms": None,
            },
        )
        if updated is None:
            raise task_not_found_error(task_id)
        try:
            task_queue = await self.scheduler.queue(updated.queue_name)
            await task_queue.enqueue(updated)
        except Exception as e:
            raise task_operation_error(
                "retry", str(e), metadata={"task_id": task_id}
            ) from e
        return await self.repo.require(task_id)
