"""
Task record repository.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..storage.crud import Crud
from ..storage.models import JsonPrimitive, now_ms
from ..storage.records.base import RecordStore
from .errors import task_not_found_error
from .models import (
    TASKS_TABLE,
    TaskPriority,
    TaskRecord,
    TaskStatus,
    decode_task_record,
    encode_task_record,
)


class TasksRepo:
    """
    Task records over a `RecordStore`.

    Generic CRUD is delegated to a composed `Crud[TaskRecord]`; this class
    adds the task-specific queries.
    """

    def __init__(self, store: RecordStore) -> None:
        self.crud: Crud[TaskRecord] = Crud(
            store=store,
            table=TASKS_TABLE,
            encode=encode_task_record,
            decode=decode_task_record,
            id_of=lambda record: record.id,
            not_found=task_not_found_error,
        )

    async def create(self, record: TaskRecord) -> TaskRecord:
        return await self.crud.create(record)

    async def get(self, task_id: str) -> TaskRecord | None:
        return await self.crud.get(task_id)

    async def require(self, task_id: str) -> TaskRecord:
        return await self.crud.require(task_id)

    async def update(self, task_id: str, partial: Mapping[str, Any]) -> TaskRecord | None:
        """Merge `partial` into the record and stamp `updated_at_ms`."""
        return await self.crud.update(task_id, {**partial, "updated_at_ms": now_ms()})

    async def delete(self, task_id: str) -> bool:
        return await self.crud.delete(task_id)

    async def get_by_status(self, status: TaskStatus, *, limit: int = 100) -> list[TaskRecord]:
        return await self.crud.find({"status": status}, limit=limit)

    async def get_by_task_name(self, task_name: str, *, limit: int = 100) -> list[TaskRecord]:
        return await self.crud.find({"task_name": task_name}, limit=limit)

    async def get_by_user_id(self, user_id: str, *, limit: int = 100) -> list[TaskRecord]:
        return await self.crud.find({"user_id": user_id}, limit=limit)

    async def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        task_name: str | None = None,
        queue_name: str | None = None,
        user_id: str | None = None,
        priority: TaskPriority | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TaskRecord]:
        """List records matching every given filter, newest first."""
        where: dict[str, JsonPrimitive] = {}
        for key, value in (
            ("status", status),
            ("task_name", task_name),
            ("queue_name", queue_name),
            ("user_id", user_id),
            ("priority", priority),
        ):
            if value is not None:
                where[key] = value
        return await self.crud.find(where, limit=limit, offset=offset)

    async def bulk_update(self, updates: Sequence[tuple[str, Mapping[str, Any]]]) -> int:
        """
        Apply partial updates atomically as one batch.

        Returns:
            Number of entries that matched an existing record, counted the
            way `RecordStore.bulk_update` counts them.
        """
        stamp = now_ms()
        return await self.crud.bulk_update(
            [(task_id, {**partial, "updated_at_ms": stamp}) for task_id, partial in updates]
        )
