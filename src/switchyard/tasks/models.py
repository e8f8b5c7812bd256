"""
Task records and queue job types.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Mapping

from ..agents.versioning import TASK_RECORD_SCHEMA_VERSION, migrate_task_record
from ..errors import InternalServerError
from ..storage.models import JsonObject, JsonValue, now_ms

TaskStatus = Literal["pending", "delayed", "running", "complete", "failed", "cancelled"]
TaskPriority = Literal["low", "normal", "high", "critical"]

TASK_STATUSES: tuple[str, ...] = (
    "pending",
    "delayed",
    "running",
    "complete",
    "failed",
    "cancelled",
)
PRIORITY_RANK: dict[str, int] = {"low": 0, "normal": 1, "high": 2, "critical": 3}

TASKS_TABLE = "tasks"


@dataclass(frozen=True, slots=True)
class TaskRecord:
    """
    Persisted record of one scheduled task.

    The record is the source of truth for task status; the queue only holds a
    pointer job whose id is stored in `external_id`.
    """

    id: str
    task_name: str
    queue_name: str
    payload: JsonObject = field(default_factory=dict)
    status: TaskStatus = "pending"
    priority: TaskPriority = "normal"
    attempts: int = 0
    max_attempts: int = 3
    enqueued_at_ms: int | None = None
    delay_until_ms: int | None = None
    started_at_ms: int | None = None
    completed_at_ms: int | None = None
    failed_at_ms: int | None = None
    result: JsonValue = None
    error: JsonObject | None = None
    user_id: str | None = None
    external_id: str | None = None
    created_at_ms: int = field(default_factory=now_ms)
    updated_at_ms: int = field(default_factory=now_ms)
    schema_version: str = TASK_RECORD_SCHEMA_VERSION

    @property
    def is_terminal(self) -> bool:
        return self.status in ("complete", "failed", "cancelled")


def encode_task_record(record: TaskRecord) -> JsonObject:
    return asdict(record)


def decode_task_record(data: Mapping[str, Any]) -> TaskRecord:
    """
    Rebuild a `TaskRecord` from its stored document, migrating old schemas.

    Raises:
        InternalServerError: If the document cannot be migrated or decoded.
    """
    try:
        migrated = migrate_task_record(data).migrated
        known = TaskRecord.__dataclass_fields__
        return TaskRecord(**{k: v for k, v in migrated.items() if k in known})
    except (ValueError, TypeError) as e:
        raise InternalServerError(
            f"Invalid task record: {e}",
            metadata={"task_id": str(data.get("id"))},
        ) from e


@dataclass(frozen=True, slots=True)
class QueueJobInput:
    """Job submitted to a `QueueClient`. The client assigns `id` when omitted."""

    name: str
    data: JsonObject = field(default_factory=dict)
    id: str | None = None
    priority: TaskPriority = "normal"
    delay_ms: int = 0
    max_attempts: int = 1


@dataclass(frozen=True, slots=True)
class QueueJob:
    id: str
    name: str
    data: JsonObject = field(default_factory=dict)
    attempts_made: int = 0
    timestamp_ms: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class QueueStats:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
