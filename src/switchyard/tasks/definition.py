"""
Task definitions: a named queue, a payload model and a handler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import BadRequestError
from .models import TaskPriority, TaskRecord

PayloadT = TypeVar("PayloadT", bound=BaseModel)

TaskHandler = Callable[[PayloadT, TaskRecord], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class TaskOptions:
    """
    Scheduling defaults applied to every record of a task definition.

    Attributes:
        priority: Queue priority of new jobs.
        max_attempts: Handler attempts before the task is marked failed.
        backoff_ms: Base retry delay; doubled after every failed attempt.
    """

    priority: TaskPriority = "normal"
    max_attempts: int = 3
    backoff_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise BadRequestError("TaskOptions.max_attempts must be >= 1")
        if self.backoff_ms < 0:
            raise BadRequestError("TaskOptions.backoff_ms must be >= 0")

    def retry_delay_ms(self, attempts: int) -> int:
        """Delay before the attempt following `attempts` failed ones."""
        return self.backoff_ms * (2 ** max(0, attempts - 1))


@dataclass(frozen=True, slots=True)
class TaskDefinition(Generic[PayloadT]):
    """
    Declarative task type.

    `name` doubles as the record's `task_name`; `queue_name` selects the
    queue client the scheduler and worker use.
    """

    name: str
    queue_name: str
    payload_model: Type[PayloadT]
    handler: TaskHandler
    options: TaskOptions = field(default_factory=TaskOptions)

    def validate_payload(self, payload: Any) -> PayloadT:
        """
        Validate a raw payload against `payload_model`.

        Raises:
            BadRequestError: If validation fails.
        """
        if isinstance(payload, self.payload_model):
            return payload
        try:
            return self.payload_model.model_validate(payload)
        except ValidationError as e:
            raise BadRequestError(
                f"Invalid payload for task '{self.name}': {e}",
                metadata={"task_name": self.name},
            ) from e


def define_task(
    name: str,
    *,
    payload_model: Type[PayloadT],
    handler: TaskHandler,
    queue_name: str | None = None,
    options: TaskOptions | None = None,
) -> TaskDefinition[PayloadT]:
    """
    Build a `TaskDefinition`.

    Args:
        name: Task name, unique across the application.
        payload_model: Pydantic model validating task payloads.
        handler: Async callable `(payload, record) -> result`.
        queue_name: Queue to use. Defaults to `name`.
        options: Scheduling defaults.

    Returns:
        Task definition ready for `TaskScheduler.schedule`.
    """
    if not name.strip():
        raise BadRequestError("Task name must be non-empty")
    return TaskDefinition(
        name=name,
        queue_name=queue_name or name,
        payload_model=payload_model,
        handler=handler,
        options=options or TaskOptions(),
    )
