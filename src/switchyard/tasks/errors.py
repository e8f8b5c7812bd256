"""
Task-layer error factories.

Task failures reuse the shared `AppError` taxonomy instead of a dedicated
exception family; these helpers keep messages and metadata consistent.
"""

from __future__ import annotations

from typing import Any

from ..errors import BadRequestError, InternalServerError, NotFoundError


def task_not_found_error(task_id: str) -> NotFoundError:
    return NotFoundError(f"Task not found: {task_id}", metadata={"task_id": task_id})


def invalid_task_state_error(task_id: str, status: str, operation: str) -> BadRequestError:
    """
    Build the error for an operation the task's current status forbids.

    Args:
        task_id: Task identifier.
        status: Current task status.
        operation: Rejected operation name, e.g. `"cancel"`.
    """
    return BadRequestError(
        f"Cannot {operation} task '{task_id}' in status '{status}'",
        metadata={"task_id": task_id, "status": status, "operation": operation},
    )


def task_operation_error(
    operation: str, message: str, *, metadata: dict[str, Any] | None = None
) -> InternalServerError:
    return InternalServerError(
        f"Task {operation} failed: {message}",
        metadata={"operation": operation, **(metadata or {})},
    )
