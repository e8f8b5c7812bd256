"""
Task worker: reserves queue jobs and runs their handlers.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import time
from typing import Any, Sequence

from ..agents.state import json_value_from_tool_result
from ..core.telemetry import SafeTelemetry, TelemetrySink
from ..errors import AppError, BadRequestError, error_from_exception
from ..storage.models import now_ms
from .definition import TaskDefinition
from .models import QueueJob, TaskRecord
from .queue.base import QueueClient
from .queue.registry import QueueRegistry
from .repo import TasksRepo


@dataclasses.dataclass(frozen=True, slots=True)
class TaskOutcome:
    task_id: str
    outcome: str
    error: AppError | None = None


class TaskWorker:
    """
    Processes jobs for a fixed set of task definitions.

    Each batch reserves up to `batch_size` jobs per queue, marks their
    records `running` (incrementing `attempts`) in one `bulk_update`, runs
    the handlers sequentially and writes every final status in a second
    `bulk_update`. Failed attempts are retried with exponential backoff
    until `max_attempts`; `BadRequest` failures are never retried.
    """

    def __init__(
        self,
        *,
        repo: TasksRepo,
        queues: QueueRegistry,
        tasks: Sequence[TaskDefinition[Any]],
        telemetry: TelemetrySink | None = None,
        batch_size: int = 10,
        poll_interval_s: float = 0.5,
    ) -> None:
        if batch_size < 1:
            raise BadRequestError("batch_size must be >= 1")
        self.repo = repo
        self.queues = queues
        self.batch_size = batch_size
        self.poll_interval_s = poll_interval_s
        self._definitions: dict[str, TaskDefinition[Any]] = {t.name: t for t in tasks}
        self._queue_names: list[str] = sorted({t.queue_name for t in tasks})
        self._telemetry = SafeTelemetry(telemetry)

    async def run_once(self) -> list[TaskOutcome]:
        """Process at most one batch from every queue. Returns per-task outcomes."""
        outcomes: list[TaskOutcome] = []
        for queue_name in self._queue_names:
            client = await self.queues.get(queue_name)
            outcomes.extend(await self._process_batch(client))
        return outcomes

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until `stop` is set, sleeping `poll_interval_s` when idle."""
        while not stop.is_set():
            outcomes = await self.run_once()
            if outcomes:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval_s)
            except asyncio.TimeoutError:
                pass

    async def _process_batch(self, client: QueueClient) -> list[TaskOutcome]:
        reserved: list[tuple[QueueJob, TaskRecord]] = []
        for _ in range(self.batch_size):
            job = await client.reserve()
            if job is None:
                break
            task_id = job.data.get("task_id")
            record = await self.repo.get(task_id) if isinstance(task_id, str) else None
            if record is None or record.status not in ("pending", "delayed"):
                await client.complete(job.id)
                continue
            reserved.append((job, record))
        if not reserved:
            return []

        started = now_ms()
        running = [
            dataclasses.replace(
                record,
                status="running",
                attempts=record.attempts + 1,
                started_at_ms=started,
            )
            for _, record in reserved
        ]
        await self.repo.bulk_update(
            [
                (r.id, {"status": r.status, "attempts": r.attempts, "started_at_ms": started})
                for r in running
            ]
        )

        outcomes: list[TaskOutcome] = []
        updates: list[tuple[str, dict[str, Any]]] = []
        for (job, _), record in zip(reserved, running):
            outcome, patch = await self._process(client, job, record)
            outcomes.append(outcome)
            updates.append((record.id, patch))
        await self.repo.bulk_update(updates)
        return outcomes

    async def _process(
        self, client: QueueClient, job: QueueJob, record: TaskRecord
    ) -> tuple[TaskOutcome, dict[str, Any]]:
        definition = self._definitions.get(record.task_name)
        span = self._telemetry.start_span(
            "tasks.process",
            attributes={
                "task_id": record.id,
                "task_name": record.task_name,
                "attempt": record.attempts,
            },
        )
        started_s = time.time()
        try:
            if definition is None:
                raise BadRequestError(
                    f"No handler registered for task '{record.task_name}'",
                    metadata={"task_id": record.id},
                )
            payload = definition.validate_payload(record.payload)
            value = definition.handler(payload, record)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            error = error_from_exception(e)
            now = now_ms()
            retry = (
                definition is not None
                and error.code != "BadRequest"
                and record.attempts < record.max_attempts
            )
            if retry:
                delay = definition.options.retry_delay_ms(record.attempts)
                await client.fail(job.id, retry_delay_ms=delay)
                patch: dict[str, Any] = {
                    "status": "delayed" if delay > 0 else "pending",
                    "delay_until_ms": now + delay if delay > 0 else None,
                    "error": error.to_dict(),
                }
                outcome = TaskOutcome(record.id, "retry", error)
            else:
                await client.fail(job.id)
                patch = {"status": "failed", "failed_at_ms": now, "error": error.to_dict()}
                outcome = TaskOutcome(record.id, "failed", error)
            self._telemetry.end_span(span, status="error", error=error.message)
        else:
            await client.complete(job.id)
            patch = {
                "status": "complete",
                "completed_at_ms": now_ms(),
                "result": json_value_from_tool_result(value),
                "error": None,
            }
            outcome = TaskOutcome(record.id, "complete")
            self._telemetry.end_span(span, status="ok")

        self._telemetry.counter(
            "tasks.processed.total",
            attributes={"task_name": record.task_name, "outcome": outcome.outcome},
        )
        self._telemetry.histogram(
            "tasks.process.duration_ms",
            value=(time.time() - started_s) * 1000.0,
            attributes={"task_name": record.task_name, "outcome": outcome.outcome},
        )
        return outcome, patch
