"""
Shared runtime types for switchyard runner internals.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import AsyncIterator

from ..agents.hooks import AgentHooks
from ..agents.manifest import AgentManifest
from ..agents.state import AgentState, AgentStatus, ParentAgentContext, StepResult
from ..agents.suspension import ApprovalResolution, SuspensionStack
from ..agents.types import AgentRunEvent, AgentRunResult
from ..llms.types import JSONObject, Message
from ..storage.models import now_ms
from ..tools import ToolRegistry
from .cancellation import CancellationWatch


_RUN_END = object()


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    """
    Runtime configuration for runner behavior and safety defaults.

    Attributes:
        agent_state_ttl_s: Lifetime of persisted agent states.
        agent_timeout_ms: Default wall-clock budget for one run.
        agent_run_lock_ttl_s: Lifetime of a run lock between refreshes.
        cancellation_signal_ttl_s: Lifetime of a cancellation marker.
        cancellation_poll_interval_ms: Minimum delay between signal reads.
        emit_stream_events: Publish run events on the stream handle.
        max_steps_default: Step ceiling for manifests without `stop_when`.
    """

    agent_state_ttl_s: float = 86_400
    agent_timeout_ms: int = 300_000
    agent_run_lock_ttl_s: float = 600
    cancellation_signal_ttl_s: float = 3_600
    cancellation_poll_interval_ms: int = 1_000
    emit_stream_events: bool = True
    max_steps_default: int = 20


@dataclass(frozen=True, slots=True)
class ResumeDirective:
    """Approval decisions travelling down the hierarchy to the leaf state."""

    leaf_state_id: str
    resolutions: dict[str, ApprovalResolution]


class _Suspend(Exception):
    """Internal control-flow signal carrying the stack of a suspending run."""

    def __init__(self, stack: SuspensionStack) -> None:
        super().__init__("run suspended")
        self.stack = stack


@dataclass(slots=True)
class AgentRunState:
    """
    Mutable state owned by exactly one running loop.

    Destroyed when the loop returns; its shape is serialized into
    `AgentState` at persistence boundaries.
    """

    state_id: str
    manifest: AgentManifest
    hooks: AgentHooks
    root_manifest_id: str
    tools: ToolRegistry
    timeout_ms: int
    watch: CancellationWatch
    messages: list[Message] = field(default_factory=list)
    steps: list[StepResult] = field(default_factory=list)
    step_number: int = 0
    output_validation_retries: int = 0
    previous_elapsed_ms: int = 0
    start_time_ms: int = field(default_factory=now_ms)
    started_at_s: float = field(default_factory=time.monotonic)
    pending_sub_agents: dict[str, str] = field(default_factory=dict)
    child_state_ids: list[str] = field(default_factory=list)
    parent_context: ParentAgentContext | None = None
    ancestor_ids: tuple[str, ...] = ()
    context: JSONObject = field(default_factory=dict)
    user_id: str | None = None
    created_at_ms: int = field(default_factory=now_ms)
    resume_directive: ResumeDirective | None = None
    lock_owner: str | None = None

    def elapsed_ms(self) -> int:
        """Execution time across every resume of this run."""
        return self.previous_elapsed_ms + int((time.monotonic() - self.started_at_s) * 1000)

    def to_state(self, status: AgentStatus, **fields) -> AgentState:
        return AgentState(
            id=self.state_id,
            root_manifest_id=self.root_manifest_id,
            manifest_id=self.manifest.id,
            manifest_version=self.manifest.version,
            status=status,
            messages=list(self.messages),
            steps=list(self.steps),
            step_number=self.step_number,
            parent_context=self.parent_context,
            child_state_ids=list(self.child_state_ids),
            pending_sub_agents=dict(self.pending_sub_agents),
            context=dict(self.context),
            timeout_ms=self.timeout_ms,
            elapsed_execution_ms=self.elapsed_ms(),
            output_validation_retries=self.output_validation_retries,
            user_id=self.user_id,
            created_at_ms=self.created_at_ms,
            **fields,
        )


class _RunHandle:
    """
    Concrete async run handle used by the runner implementation.

    The handle is single-consumer for events. `cancel()` only requests
    cancellation: the run observes the flag at its next step boundary.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._result_fut: asyncio.Future[AgentRunResult] = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task[None] | None = None
        self._events_consumed = False
        self._cancel_reason: str | None = None

    def attach_task(self, task: asyncio.Task[None]) -> None:
        """
        Attach the underlying execution task.

        Args:
            task: Background task executing the run loop.
        """
        self._task = task

    @property
    def events(self) -> AsyncIterator[AgentRunEvent]:
        """
        Return run event stream.

        Raises:
            RuntimeError: If events stream is requested by multiple consumers.
        """
        if self._events_consumed:
            raise RuntimeError("Run handle events support a single consumer")
        self._events_consumed = True
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[AgentRunEvent]:
        while True:
            item = await self._queue.get()
            if item is _RUN_END:
                break
            yield item  # type: ignore[misc]

    async def emit(self, event: AgentRunEvent) -> None:
        await self._queue.put(event)

    async def cancel(self, reason: str = "Cancelled by caller") -> None:
        """Request cooperative cancellation at the next step boundary."""
        if self._cancel_reason is None:
            self._cancel_reason = reason

    def is_cancel_requested(self) -> bool:
        return self._cancel_reason is not None

    @property
    def cancel_reason(self) -> str | None:
        return self._cancel_reason

    async def await_result(self) -> AgentRunResult:
        """
        Await terminal run result.

        Returns:
            `AgentRunResult` of kind complete, suspended, error or cancelled.
        """
        return await self._result_fut

    async def set_result(self, result: AgentRunResult) -> None:
        """
        Set terminal result and close event stream.

        Args:
            result: Final result payload.
        """
        if not self._result_fut.done():
            self._result_fut.set_result(result)
        await self._queue.put(_RUN_END)

    async def set_exception(self, exc: BaseException) -> None:
        """
        Set terminal exception and close event stream.

        Args:
            exc: Exception to propagate from `await_result()`.
        """
        if not self._result_fut.done():
            self._result_fut.set_exception(exc)
        await self._queue.put(_RUN_END)
