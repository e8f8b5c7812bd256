"""
Public runner API and lifecycle entrypoints.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Sequence

from ..agents.errors import (
    AgentExecutionError,
    AgentStateCorruptionError,
    InvalidAgentStateError,
    ManifestNotFoundError,
)
from ..agents.manifest import AgentManifest
from ..agents.registry import ManifestRegistry
from ..agents.state_store import AgentStateStore
from ..agents.suspension import ApprovalResolution, validate_resolutions
from ..agents.types import AgentRunResult, CancelAgentResult, RunOptions
from ..llms.types import CompletionFn, JSONObject, Message
from ..storage.kv.base import KeyValueStore
from .cancellation import CancellationMonitor, RunLock
from .runner_types import ResumeDirective, RunnerConfig, _RunHandle
from .telemetry import SafeTelemetry, TelemetrySink


class RunnerAPIMixin:
    """
    Public API surface for running, resuming and cancelling agents.

    This mixin owns dependency wiring (state store, cancellation, run lock,
    telemetry) and exposes the stable entrypoints used by applications and
    by the task layer's resume handler.
    """

    def __init__(
        self,
        *,
        registry: ManifestRegistry,
        completion: CompletionFn,
        kv: KeyValueStore | None = None,
        telemetry: TelemetrySink | None = None,
        config: RunnerConfig | None = None,
    ) -> None:
        """
        Initialize a runner with its collaborators.

        Args:
            registry: Manifest registry resolving agents and sub-agents.
            completion: Model-completion collaborator.
            kv: Key-value backend for states, cancellation markers and run
                locks. When `None`, the backend is resolved from environment
                on first use and owned by the runner.
            telemetry: Telemetry sink for counters, spans and events.
            config: Runner configuration. Defaults to `RunnerConfig()`.
        """
        self.config = config or RunnerConfig()
        self.registry = registry
        self._completion = completion
        self._kv = kv
        self._owns_kv = kv is None
        self._telemetry = SafeTelemetry(telemetry)
        self._active_handles: dict[str, _RunHandle] = {}
        self._states: AgentStateStore | None = None
        self._cancellation: CancellationMonitor | None = None
        self._run_lock: RunLock | None = None
        if kv is not None:
            self._wire(kv)

    def _wire(self, kv: KeyValueStore) -> None:
        self._states = AgentStateStore(kv, ttl_s=self.config.agent_state_ttl_s)
        self._cancellation = CancellationMonitor(
            kv,
            poll_interval_ms=self.config.cancellation_poll_interval_ms,
            signal_ttl_s=self.config.cancellation_signal_ttl_s,
        )
        self._run_lock = RunLock(kv, ttl_s=self.config.agent_run_lock_ttl_s)

    async def _ensure_kv(self) -> KeyValueStore:
        """
        Ensure the key-value backend is initialized and ready.

        Returns:
            Ready-to-use key-value store.
        """
        if self._kv is None:
            self._kv = self._create_kv_store_from_env()
            self._wire(self._kv)
        if not self._kv._is_setup:
            await self._kv.setup()
        return self._kv

    def _create_kv_store_from_env(self) -> KeyValueStore:
        from . import runner as runner_module

        return runner_module.create_kv_store_from_env()

    async def close(self) -> None:
        """Close the key-value backend when the runner created it."""
        if self._kv is not None and self._owns_kv:
            await self._kv.close()

    async def __aenter__(self) -> "RunnerAPIMixin":
        await self._ensure_kv()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ''''''''''''''''''''''''''''''''''''''
    # Run
    # ''''''''''''''''''''''''''''''''''''''

    async def run_agent(
        self,
        manifest: AgentManifest,
        input: str | Sequence[Message],
        *,
        context: JSONObject | None = None,
        options: RunOptions | None = None,
    ) -> AgentRunResult:
        """
        Execute an agent run and wait for its result.

        Args:
            manifest: Registered manifest to run.
            input: Initial user prompt or a full message list.
            context: Optional JSON run context, visible to tools.
            options: Optional state id, user id and timeout overrides.

        Returns:
            Result of kind complete, suspended, error or cancelled.

        Raises:
            ManifestNotFoundError: If `manifest` is not registered.
            InvalidAgentStateError: If `options.state_id` is already in use.
        """
        handle = await self.stream_agent(manifest, input, context=context, options=options)
        return await handle.await_result()

    async def stream_agent(
        self,
        manifest: AgentManifest,
        input: str | Sequence[Message],
        *,
        context: JSONObject | None = None,
        options: RunOptions | None = None,
    ) -> _RunHandle:
        """
        Start an agent run and return a live handle.

        The handle exposes the event stream (`handle.events`), cooperative
        cancellation (`handle.cancel()`) and the terminal result
        (`handle.await_result()`).
        """
        await self._ensure_kv()
        if not self.registry.has(manifest.id, manifest.version):
            raise ManifestNotFoundError(f"Manifest not registered: {manifest.key}")
        options = options or RunOptions()
        state_id = options.state_id or self._new_id("state")
        if options.state_id is not None and await self._states.load(state_id) is not None:
            raise InvalidAgentStateError(f"Agent state already exists: {state_id}")

        messages = (
            [Message(role="user", content=input)] if isinstance(input, str) else list(input)
        )
        run = self._new_run(
            manifest,
            state_id=state_id,
            messages=messages,
            root_manifest_id=manifest.id,
            timeout_ms=options.timeout_ms or manifest.timeout_ms or self.config.agent_timeout_ms,
            context=context,
            user_id=options.user_id,
        )
        run.lock_owner = await self._run_lock.acquire(state_id)
        if run.lock_owner is None:
            raise InvalidAgentStateError(f"Agent state '{state_id}' is already running")
        return self._spawn(run, resumed=False)

    def _spawn(self, run, *, resumed: bool) -> _RunHandle:
        handle = _RunHandle()
        task = asyncio.create_task(self._execute(handle, run, resumed=resumed))
        handle.attach_task(task)
        return handle

    # ''''''''''''''''''''''''''''''''''''''
    # Resume
    # ''''''''''''''''''''''''''''''''''''''

    async def resume_agent(
        self,
        state_id: str,
        resolutions: Sequence[ApprovalResolution],
        *,
        options: RunOptions | None = None,
    ) -> AgentRunResult:
        """
        Resume a suspended root state with one decision per pending approval.

        Args:
            state_id: Root state id returned by the suspending run.
            resolutions: Approval decisions for the leaf suspensions.
            options: Reserved for per-call overrides; `timeout_ms` replaces
                the stored budget when set.

        Returns:
            Result of the resumed run.

        Raises:
            AgentStateNotFoundError: If the state is missing or expired.
            InvalidAgentStateError: If the state is not suspended or is
                already being resumed.
            SuspensionValidationError: If `resolutions` do not match the
                pending approvals exactly.
        """
        handle = await self.resume_handle(state_id, resolutions, options=options)
        return await handle.await_result()

    async def resume_handle(
        self,
        state_id: str,
        resolutions: Sequence[ApprovalResolution],
        *,
        options: RunOptions | None = None,
    ) -> _RunHandle:
        """
        Validate resolutions, take the run lock and return a live handle.

        Nothing is written when validation fails.
        """
        await self._ensure_kv()
        state = await self._states.require(state_id)
        self._check_resumable(state)
        by_id = validate_resolutions(state.suspension_stack, resolutions)
        owner = await self._run_lock.acquire(state_id)
        if owner is None:
            raise InvalidAgentStateError(f"Agent state '{state_id}' is already running")
        try:
            state = await self._states.require(state_id)
            self._check_resumable(state)
            run = self._run_from_state(
                state,
                directive=ResumeDirective(
                    leaf_state_id=state.suspension_stack.leaf.state_id,
                    resolutions=by_id,
                ),
            )
            if options is not None and options.timeout_ms is not None:
                run.timeout_ms = options.timeout_ms
        except BaseException:
            await self._run_lock.release(state_id, owner)
            raise
        run.lock_owner = owner
        return self._spawn(run, resumed=True)

    def _check_resumable(self, state) -> None:
        if state.status != "suspended":
            raise InvalidAgentStateError(
                f"Agent state '{state.id}' is {state.status}, expected suspended",
                metadata={"state_id": state.id, "status": state.status},
            )
        if state.parent_context is not None:
            raise InvalidAgentStateError(
                f"Agent state '{state.id}' belongs to a sub-agent; resume its root "
                f"state '{state.parent_context.parent_state_id}' instead"
            )
        if state.suspension_stack is None:
            raise AgentStateCorruptionError(
                f"Suspended state '{state.id}' has no suspension stack"
            )

    # ''''''''''''''''''''''''''''''''''''''
    # Reply
    # ''''''''''''''''''''''''''''''''''''''

    async def reply_agent(
        self,
        state_id: str,
        message: str,
        *,
        options: RunOptions | None = None,
    ) -> AgentRunResult:
        """
        Continue a completed root state with a follow-up user message.

        The run keeps its state id, history and step numbering; the message
        is appended as a `user` turn and the loop runs again.

        Raises:
            AgentStateNotFoundError: If the state is missing or expired.
            InvalidAgentStateError: If the state is not complete, belongs to
                a sub-agent, or is already running.
        """
        handle = await self.reply_handle(state_id, message, options=options)
        return await handle.await_result()

    async def reply_handle(
        self,
        state_id: str,
        message: str,
        *,
        options: RunOptions | None = None,
    ) -> _RunHandle:
        """Take the run lock on a completed state and return a live handle."""
        await self._ensure_kv()
        state = await self._states.require(state_id)
        self._check_repliable(state)
        owner = await self._run_lock.acquire(state_id)
        if owner is None:
            raise InvalidAgentStateError(f"Agent state '{state_id}' is already running")
        try:
            state = await self._states.require(state_id)
            self._check_repliable(state)
            run = self._run_from_state(state, directive=None)
            run.messages.append(Message(role="user", content=message))
            if options is not None and options.timeout_ms is not None:
                run.timeout_ms = options.timeout_ms
        except BaseException:
            await self._run_lock.release(state_id, owner)
            raise
        run.lock_owner = owner
        return self._spawn(run, resumed=True)

    def _check_repliable(self, state) -> None:
        if state.status != "complete":
            raise InvalidAgentStateError(
                f"Agent state '{state.id}' is {state.status}, expected complete",
                metadata={"state_id": state.id, "status": state.status},
            )
        if state.parent_context is not None:
            raise InvalidAgentStateError(
                f"Agent state '{state.id}' belongs to a sub-agent; reply to its root "
                f"state '{state.parent_context.parent_state_id}' instead"
            )

    # ''''''''''''''''''''''''''''''''''''''
    # Cancel
    # ''''''''''''''''''''''''''''''''''''''

    async def cancel_agent(
        self, state_id: str, reason: str = "Cancelled by caller"
    ) -> CancelAgentResult:
        """
        Cancel a run by state id, wherever it executes.

        Outcomes:
            - `cancelled`: a suspended tree was marked cancelled directly.
            - `signalled`: a running run was asked to stop at its next step.
            - `marked_failed`: a `running` state without a live run lock was
              marked failed (its process is presumed gone).
            - `already_cancelled`: the state was cancelled before.

        Raises:
            AgentStateNotFoundError: If the state is missing or expired.
            InvalidAgentStateError: If the state already completed or failed.
        """
        await self._ensure_kv()
        state = await self._states.require(state_id)

        if state.status == "cancelled":
            return CancelAgentResult(state_id=state_id, outcome="already_cancelled")
        if state.status in ("complete", "error"):
            raise InvalidAgentStateError(
                f"Agent state '{state_id}' is already {state.status}",
                metadata={"state_id": state_id, "status": state.status},
            )
        if state.status == "suspended":
            await self._cancel_suspended_tree(state, reason)
            self._telemetry.counter("agent.cancellations.total", attributes={"outcome": "cancelled"})
            return CancelAgentResult(state_id=state_id, outcome="cancelled")

        handle = self._active_handles.get(state_id)
        if handle is not None:
            await handle.cancel(reason)
        if handle is not None or await self._run_lock.is_held(state_id):
            await self._cancellation.request(state_id, reason)
            self._telemetry.counter("agent.cancellations.total", attributes={"outcome": "signalled"})
            return CancelAgentResult(state_id=state_id, outcome="signalled")

        error = AgentExecutionError(
            "Run lock expired while running; process presumed crashed",
            metadata={"state_id": state_id},
        )
        await self._states.save(
            dataclasses.replace(state, status="error", error=error.to_dict())
        )
        self._telemetry.counter("agent.cancellations.total", attributes={"outcome": "marked_failed"})
        return CancelAgentResult(state_id=state_id, outcome="marked_failed")

