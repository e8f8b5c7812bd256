"""
Sub-agent delegation for the switchyard runner.

A sub-agent call is a tool call whose name matches a `SubAgentRef` of the
calling manifest. The child runs its own loop in-process with its own state
id; the parent blocks on it and receives its output as the tool result.
"""

from __future__ import annotations

from pydantic import ValidationError

from ..agents.errors import (
    AgentCancelledError,
    AgentStateCorruptionError,
    HookExecutionError,
    InvalidAgentStateError,
    SubAgentExecutionError,
)
from ..agents.manifest import SubAgentArgs, SubAgentRef
from ..agents.state import AgentState, ToolExecutionRecord
from ..agents.suspension import SuspensionStack
from ..agents.types import AgentRunResult
from ..errors import AppError
from ..llms.types import Message, ToolCall
from ..storage.models import json_dumps
from .runner_types import AgentRunState, _RunHandle


class RunnerOrchestrationMixin:
    """Starts, resumes and reports on child agent runs."""

    async def _start_sub_agent(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        call: ToolCall,
        ref: SubAgentRef,
    ) -> ToolExecutionRecord | SuspensionStack:
        """
        Run a fresh child agent for one sub-agent tool call.

        Args:
            handle: Root run handle.
            run: Parent loop state.
            call: Sub-agent tool call issued by the parent's model.
            ref: Sub-agent reference matching `call.tool_name`.

        Returns:
            Tool execution record for the parent, or the prepended
            suspension stack when the child suspends.

        Raises:
            SubAgentExecutionError: If the child run fails.
            AgentCancelledError: If the child run is cancelled.
        """
        try:
            args = SubAgentArgs.model_validate(dict(call.arguments))
        except ValidationError as e:
            return self._failed_record(call, f"Invalid sub-agent arguments: {e}")

        child_manifest = self.registry.resolve(ref)
        timeout_ms = (
            run.manifest.sub_agent_timeout_ms
            or child_manifest.timeout_ms
            or self.config.agent_timeout_ms
        )
        child = self._new_run(
            child_manifest,
            state_id=self._new_id("state"),
            messages=[Message(role="user", content=args.prompt)],
            root_manifest_id=run.root_manifest_id,
            timeout_ms=timeout_ms,
            context={**run.context, **args.context},
            user_id=run.user_id,
            parent=run,
            parent_tool_call_id=call.id,
        )
        child.lock_owner = await self._run_lock.acquire(child.state_id)
        await self._persist(child, "running")
        run.pending_sub_agents[call.id] = child.state_id
        run.child_state_ids.append(child.state_id)

        try:
            await self._dispatch_sub_agent_hook(
                run,
                "on_sub_agent_start",
                child_state_id=child.state_id,
                child_manifest_id=child_manifest.id,
                tool_call_id=call.id,
            )
        except HookExecutionError as e:
            await self._persist(child, "error", error=e.to_dict())
            if child.lock_owner is not None:
                await self._run_lock.release(child.state_id, child.lock_owner)
            run.pending_sub_agents.pop(call.id, None)
            return self._failed_record(call, e.message)

        result = await self._run_to_result(handle, child, resumed=False, persisted=True)
        return await self._handle_child_result(handle, run, call, child_manifest.id, result)

    async def _resume_sub_agent(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        call: ToolCall,
    ) -> ToolExecutionRecord | SuspensionStack:
        """
        Continue the child recorded for `call` in `run.pending_sub_agents`.

        A terminal child yields its persisted result. A suspended child is
        resumed when the parent carries a resume directive; otherwise its
        suspension is propagated again unchanged.
        """
        child_state_id = run.pending_sub_agents[call.id]
        state = await self._states.load(child_state_id)
        if state is None:
            raise SubAgentExecutionError(
                f"Sub-agent state '{child_state_id}' is missing or expired",
                metadata={"state_id": run.state_id, "child_state_id": child_state_id},
            )

        if state.status == "suspended":
            if state.suspension_stack is None:
                raise SubAgentExecutionError(
                    f"Suspended sub-agent state '{child_state_id}' has no suspension stack"
                )
            directive = run.resume_directive
            if directive is None:
                return state.suspension_stack.prepend(self._own_entry(run, call.id))
            owner = await self._run_lock.acquire(child_state_id)
            if owner is None:
                raise InvalidAgentStateError(
                    f"Sub-agent state '{child_state_id}' is already running"
                )
            run.resume_directive = None
            child = self._run_from_state(
                state,
                directive=directive,
                ancestors=(*run.ancestor_ids, run.state_id),
            )
            child.lock_owner = owner
            result = await self._run_to_result(handle, child, resumed=True)
        elif state.is_terminal:
            result = self._result_from_state(state)
        else:
            raise InvalidAgentStateError(
                f"Sub-agent state '{child_state_id}' is still running",
                metadata={"state_id": run.state_id, "child_state_id": child_state_id},
            )
        return await self._handle_child_result(handle, run, call, state.manifest_id, result)

    async def _handle_child_result(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        call: ToolCall,
        child_manifest_id: str,
        result: AgentRunResult,
    ) -> ToolExecutionRecord | SuspensionStack:
        hook_args = {
            "child_state_id": result.state_id,
            "child_manifest_id": child_manifest_id,
            "tool_call_id": call.id,
        }

        if result.kind == "complete":
            run.pending_sub_agents.pop(call.id, None)
            output = (
                json_dumps(result.structured_output)
                if result.structured_output is not None
                else (result.output or "")
            )
            try:
                await self._dispatch_sub_agent_hook(run, "on_sub_agent_complete", **hook_args)
            except HookExecutionError as e:
                return self._failed_record(call, e.message)
            return ToolExecutionRecord(
                tool_name=call.tool_name,
                tool_call_id=call.id,
                success=True,
                output=output,
            )

        if result.kind == "suspended":
            if result.suspension_stack is None:
                raise AgentStateCorruptionError(
                    f"Suspended sub-agent state '{result.state_id}' has no suspension stack",
                    metadata={"child_state_id": result.state_id, "tool_call_id": call.id},
                )
            stack = result.suspension_stack.prepend(self._own_entry(run, call.id))
            try:
                await self._dispatch_sub_agent_hook(
                    run,
                    "on_sub_agent_suspend",
                    data={"approval_ids": list(stack.approval_ids())},
                    **hook_args,
                )
            except HookExecutionError as e:
                child_state = await self._states.load(result.state_id)
                if child_state is not None and child_state.status == "suspended":
                    await self._cancel_suspended_tree(child_state, e.message)
                run.pending_sub_agents.pop(call.id, None)
                return self._failed_record(call, e.message)
            return stack

        run.pending_sub_agents.pop(call.id, None)
        if result.kind == "cancelled":
            reason = result.cancel_reason or "Sub-agent cancelled"
            await self._dispatch_sub_agent_hook(
                run, "on_sub_agent_cancelled", data={"reason": reason}, **hook_args
            )
            raise AgentCancelledError(
                reason,
                metadata={"state_id": run.state_id, "child_state_id": result.state_id},
            )

        error = result.error
        payload = error.to_dict() if error is not None else {}
        await self._dispatch_sub_agent_hook(run, "on_sub_agent_error", data=payload, **hook_args)
        raise SubAgentExecutionError(
            f"Sub-agent '{child_manifest_id}' failed: "
            f"{error.message if error is not None else 'unknown error'}",
            metadata={
                "state_id": run.state_id,
                "child_state_id": result.state_id,
                "child_error": payload,
            },
        )

    def _result_from_state(self, state: AgentState) -> AgentRunResult:
        """Rebuild the run result of a child that already reached a terminal status."""
        result = state.result or {}
        error = None
        if state.status == "error":
            payload = state.error or {}
            error = AppError(
                str(payload.get("message") or "Sub-agent failed"),
                code=payload.get("code") or "InternalServer",
            )
        return AgentRunResult(
            kind=state.status,
            state_id=state.id,
            step_number=state.step_number,
            steps=list(state.steps),
            messages=list(state.messages),
            output=result.get("output"),
            structured_output=result.get("structured_output"),
            error=error,
            cancel_reason=state.cancel_reason,
        )

    def _failed_record(self, call: ToolCall, error: str) -> ToolExecutionRecord:
        return ToolExecutionRecord(
            tool_name=call.tool_name,
            tool_call_id=call.id,
            success=False,
            error=error,
        )
