"""
Core execution loop for the switchyard runner.
"""

from __future__ import annotations

import asyncio
import time

from ..agents.errors import (
    AgentCancelledError,
    AgentTimeoutError,
    FatalToolError,
    HookExecutionError,
    OutputValidationError,
)
from ..agents.state import StepResult, ToolExecutionRecord, json_value_from_tool_result
from ..agents.suspension import SuspensionStack, ToolApprovalSuspension
from ..agents.types import AgentRunResult
from ..errors import AppError, error_from_exception
from ..llms.types import JSONObject, LLMResponse, ToolCall
from ..tools import ToolContext, ToolError, ToolResult
from .output_validation import corrective_message, validate_output
from .runner_internals import find_pending_tool_calls
from .runner_types import AgentRunState, _RunHandle, _Suspend
from .stop_conditions import should_stop


class RunnerExecutionMixin:
    """Implements the step loop, tool execution, and terminal persistence."""

    async def _execute(self, handle: _RunHandle, run: AgentRunState, *, resumed: bool) -> None:
        """
        Execute one root run end-to-end and resolve the run handle.

        Args:
            handle: Active run handle that receives events and terminal result.
            run: Loop state for the root agent.
            resumed: Whether the run continues a suspended state.

        Returns:
            `None`. Terminal state is written into `handle`.
        """
        self._active_handles[run.state_id] = handle
        try:
            result = await self._run_to_result(handle, run, resumed=resumed)
        except asyncio.CancelledError:
            await handle.set_exception(AgentCancelledError("Run task cancelled"))
            return
        except Exception as e:
            await handle.set_exception(e)
            return
        finally:
            self._active_handles.pop(run.state_id, None)
        await handle.set_result(result)

    async def _run_to_result(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        *,
        resumed: bool,
        persisted: bool = False,
    ) -> AgentRunResult:
        """
        Drive one agent (root or child) until it reaches a stopping status.

        Every outcome is persisted before it is returned. Exceptions escape
        only when persistence itself fails.

        Args:
            handle: Root run handle; events of child runs are published on it.
            run: Loop state.
            resumed: Whether the run continues a suspended state.
            persisted: Whether the caller already wrote the `running` state.

        Returns:
            Result of kind complete, suspended, error or cancelled.
        """
        span = self._telemetry.start_span(
            "agent.run",
            attributes={
                "state_id": run.state_id,
                "manifest_id": run.manifest.id,
                "manifest_version": run.manifest.version,
                "resumed": resumed,
                "depth": len(run.ancestor_ids),
            },
        )
        started_s = time.time()
        kind = "error"
        span_error: str | None = None
        try:
            try:
                if not persisted:
                    await self._persist(run, "running")
                await self._emit(handle, run, "run_resumed" if resumed else "run_started")
                await self._dispatch_own_hook(
                    run, "on_agent_resume" if resumed else "on_agent_start"
                )
                result = await self._drive(handle, run)
            except _Suspend as s:
                result = await self._finish_suspended(handle, run, s.stack)
            except AgentCancelledError as e:
                result = await self._finish_cancelled(handle, run, e.message)
            except asyncio.CancelledError:
                await self._finish_cancelled(handle, run, "Run task cancelled")
                raise
            except Exception as e:
                result = await self._finish_error(handle, run, error_from_exception(e))
            kind = result.kind
            if result.error is not None:
                span_error = result.error.message
            return result
        except Exception as e:
            span_error = str(e)
            raise
        finally:
            if run.lock_owner is not None:
                try:
                    await self._run_lock.release(run.state_id, run.lock_owner)
                except Exception as e:
                    self._telemetry.counter(
                        "agent.run_lock.release_failures.total",
                        attributes={"error_type": type(e).__name__},
                    )
            duration_ms = (time.time() - started_s) * 1000.0
            self._telemetry.end_span(
                span,
                status="ok" if kind in ("complete", "suspended") else "error",
                error=span_error,
                attributes={"result_kind": kind, "steps": run.step_number},
            )
            self._telemetry.counter(
                "agent.runs.total",
                attributes={"manifest_id": run.manifest.id, "result_kind": kind},
            )
            self._telemetry.histogram(
                "agent.run.duration_ms",
                value=duration_ms,
                attributes={"manifest_id": run.manifest.id, "result_kind": kind},
            )

    # ''''''''''''''''''''''''''''''''''''''
    # Step loop
    # ''''''''''''''''''''''''''''''''''''''

    async def _drive(self, handle: _RunHandle, run: AgentRunState) -> AgentRunResult:
        while True:
            reason = handle.cancel_reason if handle.is_cancel_requested() else await run.watch.poll()
            if reason is not None:
                raise AgentCancelledError(reason)
            if run.elapsed_ms() > run.timeout_ms:
                raise AgentTimeoutError(
                    f"Agent run exceeded timeout of {run.timeout_ms} ms",
                    metadata={"state_id": run.state_id, "timeout_ms": run.timeout_ms},
                )
            if run.lock_owner is not None:
                await self._run_lock.refresh(run.state_id, run.lock_owner)

            run.step_number += 1
            await self._emit(handle, run, "step_started")

            settled, stack = await self._settle_pending_tool_calls(handle, run)
            if stack is not None:
                run.steps.append(StepResult(step_number=run.step_number, tool_results=settled))
                await self._emit(handle, run, "step_finished")
                raise _Suspend(stack)

            response = await self._call_completion(run)

            approvals = self._approval_requests(run, response)
            if approvals:
                run.messages.append(self._assistant_message(response, approvals))
                self._record_step(run, response, settled)
                await self._emit(
                    handle,
                    run,
                    "step_finished",
                    message="Awaiting tool approval",
                    data={"approval_ids": [a.approval_id for a in approvals]},
                )
                raise _Suspend(SuspensionStack.for_leaf(self._own_entry(run), approvals))

            output_tool = run.manifest.output_tool
            output_call = None
            if output_tool is not None:
                output_call = next(
                    (c for c in response.tool_calls if c.tool_name == output_tool.name), None
                )
            if output_tool is not None and output_call is not None:
                run.messages.append(self._assistant_message(response))
                self._record_step(run, response, settled)
                outcome = validate_output(output_tool, output_call.arguments)
                if outcome.valid:
                    await self._emit(handle, run, "step_finished")
                    return await self._finish_complete(
                        handle, run, output=response.text or None, structured_output=outcome.value
                    )
                run.output_validation_retries += 1
                await self._emit(
                    handle,
                    run,
                    "step_finished",
                    message="Output tool arguments failed validation",
                    data={"retries": run.output_validation_retries},
                )
                if run.output_validation_retries > output_tool.max_retries:
                    raise OutputValidationError(
                        f"Output tool '{output_tool.name}' failed validation "
                        f"{run.output_validation_retries} times: {outcome.error}",
                        metadata={"state_id": run.state_id},
                    )
                run.messages.append(corrective_message(output_tool, outcome.error or ""))
                continue

            run.messages.append(self._assistant_message(response))
            executed, stack = await self._execute_tool_calls(handle, run, response.tool_calls)
            self._record_step(run, response, [*settled, *executed])
            await self._emit(handle, run, "step_finished")
            if stack is not None:
                raise _Suspend(stack)

            if should_stop(
                run.manifest,
                run.steps,
                run.step_number,
                response.finish_reason,
                default_max_steps=self.config.max_steps_default,
            ):
                return await self._finish_complete(handle, run, output=response.text, structured_output=None)

    def _record_step(
        self, run: AgentRunState, response: LLMResponse, records: list[ToolExecutionRecord]
    ) -> None:
        run.steps.append(
            StepResult(
                step_number=run.step_number,
                text=response.text,
                tool_calls=list(response.tool_calls),
                tool_results=list(records),
                finish_reason=response.finish_reason,
            )
        )

    async def _call_completion(self, run: AgentRunState) -> LLMResponse:
        tool_choice = "required" if run.manifest.output_tool is not None else "auto"
        span = self._telemetry.start_span(
            "agent.llm.call",
            attributes={
                "state_id": run.state_id,
                "manifest_id": run.manifest.id,
                "step": run.step_number,
            },
        )
        started_s = time.time()
        try:
            response = await self._completion(
                self._model_messages(run), self._tool_definitions(run), tool_choice
            )
        except Exception as e:
            self._telemetry.end_span(span, status="error", error=str(e))
            raise
        self._telemetry.end_span(
            span,
            status="ok",
            attributes={
                "finish_reason": response.finish_reason or "",
                "tool_calls": len(response.tool_calls),
                "duration_ms": (time.time() - started_s) * 1000.0,
            },
        )
        return response

    def _approval_requests(self, run: AgentRunState, response: LLMResponse) -> list[ToolApprovalSuspension]:
        output_name = run.manifest.output_tool.name if run.manifest.output_tool else None
        requests: list[ToolApprovalSuspension] = []
        for call in response.tool_calls:
            if call.tool_name == output_name or run.manifest.sub_agent_for(call.tool_name):
                continue
            if not run.tools.has(call.tool_name):
                continue
            tool = run.tools.get(call.tool_name)
            if run.manifest.tool_requires_approval(tool):
                requests.append(
                    ToolApprovalSuspension(
                        approval_id=self._new_id("approval"),
                        tool_call_id=call.id,
                        tool_name=call.tool_name,
                        tool_args=dict(call.arguments),
                        description=tool.spec.description,
                    )
                )
        return requests

    # ''''''''''''''''''''''''''''''''''''''
    # Tool execution
    # ''''''''''''''''''''''''''''''''''''''

    async def _settle_pending_tool_calls(
        self, handle: _RunHandle, run: AgentRunState
    ) -> tuple[list[ToolExecutionRecord], SuspensionStack | None]:
        """
        Resolve tool calls left open by the previous suspension.

        Approved calls are executed, denied calls receive an error result,
        and pending sub-agents are resumed. Results land in the current step.
        """
        skip = frozenset([run.manifest.output_tool.name]) if run.manifest.output_tool else frozenset()
        pending = find_pending_tool_calls(run.messages, skip_names=skip)
        if not pending.calls:
            return [], None
        decisions: dict[str, tuple[bool, str | None]] = {}
        for call in pending.calls:
            approval_id = pending.approval_ids.get(call.id)
            if approval_id is None:
                continue
            response = pending.responses.get(approval_id)
            if response is None:
                decisions[call.id] = (False, "No approval response was recorded")
            else:
                decisions[call.id] = (bool(response["approved"]), response.get("reason"))
        return await self._execute_tool_calls(handle, run, pending.calls, decisions=decisions)

    async def _execute_tool_calls(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        calls: list[ToolCall],
        *,
        decisions: dict[str, tuple[bool, str | None]] | None = None,
    ) -> tuple[list[ToolExecutionRecord], SuspensionStack | None]:
        """
        Execute tool calls sequentially in model order.

        Results are appended to history as one `tool` message. Execution
        stops at the first sub-agent that suspends; results gathered so far
        are still appended.

        Returns:
            Execution records and the suspension stack of a suspending child.
        """
        decisions = decisions or {}
        records: list[ToolExecutionRecord] = []
        stack: SuspensionStack | None = None
        for call in calls:
            if call.id in run.pending_sub_agents:
                outcome = await self._resume_sub_agent(handle, run, call)
            elif (ref := run.manifest.sub_agent_for(call.tool_name)) is not None:
                outcome = await self._start_sub_agent(handle, run, call, ref)
            elif call.id in decisions and not decisions[call.id][0]:
                reason = decisions[call.id][1]
                outcome = ToolExecutionRecord(
                    tool_name=call.tool_name,
                    tool_call_id=call.id,
                    success=False,
                    error=f"Tool call denied: {reason}" if reason else "Tool call denied",
                )
            else:
                outcome = await self._execute_tool(handle, run, call)
            if isinstance(outcome, SuspensionStack):
                stack = outcome
                break
            records.append(outcome)
        self._append_tool_results(run, records)
        return records, stack

    async def _execute_tool(
        self, handle: _RunHandle, run: AgentRunState, call: ToolCall
    ) -> ToolExecutionRecord:
        if not run.tools.has(call.tool_name):
            return ToolExecutionRecord(
                tool_name=call.tool_name,
                tool_call_id=call.id,
                success=False,
                error=f"Unknown tool '{call.tool_name}'",
            )
        tool = run.tools.get(call.tool_name)
        await self._emit(
            handle,
            run,
            "tool_started",
            data={"tool_name": call.tool_name, "tool_call_id": call.id},
        )
        span = self._telemetry.start_span(
            "agent.tool.call",
            attributes={
                "state_id": run.state_id,
                "tool_name": call.tool_name,
                "tool_call_id": call.id,
            },
        )
        ctx = ToolContext(
            state_id=run.state_id,
            manifest_id=run.manifest.id,
            tool_call_id=call.id,
            user_id=run.user_id,
            metadata=dict(run.context),
        )
        try:
            result = await run.tools.call(
                call.tool_name, dict(call.arguments), ctx=ctx, tool_call_id=call.id
            )
        except ToolError as e:
            result = ToolResult(
                output=None,
                success=False,
                error_message=str(e),
                tool_name=call.tool_name,
                tool_call_id=call.id,
            )
        record = ToolExecutionRecord(
            tool_name=call.tool_name,
            tool_call_id=call.id,
            success=result.success,
            output=json_value_from_tool_result(result.output) if result.success else None,
            error=None if result.success else (result.error_message or "Tool call failed"),
        )
        self._telemetry.end_span(
            span,
            status="ok" if record.success else "error",
            error=record.error,
        )
        await self._emit(
            handle,
            run,
            "tool_finished",
            data={
                "tool_name": call.tool_name,
                "tool_call_id": call.id,
                "success": record.success,
            },
        )
        if not record.success and tool.spec.fatal:
            raise FatalToolError(
                f"Fatal tool '{call.tool_name}' failed: {record.error}",
                metadata={"state_id": run.state_id, "tool_call_id": call.id},
            )
        return record

    # ''''''''''''''''''''''''''''''''''''''
    # Terminal handling
    # ''''''''''''''''''''''''''''''''''''''

    async def _finish_complete(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        *,
        output: str | None,
        structured_output: JSONObject | None,
    ) -> AgentRunResult:
        run.pending_sub_agents.clear()
        try:
            await self._dispatch_own_hook(run, "on_agent_complete")
        except HookExecutionError as e:
            return await self._finish_error(handle, run, e, fire_hook=False)
        await self._persist(
            run,
            "complete",
            result={"output": output, "structured_output": structured_output},
        )
        await self._cancellation.clear(run.state_id)
        await self._emit(handle, run, "run_completed", status="complete")
        return self._result(run, "complete", output=output, structured_output=structured_output)

    async def _finish_suspended(
        self, handle: _RunHandle, run: AgentRunState, stack: SuspensionStack
    ) -> AgentRunResult:
        try:
            await self._dispatch_own_hook(
                run, "on_agent_suspend", {"approval_ids": list(stack.approval_ids())}
            )
        except HookExecutionError as e:
            return await self._finish_error(handle, run, e, fire_hook=False)
        await self._persist(run, "suspended", suspension_stack=stack)
        self._telemetry.counter(
            "agent.suspensions.total",
            attributes={"manifest_id": run.manifest.id, "depth": stack.depth},
        )
        await self._emit(
            handle,
            run,
            "run_suspended",
            status="suspended",
            data={"approval_ids": list(stack.approval_ids()), "depth": stack.depth},
        )
        return self._result(run, "suspended", suspension_stack=stack)

    async def _finish_cancelled(self, handle: _RunHandle, run: AgentRunState, reason: str) -> AgentRunResult:
        try:
            await self._dispatch_own_hook(run, "on_agent_cancelled", {"reason": reason})
        except HookExecutionError as e:
            return await self._finish_error(handle, run, e, fire_hook=False)
        await self._persist(run, "cancelled", cancel_reason=reason)
        await self._cancellation.clear(run.state_id)
        await self._emit(handle, run, "run_cancelled", status="cancelled", message=reason)
        return self._result(run, "cancelled", cancel_reason=reason)

    async def _finish_error(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        error: AppError,
        *,
        fire_hook: bool = True,
    ) -> AgentRunResult:
        """Fire `on_agent_error`, then write the terminal state; a failing hook replaces `error`."""
        if fire_hook:
            try:
                await self._dispatch_own_hook(run, "on_agent_error", error.to_dict())
            except HookExecutionError as e:
                error = e
        await self._persist(run, "error", error=error.to_dict())
        await self._cancellation.clear(run.state_id)
        await self._emit(
            handle,
            run,
            "run_failed",
            status="error",
            message=error.message,
            data={"code": error.code},
        )
        return self._result(run, "error", error=error)
