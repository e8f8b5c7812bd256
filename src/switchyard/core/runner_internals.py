"""
Runner helpers for persistence, message assembly, events and hooks.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Literal

from ..agents.errors import AgentStateCorruptionError
from ..agents.hooks import HookContext, HookEvent
from ..agents.manifest import AgentManifest, SubAgentArgs
from ..agents.state import (
    AgentState,
    AgentStatus,
    ParentAgentContext,
    ToolExecutionRecord,
)
from ..agents.suspension import SuspensionStackEntry, ToolApprovalSuspension
from ..agents.types import AgentRunEvent, AgentRunEventType, AgentRunResult
from ..llms.types import (
    JSONValue,
    LLMResponse,
    Message,
    MessagePart,
    ToolApprovalResponsePart,
    ToolCall,
    ToolDefinition,
    ToolResultContentPart,
)
from ..storage.models import json_dumps
from ..tools import ToolRegistry
from ..tools.export import normalize_json_schema
from .output_validation import output_tool_definition
from .runner_types import AgentRunState, ResumeDirective, _RunHandle


@dataclass(slots=True)
class PendingToolCalls:
    """
    Tool calls of the latest assistant message that have no result yet.

    Attributes:
        calls: Unresolved calls in model order.
        approval_ids: Tool-call id to approval id for calls that asked for
            approval in that message.
        responses: Approval id to the approver's response part.
    """

    calls: list[ToolCall] = field(default_factory=list)
    approval_ids: dict[str, str] = field(default_factory=dict)
    responses: dict[str, ToolApprovalResponsePart] = field(default_factory=dict)


def find_pending_tool_calls(
    messages: list[Message], *, skip_names: frozenset[str] = frozenset()
) -> PendingToolCalls:
    """
    Scan history for tool calls left unresolved by a suspension.

    Args:
        messages: Full message history.
        skip_names: Tool names that are never executed (the output tool).

    Returns:
        Pending calls of the most recent assistant message with tool calls.
    """
    anchor = None
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.role == "assistant" and any(
            part["type"] == "tool_use" for part in message.parts()
        ):
            anchor = index
            break
    if anchor is None:
        return PendingToolCalls()

    pending = PendingToolCalls()
    calls: list[ToolCall] = []
    for part in messages[anchor].parts():
        if part["type"] == "tool_use":
            calls.append(ToolCall(id=part["id"], tool_name=part["name"], arguments=dict(part["input"])))
        elif part["type"] == "tool_approval_request":
            pending.approval_ids[part["tool_call_id"]] = part["approval_id"]

    resolved: set[str] = set()
    for message in messages[anchor + 1 :]:
        for part in message.parts():
            if part["type"] == "tool_result":
                resolved.add(part["tool_use_id"])
            elif part["type"] == "tool_approval_response":
                pending.responses[part["approval_id"]] = part

    pending.calls = [c for c in calls if c.id not in resolved and c.tool_name not in skip_names]
    return pending


class RunnerInternalsMixin:
    """Shared internal helpers used by the execution and API mixins."""

    # ''''''''''''''''''''''''''''''''''''''
    # Run state construction
    # ''''''''''''''''''''''''''''''''''''''

    def _build_tool_registry(self, manifest: AgentManifest) -> ToolRegistry:
        registry = ToolRegistry()
        registry.register_many(manifest.tools)
        return registry

    def _new_run(
        self,
        manifest: AgentManifest,
        *,
        state_id: str,
        messages: list[Message],
        root_manifest_id: str,
        timeout_ms: int,
        context: dict[str, Any] | None = None,
        user_id: str | None = None,
        parent: AgentRunState | None = None,
        parent_tool_call_id: str | None = None,
    ) -> AgentRunState:
        parent_context = None
        ancestors: tuple[str, ...] = ()
        if parent is not None and parent_tool_call_id is not None:
            parent_context = ParentAgentContext(
                parent_manifest_id=parent.manifest.id,
                parent_manifest_version=parent.manifest.version,
                parent_state_id=parent.state_id,
                tool_call_id=parent_tool_call_id,
            )
            ancestors = (*parent.ancestor_ids, parent.state_id)
        return AgentRunState(
            state_id=state_id,
            manifest=manifest,
            hooks=self.registry.hooks_for(manifest),
            root_manifest_id=root_manifest_id,
            tools=self._build_tool_registry(manifest),
            timeout_ms=timeout_ms,
            watch=self._cancellation.watch(state_id, ancestors=ancestors),
            messages=list(messages),
            parent_context=parent_context,
            ancestor_ids=ancestors,
            context=dict(context or {}),
            user_id=user_id,
        )

    def _run_from_state(
        self,
        state: AgentState,
        *,
        directive: ResumeDirective | None,
        ancestors: tuple[str, ...] = (),
    ) -> AgentRunState:
        """
        Rehydrate a persisted state into a fresh loop state.

        When this state is the leaf named by `directive`, the approval
        responses are appended here as exactly one `tool` message.
        """
        manifest = self.registry.get(state.manifest_id, state.manifest_version)
        messages = list(state.messages)
        if directive is not None and directive.leaf_state_id == state.id:
            if state.suspension_stack is None:
                raise AgentStateCorruptionError(
                    f"Suspended state '{state.id}' has no suspension stack"
                )
            parts: list[MessagePart] = []
            for suspension in state.suspension_stack.leaf_suspensions:
                resolution = directive.resolutions[suspension.approval_id]
                parts.append(
                    {
                        "type": "tool_approval_response",
                        "approval_id": suspension.approval_id,
                        "approved": resolution.approved,
                        "reason": resolution.reason,
                    }
                )
            messages.append(Message(role="tool", content=parts))
            directive = None

        return AgentRunState(
            state_id=state.id,
            manifest=manifest,
            hooks=self.registry.hooks_for(manifest),
            root_manifest_id=state.root_manifest_id,
            tools=self._build_tool_registry(manifest),
            timeout_ms=state.timeout_ms or manifest.timeout_ms or self.config.agent_timeout_ms,
            watch=self._cancellation.watch(state.id, ancestors=ancestors),
            messages=messages,
            steps=list(state.steps),
            step_number=state.step_number,
            output_validation_retries=state.output_validation_retries,
            previous_elapsed_ms=state.elapsed_execution_ms,
            pending_sub_agents=dict(state.pending_sub_agents),
            child_state_ids=list(state.child_state_ids),
            parent_context=state.parent_context,
            ancestor_ids=ancestors,
            context=dict(state.context),
            user_id=state.user_id,
            created_at_ms=state.created_at_ms,
            resume_directive=directive,
        )

    def _own_entry(self, run: AgentRunState, pending_tool_call_id: str | None = None) -> SuspensionStackEntry:
        return SuspensionStackEntry(
            manifest_id=run.manifest.id,
            manifest_version=run.manifest.version,
            state_id=run.state_id,
            pending_tool_call_id=pending_tool_call_id,
        )

    def _new_id(self, prefix: str) -> str:
        """
        Generate unique id via runner module indirection.

        Args:
            prefix: Id prefix.

        Returns:
            Generated id string.
        """
        from . import runner as runner_module

        return runner_module.new_id(prefix)

    # ''''''''''''''''''''''''''''''''''''''
    # Messages and tool definitions
    # ''''''''''''''''''''''''''''''''''''''

    def _model_messages(self, run: AgentRunState) -> list[Message]:
        if not run.manifest.instructions:
            return list(run.messages)
        return [Message(role="system", content=run.manifest.instructions), *run.messages]

    def _tool_definitions(self, run: AgentRunState) -> list[ToolDefinition]:
        definitions = run.tools.to_tool_definitions()
        schema = normalize_json_schema(SubAgentArgs.model_json_schema())
        for ref in run.manifest.sub_agents:
            definitions.append(
                {
                    "type": "function",
                    "function": {
                        "name": ref.tool_name,
                        "description": ref.description or f"Delegate to agent '{ref.manifest_id}'.",
                        "parameters": schema,
                    },
                }
            )
        if run.manifest.output_tool is not None:
            definitions.append(output_tool_definition(run.manifest.output_tool))
        return definitions

    def _assistant_message(
        self,
        response: LLMResponse,
        approvals: list[ToolApprovalSuspension] | None = None,
    ) -> Message:
        parts: list[MessagePart] = []
        if response.text:
            parts.append({"type": "text", "text": response.text})
        for call in response.tool_calls:
            parts.append(
                {
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.tool_name,
                    "input": dict(call.arguments),
                }
            )
        for approval in approvals or []:
            parts.append(
                {
                    "type": "tool_approval_request",
                    "approval_id": approval.approval_id,
                    "tool_call_id": approval.tool_call_id,
                }
            )
        return Message(role="assistant", content=parts)

    def _tool_result_part(self, record: ToolExecutionRecord) -> ToolResultContentPart:
        if record.success:
            output = record.output
            content = output if isinstance(output, str) else json_dumps(output)
            return {"type": "tool_result", "tool_use_id": record.tool_call_id, "content": content}
        return {
            "type": "tool_result",
            "tool_use_id": record.tool_call_id,
            "content": record.error or "Tool call failed",
            "is_error": True,
        }

    def _append_tool_results(self, run: AgentRunState, records: list[ToolExecutionRecord]) -> None:
        if records:
            run.messages.append(
                Message(role="tool", content=[self._tool_result_part(r) for r in records])
            )

    # ''''''''''''''''''''''''''''''''''''''
    # Persistence, events and hooks
    # ''''''''''''''''''''''''''''''''''''''

    async def _persist(self, run: AgentRunState, status: AgentStatus, **fields: Any) -> AgentState:
        return await self._states.save(run.to_state(status, **fields))

    def _result(
        self,
        run: AgentRunState,
        kind: Literal["complete", "suspended", "error", "cancelled"],
        **fields: Any,
    ) -> AgentRunResult:
        return AgentRunResult(
            kind=kind,
            state_id=run.state_id,
            step_number=run.step_number,
            steps=list(run.steps),
            messages=list(run.messages),
            **fields,
        )

    async def _emit(
        self,
        handle: _RunHandle,
        run: AgentRunState,
        event_type: AgentRunEventType,
        *,
        status: AgentStatus = "running",
        message: str | None = None,
        data: dict[str, JSONValue] | None = None,
    ) -> None:
        """
        Emit lifecycle event to the stream handle and telemetry.

        Args:
            handle: Active run handle.
            run: Run emitting the event.
            event_type: Event category.
            status: Run status at emission time.
            message: Optional human-readable message.
            data: Optional structured payload.
        """
        event = AgentRunEvent(
            type=event_type,
            state_id=run.state_id,
            manifest_id=run.manifest.id,
            status=status,
            step=run.step_number,
            message=message,
            data=dict(data or {}),
        )
        if self.config.emit_stream_events:
            await handle.emit(event)
        self._telemetry.event(
            "agent.run.event",
            attributes={
                "event_type": event_type,
                "state_id": run.state_id,
                "manifest_id": run.manifest.id,
                "status": status,
                "step": run.step_number,
            },
        )
        self._telemetry.counter(
            "agent.run.events.total",
            value=1,
            attributes={"event_type": event_type, "status": status},
        )

    async def _dispatch_own_hook(
        self,
        run: AgentRunState,
        event: HookEvent,
        data: dict[str, JSONValue] | None = None,
    ) -> None:
        await run.hooks.dispatch(
            HookContext(
                event=event,
                manifest_id=run.manifest.id,
                manifest_version=run.manifest.version,
                state_id=run.state_id,
                step_number=run.step_number,
                data=dict(data or {}),
            )
        )

    async def _dispatch_sub_agent_hook(
        self,
        run: AgentRunState,
        event: HookEvent,
        *,
        child_state_id: str,
        child_manifest_id: str,
        tool_call_id: str,
        data: dict[str, JSONValue] | None = None,
    ) -> None:
        await run.hooks.dispatch(
            HookContext(
                event=event,
                manifest_id=run.manifest.id,
                manifest_version=run.manifest.version,
                state_id=run.state_id,
                step_number=run.step_number,
                child_state_id=child_state_id,
                child_manifest_id=child_manifest_id,
                tool_call_id=tool_call_id,
                data=dict(data or {}),
            )
        )

    async def _cancel_suspended_tree(self, state: AgentState, reason: str) -> None:
        """Mark a suspended state and every suspended descendant cancelled."""
        for child_id in state.pending_sub_agents.values():
            child = await self._states.load(child_id)
            if child is not None and child.status == "suspended":
                await self._cancel_suspended_tree(child, reason)
        await self._states.save(
            dataclasses.replace(
                state,
                status="cancelled",
                cancel_reason=reason,
                suspension_stack=None,
                pending_sub_agents={},
            )
        )
