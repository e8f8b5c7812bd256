"""
Persisted agent state and its JSON serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from ..llms.types import JSONObject, JSONValue, Message, MessagePart, ToolCall
from ..storage.models import now_ms
from .errors import AgentStateCorruptionError
from .suspension import SuspensionStack
from .versioning import AGENT_STATE_SCHEMA_VERSION

AgentStatus = Literal["running", "suspended", "complete", "error", "cancelled"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "error", "cancelled"})


@dataclass(frozen=True, slots=True)
class ParentAgentContext:
    """
    Link from a sub-agent state back to the parent that started it.

    Attributes:
        parent_manifest_id: Parent manifest identifier.
        parent_manifest_version: Parent manifest version.
        parent_state_id: Parent state identifier.
        tool_call_id: Parent tool call awaiting this child's result.
    """

    parent_manifest_id: str
    parent_manifest_version: str
    parent_state_id: str
    tool_call_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent_manifest_id": self.parent_manifest_id,
            "parent_manifest_version": self.parent_manifest_version,
            "parent_state_id": self.parent_state_id,
            "tool_call_id": self.tool_call_id,
        }

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "ParentAgentContext":
        return cls(
            parent_manifest_id=str(value["parent_manifest_id"]),
            parent_manifest_version=str(value["parent_manifest_version"]),
            parent_state_id=str(value["parent_state_id"]),
            tool_call_id=str(value["tool_call_id"]),
        )


@dataclass(frozen=True, slots=True)
class ToolExecutionRecord:
    """
    Normalized record for one tool execution.

    Attributes:
        tool_name: Executed tool name.
        tool_call_id: Model tool-call identifier.
        success: Whether tool execution succeeded.
        output: JSON-safe tool output payload.
        error: Error message when execution failed.
    """

    tool_name: str
    tool_call_id: str
    success: bool
    output: JSONValue = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one model-interaction step."""

    step_number: int
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolExecutionRecord] = field(default_factory=list)
    finish_reason: str | None = None


def json_value_from_tool_result(value: Any) -> JSONValue:
    """
    Best-effort conversion of tool outputs to JSON-safe payloads.

    Pydantic models are dumped; unsupported objects are stringified with
    `repr(...)`.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [json_value_from_tool_result(v) for v in value]
    if isinstance(value, dict):
        return {str(k): json_value_from_tool_result(v) for k, v in value.items()}
    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        return json_value_from_tool_result(model_dump(mode="json"))
    return repr(value)


def message_to_dict(message: Message) -> dict[str, Any]:
    row: dict[str, Any] = {"role": message.role, "content": message.content}
    if isinstance(message.content, list):
        row["content"] = [dict(part) for part in message.content]
    if message.name is not None:
        row["name"] = message.name
    return row


def message_from_dict(value: Mapping[str, Any]) -> Message:
    content = value.get("content", "")
    if isinstance(content, list):
        parts: list[MessagePart] = [dict(part) for part in content]  # type: ignore[misc]
        content = parts
    elif not isinstance(content, str):
        raise AgentStateCorruptionError("Message content must be a string or list of parts")
    return Message(role=value["role"], content=content, name=value.get("name"))


def tool_call_to_dict(call: ToolCall) -> dict[str, Any]:
    return {"id": call.id, "tool_name": call.tool_name, "arguments": dict(call.arguments)}


def tool_call_from_dict(value: Mapping[str, Any]) -> ToolCall:
    return ToolCall(
        id=str(value["id"]),
        tool_name=str(value.get("tool_name", "")),
        arguments=dict(value.get("arguments") or {}),
    )


def step_to_dict(step: StepResult) -> dict[str, Any]:
    return {
        "step_number": step.step_number,
        "text": step.text,
        "tool_calls": [tool_call_to_dict(c) for c in step.tool_calls],
        "tool_results": [
            {
                "tool_name": r.tool_name,
                "tool_call_id": r.tool_call_id,
                "success": r.success,
                "output": r.output,
                "error": r.error,
            }
            for r in step.tool_results
        ],
        "finish_reason": step.finish_reason,
    }


def step_from_dict(value: Mapping[str, Any]) -> StepResult:
    return StepResult(
        step_number=int(value["step_number"]),
        text=str(value.get("text") or ""),
        tool_calls=[tool_call_from_dict(c) for c in value.get("tool_calls") or []],
        tool_results=[
            ToolExecutionRecord(
                tool_name=str(r["tool_name"]),
                tool_call_id=str(r["tool_call_id"]),
                success=bool(r["success"]),
                output=r.get("output"),
                error=r.get("error"),
            )
            for r in value.get("tool_results") or []
        ],
        finish_reason=value.get("finish_reason"),
    )


@dataclass(frozen=True, slots=True)
class AgentState:
    """
    Persisted snapshot of one agent run, keyed by `id` (the run id).

    Written once at run start, once per suspension and once per terminal
    transition. Sub-agent states carry `parent_context`.

    Attributes:
        id: State (run) identifier.
        root_manifest_id: Manifest of the top-level agent in the hierarchy.
        manifest_id: Manifest of this agent.
        manifest_version: Version of this agent's manifest.
        status: Lifecycle status.
        messages: Full message history.
        steps: Step results so far.
        step_number: Last started step.
        suspension_stack: Set while `status == "suspended"`.
        parent_context: Set for sub-agent states.
        child_state_ids: Every child state started by this agent.
        pending_sub_agents: Tool-call id to child state id for children that
            have not finished yet.
        context: JSON run context supplied by the caller.
        result: Terminal output payload for completed runs.
        error: `{code, message}` for failed runs.
        cancel_reason: Reason for cancelled runs.
        timeout_ms: Wall-clock budget for the whole run.
        elapsed_execution_ms: Execution time spent before the last suspension.
        output_validation_retries: Invalid structured outputs so far.
        user_id: Optional user scope.
        created_at_ms: Creation timestamp.
        updated_at_ms: Last write timestamp.
        schema_version: Persisted schema version.
    """

    id: str
    root_manifest_id: str
    manifest_id: str
    manifest_version: str
    status: AgentStatus = "running"
    messages: list[Message] = field(default_factory=list)
    steps: list[StepResult] = field(default_factory=list)
    step_number: int = 0
    suspension_stack: SuspensionStack | None = None
    parent_context: ParentAgentContext | None = None
    child_state_ids: list[str] = field(default_factory=list)
    pending_sub_agents: dict[str, str] = field(default_factory=dict)
    context: JSONObject = field(default_factory=dict)
    result: JSONObject | None = None
    error: JSONObject | None = None
    cancel_reason: str | None = None
    timeout_ms: int | None = None
    elapsed_execution_ms: int = 0
    output_validation_retries: int = 0
    user_id: str | None = None
    created_at_ms: int = field(default_factory=now_ms)
    updated_at_ms: int = field(default_factory=now_ms)
    schema_version: str = AGENT_STATE_SCHEMA_VERSION

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "id": self.id,
            "root_manifest_id": self.root_manifest_id,
            "manifest_id": self.manifest_id,
            "manifest_version": self.manifest_version,
            "status": self.status,
            "messages": [message_to_dict(m) for m in self.messages],
            "steps": [step_to_dict(s) for s in self.steps],
            "step_number": self.step_number,
            "suspension_stack": (
                self.suspension_stack.to_dict() if self.suspension_stack is not None else None
            ),
            "parent_context": (
                self.parent_context.to_dict() if self.parent_context is not None else None
            ),
            "child_state_ids": list(self.child_state_ids),
            "pending_sub_agents": dict(self.pending_sub_agents),
            "context": dict(self.context),
            "result": self.result,
            "error": self.error,
            "cancel_reason": self.cancel_reason,
            "timeout_ms": self.timeout_ms,
            "elapsed_execution_ms": self.elapsed_execution_ms,
            "output_validation_retries": self.output_validation_retries,
            "user_id": self.user_id,
            "created_at_ms": self.created_at_ms,
            "updated_at_ms": self.updated_at_ms,
        }

    @classmethod
    def from_dict(cls, value: Mapping[str, Any]) -> "AgentState":
        """
        Rebuild a state from its JSON form.

        Raises:
            AgentStateCorruptionError: If required fields are missing or malformed.
        """
        try:
            stack_row = value.get("suspension_stack")
            parent_row = value.get("parent_context")
            return cls(
                id=str(value["id"]),
                root_manifest_id=str(value["root_manifest_id"]),
                manifest_id=str(value["manifest_id"]),
                manifest_version=str(value["manifest_version"]),
                status=value["status"],
                messages=[message_from_dict(m) for m in value.get("messages") or []],
                steps=[step_from_dict(s) for s in value.get("steps") or []],
                step_number=int(value.get("step_number", 0)),
                suspension_stack=(
                    SuspensionStack.from_dict(stack_row) if isinstance(stack_row, dict) else None
                ),
                parent_context=(
                    ParentAgentContext.from_dict(parent_row)
                    if isinstance(parent_row, dict)
                    else None
                ),
                child_state_ids=[str(s) for s in value.get("child_state_ids") or []],
                pending_sub_agents={
                    str(k): str(v) for k, v in (value.get("pending_sub_agents") or {}).items()
                },
                context=dict(value.get("context") or {}),
                result=value.get("result"),
                error=value.get("error"),
                cancel_reason=value.get("cancel_reason"),
                timeout_ms=value.get("timeout_ms"),
                elapsed_execution_ms=int(value.get("elapsed_execution_ms", 0)),
                output_validation_retries=int(value.get("output_validation_retries", 0)),
                user_id=value.get("user_id"),
                created_at_ms=int(value.get("created_at_ms", 0)),
                updated_at_ms=int(value.get("updated_at_ms", 0)),
                schema_version=str(value.get("schema_version", AGENT_STATE_SCHEMA_VERSION)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise AgentStateCorruptionError(f"Invalid agent state record: {e}") from e
