"""
Public result and event types for agent runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from ..errors import AppError
from ..llms.types import JSONObject, JSONValue, Message
from .state import AgentStatus, StepResult
from .suspension import SuspensionStack

RunResultKind = Literal["complete", "suspended", "error", "cancelled"]
CancelOutcome = Literal["already_cancelled", "cancelled", "signalled", "marked_failed"]
AgentRunEventType = Literal[
    "run_started",
    "run_resumed",
    "step_started",
    "step_finished",
    "tool_started",
    "tool_finished",
    "run_suspended",
    "run_completed",
    "run_failed",
    "run_cancelled",
]


@dataclass(frozen=True, slots=True)
class RunOptions:
    """
    Per-call options for `run_agent`, `stream_agent` and `resume_agent`.

    Attributes:
        state_id: Explicit state id for a new run. Generated when omitted.
        user_id: Optional user scope stored with the state.
        timeout_ms: Wall-clock budget override for a new run.
    """

    state_id: str | None = None
    user_id: str | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True, slots=True)
class AgentRunResult:
    """
    Tagged outcome of one `run_agent`/`resume_agent` call.

    Exactly one of the kind-specific fields is meaningful:
    `output`/`structured_output` for `complete`, `suspension_stack` for
    `suspended`, `error` for `error`, `cancel_reason` for `cancelled`.
    Suspension is not an error.
    """

    kind: RunResultKind
    state_id: str
    step_number: int = 0
    steps: list[StepResult] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    output: str | None = None
    structured_output: JSONObject | None = None
    suspension_stack: SuspensionStack | None = None
    error: AppError | None = None
    cancel_reason: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.kind == "complete"

    @property
    def is_suspended(self) -> bool:
        return self.kind == "suspended"

    @property
    def error_payload(self) -> dict[str, JSONValue] | None:
        """Return the structured `{code, message}` for failed runs."""
        return None if self.error is None else self.error.to_dict()


@dataclass(frozen=True, slots=True)
class AgentRunEvent:
    """
    Event emitted during an agent run.

    Attributes:
        type: Event category.
        state_id: Run identifier.
        manifest_id: Manifest of the emitting agent.
        status: Run status at emission time.
        step: Optional step number.
        message: Optional human-readable message.
        data: Structured event payload.
        schema_version: Event schema version string.
    """

    type: AgentRunEventType
    state_id: str
    manifest_id: str
    status: AgentStatus
    step: int | None = None
    message: str | None = None
    data: dict[str, JSONValue] = field(default_factory=dict)
    schema_version: str = "v1"


@dataclass(frozen=True, slots=True)
class CancelAgentResult:
    """Outcome of `cancel_agent`."""

    state_id: str
    outcome: CancelOutcome
