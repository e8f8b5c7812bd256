"""
Immutable agent manifest configuration.

A manifest describes one agent version: its instructions, tools, stop policy,
approval policy, optional structured output tool and the sub-agents it may
delegate to. Manifests are registered once and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field

from ..tools import Tool
from .errors import AgentConfigurationError

OnTextOnly = Literal["stop", "continue"]


def manifest_key(manifest_id: str, version: str) -> str:
    """Return the registry key `id:version` for a manifest."""
    return f"{manifest_id}:{version}"


@dataclass(frozen=True, slots=True)
class StepCountCondition:
    """Stop once `step_number >= step_count`."""

    step_count: int


@dataclass(frozen=True, slots=True)
class ToolUseCondition:
    """Stop once any step so far has called the tool `name`."""

    name: str


StopCondition: TypeAlias = StepCountCondition | ToolUseCondition


@dataclass(frozen=True, slots=True)
class SubAgentRef:
    """
    Reference from a parent manifest to a child manifest exposed as a tool.

    Attributes:
        manifest_id: Child manifest identifier.
        manifest_version: Child manifest version.
        tool_name: Tool name the parent model uses to call the child.
        description: Tool description shown to the parent model.
    """

    manifest_id: str
    manifest_version: str
    tool_name: str
    description: str = ""

    @property
    def key(self) -> str:
        return manifest_key(self.manifest_id, self.manifest_version)


class SubAgentArgs(BaseModel):
    """Arguments the parent model passes when delegating to a sub-agent."""

    prompt: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ApprovalPolicy:
    """
    Human-in-the-loop approval settings.

    Attributes:
        always_require_approval: Every tool call needs approval.
        default_requires_approval: Applied to tools that leave
            `requires_approval` unset.
    """

    always_require_approval: bool = False
    default_requires_approval: bool = False


@dataclass(frozen=True, slots=True)
class OutputToolConfig:
    """
    Structured output tool. Calling it with valid arguments completes the run.

    Attributes:
        name: Tool name exposed to the model.
        description: Tool description exposed to the model.
        args_model: Pydantic model validating the structured output.
        max_retries: Invalid outputs tolerated before the run fails.
    """

    args_model: type[BaseModel]
    name: str = "final_output"
    description: str = "Return the final structured output."
    max_retries: int = 3


@dataclass(frozen=True, slots=True)
class AgentManifest:
    """
    Immutable configuration for one agent version.

    Attributes:
        id: Manifest identifier.
        version: Manifest version.
        name: Display name.
        description: Human-readable description.
        instructions: System instructions prepended to every model call.
        tools: Tools available to the agent.
        sub_agents: Child manifests callable as tools.
        stop_when: Ordered stop conditions; first match wins.
        on_text_only: Whether a text-only `stop` finish ends the run.
        timeout_ms: Wall-clock budget override for this agent.
        human_in_the_loop: Approval policy.
        output_tool: Optional structured output tool.
        sub_agent_timeout_ms: Wall-clock budget given to child runs.
    """

    id: str
    version: str
    name: str = ""
    description: str = ""
    instructions: str = ""
    tools: list[Tool[Any, Any]] = field(default_factory=list)
    sub_agents: list[SubAgentRef] = field(default_factory=list)
    stop_when: list[StopCondition] = field(default_factory=list)
    on_text_only: OnTextOnly = "stop"
    timeout_ms: int | None = None
    human_in_the_loop: ApprovalPolicy = field(default_factory=ApprovalPolicy)
    output_tool: OutputToolConfig | None = None
    sub_agent_timeout_ms: int | None = None

    def __post_init__(self) -> None:
        if not self.id.strip() or not self.version.strip():
            raise AgentConfigurationError("Manifest id and version must be non-empty")
        if self.on_text_only not in ("stop", "continue"):
            raise AgentConfigurationError(
                f"Invalid on_text_only policy: {self.on_text_only!r}"
            )
        for condition in self.stop_when:
            if isinstance(condition, StepCountCondition) and condition.step_count < 1:
                raise AgentConfigurationError("StepCountCondition.step_count must be >= 1")
        names = [t.name for t in self.tools] + [ref.tool_name for ref in self.sub_agents]
        if self.output_tool is not None:
            names.append(self.output_tool.name)
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise AgentConfigurationError(
                f"Manifest '{self.key}' declares duplicate tool names: {duplicates}"
            )

    @property
    def key(self) -> str:
        return manifest_key(self.id, self.version)

    def sub_agent_for(self, tool_name: str) -> SubAgentRef | None:
        for ref in self.sub_agents:
            if ref.tool_name == tool_name:
                return ref
        return None

    def tool_requires_approval(self, tool: Tool[Any, Any]) -> bool:
        """
        Decide whether calls to `tool` must be approved before execution.

        Args:
            tool: Tool declared by this manifest.

        Returns:
            `True` when the manifest policy or the tool itself demands approval.
        """
        if self.human_in_the_loop.always_require_approval:
            return True
        if tool.spec.requires_approval is not None:
            return tool.spec.requires_approval
        return self.human_in_the_loop.default_requires_approval
