from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the provider-agnostic message and completion types exchanged
with the model-completion collaborator.
"""

from dataclasses import dataclass, field
from typing import Literal, NotRequired, Protocol, Sequence, TypeAlias, TypedDict


JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
JSONSchema: TypeAlias = dict[str, JSONValue]

Role = Literal["user", "assistant", "system", "tool"]


class TextContentPart(TypedDict):
    type: Literal["text"]
    text: str


class ToolUseContentPart(TypedDict):
    type: Literal["tool_use"]
    id: str
    name: str
    input: JSONObject


class ToolResultContentPart(TypedDict):
    type: Literal["tool_result"]
    tool_use_id: str
    content: str
    is_error: NotRequired[bool]


class ToolApprovalRequestPart(TypedDict):
    type: Literal["tool_approval_request"]
    approval_id: str
    tool_call_id: str


class ToolApprovalResponsePart(TypedDict):
    type: Literal["tool_approval_response"]
    approval_id: str
    approved: bool
    reason: str | None


MessagePart: TypeAlias = (
    TextContentPart
    | ToolUseContentPart
    | ToolResultContentPart
    | ToolApprovalRequestPart
    | ToolApprovalResponsePart
)
MessageContent: TypeAlias = str | list[MessagePart]


class ToolFunctionSpec(TypedDict):
    name: str
    parameters: JSONSchema
    description: NotRequired[str]


class ToolDefinition(TypedDict):
    type: Literal["function"]
    function: ToolFunctionSpec


class ToolChoiceFunction(TypedDict):
    name: str


class ToolChoiceNamed(TypedDict):
    type: Literal["function"]
    function: ToolChoiceFunction


ToolChoice: TypeAlias = Literal["auto", "none", "required"] | ToolChoiceNamed


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: MessageContent
    name: str | None = None

    def parts(self) -> list[MessagePart]:
        """Return content as a list of parts, wrapping plain strings as text."""
        if isinstance(self.content, str):
            if not self.content:
                return []
            return [{"type": "text", "text": self.content}]
        return list(self.content)


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class ToolCall:
    """
    Data-only representation of a model-returned tool call.
    The runner decides if/when/how to execute this.
    """

    id: str
    tool_name: str = ""
    arguments: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LLMResponse:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    model: str | None = None


class CompletionFn(Protocol):
    """
    Model-completion collaborator.

    Receives the assembled message history, the model-facing tool definitions
    and the tool choice, and returns text, tool calls and a finish reason.
    """

    async def __call__(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolDefinition],
        tool_choice: ToolChoice,
    ) -> LLMResponse: ...
