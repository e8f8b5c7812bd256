"""
Provider-agnostic model types consumed by the runner.
"""

from .types import (
    CompletionFn,
    JSONObject,
    JSONValue,
    LLMResponse,
    Message,
    MessagePart,
    ToolCall,
    ToolChoice,
    ToolDefinition,
    Usage,
)

__all__ = [
    "CompletionFn",
    "JSONObject",
    "JSONValue",
    "LLMResponse",
    "Message",
    "MessagePart",
    "ToolCall",
    "ToolChoice",
    "ToolDefinition",
    "Usage",
]
