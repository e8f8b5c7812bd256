from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Tools public API.

This package exposes:
- Core tool types (Tool, ToolSpec, ToolContext, ToolResult)
- The `tool` decorator for authoring tools quickly
- ToolRegistry
- Export helpers for function-calling tool definitions
"""

from .base import Tool, ToolContext, ToolFn, ToolResult, ToolSpec, as_async
from .decorator import tool
from .errors import (
    ToolAlreadyRegisteredError,
    ToolError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
    ToolValidationError,
)
from .export import (
    normalize_json_schema,
    to_tool_definitions,
    to_tool_definitions_from_specs,
    toolspec_to_definition,
)
from .registry import ToolCallRecord, ToolRegistry

__all__ = [
    "Tool",
    "ToolContext",
    "ToolFn",
    "ToolResult",
    "ToolSpec",
    "as_async",
    "tool",
    "ToolError",
    "ToolAlreadyRegisteredError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolTimeoutError",
    "ToolValidationError",
    "normalize_json_schema",
    "to_tool_definitions",
    "to_tool_definitions_from_specs",
    "toolspec_to_definition",
    "ToolCallRecord",
    "ToolRegistry",
]
