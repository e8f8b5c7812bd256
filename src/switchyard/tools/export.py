from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Tool export utilities.

The completion collaborator receives OpenAI-compatible function tool
definitions. This module converts ToolSpec objects into that shape.
"""

from typing import Any, Dict, Iterable, List

from ..llms.types import ToolDefinition
from .base import Tool, ToolSpec


def normalize_json_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pydantic v2's model_json_schema() is generally usable as-is.
    We ensure it is at least an object schema with 'properties' to avoid edge cases.
    """
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}

    out = dict(schema)
    out.setdefault("type", "object")
    out.setdefault("properties", {})
    return out


def toolspec_to_definition(spec: ToolSpec) -> ToolDefinition:
    """
    Convert a ToolSpec into a function tool definition:
      {
        "type": "function",
        "function": {
          "name": "...",
          "description": "...",
          "parameters": { ...JSON Schema... }
        }
      }
    """
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": normalize_json_schema(spec.parameters_schema),
        },
    }


def to_tool_definitions(tools: Iterable[Tool[Any, Any]]) -> List[ToolDefinition]:
    return [toolspec_to_definition(t.spec) for t in tools]


def to_tool_definitions_from_specs(specs: Iterable[ToolSpec]) -> List[ToolDefinition]:
    return [toolspec_to_definition(s) for s in specs]
