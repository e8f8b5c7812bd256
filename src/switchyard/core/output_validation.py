"""
Structured output tool validation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from ..agents.manifest import OutputToolConfig
from ..llms.types import JSONObject, Message, ToolDefinition
from ..tools.export import normalize_json_schema


@dataclass(frozen=True, slots=True)
class OutputValidationOutcome:
    valid: bool
    value: JSONObject | None = None
    error: str | None = None


def output_tool_definition(config: OutputToolConfig) -> ToolDefinition:
    return {
        "type": "function",
        "function": {
            "name": config.name,
            "description": config.description,
            "parameters": normalize_json_schema(config.args_model.model_json_schema()),
        },
    }


def validate_output(config: OutputToolConfig, arguments: Mapping[str, Any]) -> OutputValidationOutcome:
    """
    Validate output tool arguments with the configured pydantic model.

    Returns:
        Valid outcome with the JSON dump of the model, or an invalid outcome
        carrying the validation message.
    """
    try:
        model = config.args_model.model_validate(dict(arguments))
    except ValidationError as e:
        return OutputValidationOutcome(valid=False, error=str(e))
    return OutputValidationOutcome(valid=True, value=model.model_dump(mode="json"))


def corrective_message(config: OutputToolConfig, error: str) -> Message:
    """Build the user message asking the model to call the output tool again."""
    return Message(
        role="user",
        content=(
            f"The arguments passed to '{config.name}' were invalid:\n{error}\n"
            f"Call '{config.name}' again with arguments matching its schema."
        ),
    )
