"""
Stop policy evaluated after every completed step.
"""

from __future__ import annotations

from typing import Sequence

from ..agents.manifest import AgentManifest, StepCountCondition, ToolUseCondition
from ..agents.state import StepResult

DEFAULT_MAX_STEPS = 20


def should_stop(
    manifest: AgentManifest,
    steps: Sequence[StepResult],
    step_number: int,
    finish_reason: str | None,
    *,
    default_max_steps: int = DEFAULT_MAX_STEPS,
) -> bool:
    """
    Decide whether the run loop stops after `step_number`.

    Without `stop_when` the run stops at `default_max_steps`. Otherwise the
    conditions are checked in declaration order and the first match wins.
    Independently, a text-only `stop` finish ends the run when the manifest's
    `on_text_only` policy is `"stop"`.

    Args:
        manifest: Manifest of the running agent.
        steps: Every step result recorded so far.
        step_number: Number of the step that just finished.
        finish_reason: Finish reason reported by the model for that step.
        default_max_steps: Hard ceiling used when `stop_when` is empty.

    Returns:
        `True` when any stop signal fires.
    """
    if manifest.on_text_only == "stop" and finish_reason == "stop":
        return True

    if not manifest.stop_when:
        return step_number >= default_max_steps

    for condition in manifest.stop_when:
        if isinstance(condition, StepCountCondition):
            if step_number >= condition.step_count:
                return True
        elif isinstance(condition, ToolUseCondition):
            if any(call.tool_name == condition.name for step in steps for call in step.tool_calls):
                return True
    return False
