"""
Task definitions that drive the agent runner from a queue.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from ..agents.registry import ManifestRegistry
from ..agents.suspension import ApprovalResolution
from .definition import TaskDefinition, TaskOptions, define_task
from .models import TaskRecord

if TYPE_CHECKING:
    from ..core.runner import Runner

RESUME_AGENT_TASK_NAME = "agents:resume"


class ApprovalResolutionPayload(BaseModel):
    approval_id: str = Field(min_length=1)
    approved: bool
    reason: str | None = None


class ResumeAgentPayload(BaseModel):
    state_id: str = Field(min_length=1)
    resolutions: list[ApprovalResolutionPayload] = Field(default_factory=list)


def create_resume_agent_task(
    runner: "Runner",
    registry: ManifestRegistry,
    *,
    queue_name: str = RESUME_AGENT_TASK_NAME,
    options: TaskOptions | None = None,
) -> TaskDefinition[ResumeAgentPayload]:
    """
    Build the `agents:resume` task, which resumes a suspended agent state.

    The registry's sub-agent references are validated up front so a broken
    graph fails at wiring time rather than inside a worker.

    Args:
        runner: Runner that owns the agent states.
        registry: Manifest registry the runner resolves manifests from.
        queue_name: Queue carrying resume jobs.
        options: Scheduling defaults for resume tasks.

    Returns:
        Task definition whose result is `{state_id, kind, output,
        structured_output, error, cancel_reason}`.

    Raises:
        ManifestNotFoundError: If a sub-agent reference does not resolve.
        AgentConfigurationError: If the sub-agent graph is circular.
    """
    registry.validate_references()

    async def _resume(payload: ResumeAgentPayload, record: TaskRecord) -> dict[str, Any]:
        result = await runner.resume_agent(
            payload.state_id,
            [
                ApprovalResolution(
                    approval_id=r.approval_id,
                    approved=r.approved,
                    reason=r.reason,
                )
                for r in payload.resolutions
            ],
        )
        if result.kind == "error" and result.error is not None:
            raise result.error
        return {
            "state_id": result.state_id,
            "kind": result.kind,
            "output": result.output,
            "structured_output": result.structured_output,
            "cancel_reason": result.cancel_reason,
        }

    return define_task(
        RESUME_AGENT_TASK_NAME,
        payload_model=ResumeAgentPayload,
        handler=_resume,
        queue_name=queue_name,
        options=options or TaskOptions(max_attempts=1),
    )
