"""
Canonical switchyard runner assembled from focused mixins.
"""

from __future__ import annotations

from ..storage import create_kv_store_from_env, new_id  # noqa: F401
from .runner_api import RunnerAPIMixin
from .runner_execution import RunnerExecutionMixin
from .runner_internals import RunnerInternalsMixin
from .runner_orchestration import RunnerOrchestrationMixin
from .runner_types import RunnerConfig


class Runner(
    RunnerExecutionMixin,
    RunnerOrchestrationMixin,
    RunnerInternalsMixin,
    RunnerAPIMixin,
):
    """
    Canonical runtime runner for switchyard agents.

    Composition:
        - `RunnerAPIMixin`: public API (`run_agent`, `stream_agent`,
          `resume_agent`, `reply_agent`, `cancel_agent`)
        - `RunnerExecutionMixin`: step loop, tool execution, terminal writes
        - `RunnerOrchestrationMixin`: sub-agent start, resume and reporting
        - `RunnerInternalsMixin`: persistence, events, hooks, message helpers
    """


__all__ = ["Runner", "RunnerConfig"]
