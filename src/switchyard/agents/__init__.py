"""
Agent manifests, suspension model, persisted state and lifecycle hooks.
"""

from .errors import (
    AgentCancelledError,
    AgentConfigurationError,
    AgentError,
    AgentExecutionError,
    AgentStateCorruptionError,
    AgentStateNotFoundError,
    AgentTimeoutError,
    FatalToolError,
    HookExecutionError,
    InvalidAgentStateError,
    ManifestNotFoundError,
    OutputValidationError,
    SubAgentExecutionError,
    SuspensionValidationError,
)
from .hooks import AgentHooks, HookContext, HookEvent
from .manifest import (
    AgentManifest,
    ApprovalPolicy,
    OutputToolConfig,
    StepCountCondition,
    StopCondition,
    SubAgentArgs,
    SubAgentRef,
    ToolUseCondition,
    manifest_key,
)
from .registry import ManifestRegistry
from .state import (
    AgentState,
    AgentStatus,
    ParentAgentContext,
    StepResult,
    ToolExecutionRecord,
)
from .state_store import AgentStateStore, agent_state_key
from .suspension import (
    ApprovalResolution,
    Suspension,
    SuspensionStack,
    SuspensionStackEntry,
    ToolApprovalSuspension,
    validate_resolutions,
)
from .types import AgentRunEvent, AgentRunResult, CancelAgentResult, RunOptions

__all__ = [
    "AgentError",
    "AgentConfigurationError",
    "ManifestNotFoundError",
    "AgentStateNotFoundError",
    "InvalidAgentStateError",
    "SuspensionValidationError",
    "AgentExecutionError",
    "AgentTimeoutError",
    "AgentCancelledError",
    "HookExecutionError",
    "SubAgentExecutionError",
    "OutputValidationError",
    "FatalToolError",
    "AgentStateCorruptionError",
    "AgentHooks",
    "HookContext",
    "HookEvent",
    "AgentManifest",
    "ApprovalPolicy",
    "OutputToolConfig",
    "StepCountCondition",
    "ToolUseCondition",
    "StopCondition",
    "SubAgentRef",
    "SubAgentArgs",
    "manifest_key",
    "ManifestRegistry",
    "AgentState",
    "AgentStatus",
    "ParentAgentContext",
    "StepResult",
    "ToolExecutionRecord",
    "AgentStateStore",
    "agent_state_key",
    "ApprovalResolution",
    "Suspension",
    "SuspensionStack",
    "SuspensionStackEntry",
    "ToolApprovalSuspension",
    "validate_resolutions",
    "AgentRunEvent",
    "AgentRunResult",
    "CancelAgentResult",
    "RunOptions",
]
