"""
Agent-layer error taxonomy.
"""

from __future__ import annotations

from ..errors import (
    AppError,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    RequestTimeoutError,
)


class AgentError(AppError):
    """Base exception for all agent-runtime failures."""
    pass


class AgentConfigurationError(AgentError, BadRequestError):
    """
    Raised when agent configuration is invalid.

    Typical cases:
    - duplicate manifest registration
    - sub-agent references that do not resolve
    - circular sub-agent graphs
    """
    pass


class ManifestNotFoundError(AgentError, NotFoundError):
    """Raised when no manifest is registered for an `id:version` key."""
    pass


class AgentStateNotFoundError(AgentError, NotFoundError):
    """Raised when a persisted agent state is missing or expired."""
    pass


class InvalidAgentStateError(AgentError, BadRequestError):
    """Raised when an operation is not allowed in the state's current status."""
    pass


class SuspensionValidationError(AgentError, BadRequestError):
    """Raised when approval resolutions do not match the pending suspension."""
    pass


class AgentExecutionError(AgentError, InternalServerError):
    """Raised for runtime execution failures not tied to configuration."""
    pass


class AgentTimeoutError(AgentError, RequestTimeoutError):
    """Raised when a run exceeds its wall-clock budget."""
    pass


class AgentCancelledError(AgentExecutionError):
    """Raised when a run is cancelled by caller or control plane."""
    pass


class HookExecutionError(AgentExecutionError):
    """Raised when a registered lifecycle hook fails."""
    pass


class SubAgentExecutionError(AgentExecutionError):
    """Raised when delegated sub-agent execution fails."""
    pass


class OutputValidationError(AgentExecutionError):
    """Raised when the output tool keeps producing invalid arguments."""
    pass


class FatalToolError(AgentExecutionError):
    """Raised when a tool marked `fatal` fails."""
    pass


class AgentStateCorruptionError(AgentExecutionError):
    """Raised when a persisted state record cannot be validated or loaded."""
    pass
