"""
Environment-driven runner configuration.
"""

from __future__ import annotations

import os

from .runner_types import RunnerConfig


def _env_bool(name: str, default: bool) -> bool:
    """Parse a boolean environment variable with common truthy values."""
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return int(v)


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return float(v)


def create_runner_config_from_env() -> RunnerConfig:
    """
    Build a `RunnerConfig` from `SWITCHYARD_*` environment variables.

    Unset variables keep the `RunnerConfig` defaults.

    Raises:
        ValueError: If a numeric variable cannot be parsed.
    """
    defaults = RunnerConfig()
    return RunnerConfig(
        agent_state_ttl_s=_env_float("SWITCHYARD_AGENT_STATE_TTL", defaults.agent_state_ttl_s),
        agent_timeout_ms=_env_int("SWITCHYARD_AGENT_TIMEOUT_MS", defaults.agent_timeout_ms),
        agent_run_lock_ttl_s=_env_float(
            "SWITCHYARD_AGENT_RUN_LOCK_TTL", defaults.agent_run_lock_ttl_s
        ),
        cancellation_signal_ttl_s=_env_float(
            "SWITCHYARD_CANCELLATION_SIGNAL_TTL", defaults.cancellation_signal_ttl_s
        ),
        cancellation_poll_interval_ms=_env_int(
            "SWITCHYARD_CANCELLATION_POLL_INTERVAL_MS",
            defaults.cancellation_poll_interval_ms,
        ),
        emit_stream_events=_env_bool(
            "SWITCHYARD_EMIT_STREAM_EVENTS", defaults.emit_stream_events
        ),
        max_steps_default=_env_int("SWITCHYARD_MAX_STEPS_DEFAULT", defaults.max_steps_default),
    )
