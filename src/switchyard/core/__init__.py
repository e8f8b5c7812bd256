"""
Core runtime exports.
"""

from .cancellation import CancellationMonitor, CancellationWatch, RunLock
from .config import create_runner_config_from_env
from .output_validation import OutputValidationOutcome, validate_output
from .runner import Runner, RunnerConfig
from .stop_conditions import DEFAULT_MAX_STEPS, should_stop
from .telemetry import (
    InMemoryTelemetrySink,
    NullTelemetrySink,
    OpenTelemetrySink,
    SafeTelemetry,
    TelemetryEvent,
    TelemetrySink,
    TelemetrySpan,
)

__all__ = [
    "Runner",
    "RunnerConfig",
    "create_runner_config_from_env",
    "CancellationMonitor",
    "CancellationWatch",
    "RunLock",
    "DEFAULT_MAX_STEPS",
    "should_stop",
    "OutputValidationOutcome",
    "validate_output",
    "TelemetrySink",
    "TelemetryEvent",
    "TelemetrySpan",
    "NullTelemetrySink",
    "InMemoryTelemetrySink",
    "OpenTelemetrySink",
    "SafeTelemetry",
]
