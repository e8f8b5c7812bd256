"""
Telemetry sinks for runner and task observability.

The default sink is a no-op. `InMemoryTelemetrySink` captures measurements
for tests; `OpenTelemetrySink` forwards them when `opentelemetry-api` and
`opentelemetry-sdk` are installed. Runtime code never talks to a sink
directly: it goes through `SafeTelemetry`, which drops sink failures.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, TypeAlias

from ..llms.types import JSONValue

Attributes: TypeAlias = dict[str, JSONValue]


def now_ms() -> int:
    """Return the current Unix time in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """
    Point-in-time telemetry event.

    Attributes:
        name: Event name, e.g. `run_suspended`.
        timestamp_ms: Epoch milliseconds at emission time.
        attributes: JSON-safe event attributes.
    """

    name: str
    timestamp_ms: int
    attributes: Attributes = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TelemetrySpan:
    """
    Handle for an open span.

    `native_span` holds the backend object when the sink has one (OpenTelemetry);
    in-memory sinks leave it unset.
    """

    name: str
    started_at_ms: int
    attributes: Attributes = field(default_factory=dict)
    native_span: Any = None


class TelemetrySink(Protocol):
    """Backend contract: events, spans, counters and histograms."""

    def record_event(self, event: TelemetryEvent) -> None: ...

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> TelemetrySpan | None: ...

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None: ...

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None: ...

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None: ...


class NullTelemetrySink:
    """Discards everything. Used when no sink is configured."""

    def record_event(self, event: TelemetryEvent) -> None:
        pass

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> TelemetrySpan | None:
        return None

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None:
        pass

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        pass

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        pass


@dataclass(slots=True)
class InMemoryTelemetrySink:
    """
    Keeps every measurement in process memory.

    Closed spans, counter increments and histogram samples are stored as plain
    dicts so tests can assert on them directly.
    """

    _events: list[TelemetryEvent] = field(default_factory=list)
    _spans_closed: list[dict[str, Any]] = field(default_factory=list)
    _counters: list[dict[str, Any]] = field(default_factory=list)
    _histograms: list[dict[str, Any]] = field(default_factory=list)

    def record_event(self, event: TelemetryEvent) -> None:
        self._events.append(event)

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> TelemetrySpan:
        return TelemetrySpan(name=name, started_at_ms=now_ms(), attributes=dict(attributes or {}))

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None:
        if span is None:
            return
        self._spans_closed.append(
            {
                "name": span.name,
                "started_at_ms": span.started_at_ms,
                "ended_at_ms": now_ms(),
                "status": status,
                "error": error,
                "attributes": {**span.attributes, **(attributes or {})},
            }
        )

    @staticmethod
    def _sample(name: str, value: float, attributes: Attributes | None) -> dict[str, Any]:
        return {
            "name": name,
            "value": value,
            "attributes": dict(attributes or {}),
            "timestamp_ms": now_ms(),
        }

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        self._counters.append(self._sample(name, int(value), attributes))

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        self._histograms.append(self._sample(name, float(value), attributes))

    def events(self) -> list[TelemetryEvent]:
        return list(self._events)

    def spans(self) -> list[dict[str, Any]]:
        return list(self._spans_closed)

    def counters(self) -> list[dict[str, Any]]:
        return list(self._counters)

    def histograms(self) -> list[dict[str, Any]]:
        return list(self._histograms)

    def counter_total(self, name: str) -> int:
        """Sum every recorded increment for counter `name`."""
        return sum(row["value"] for row in self._counters if row["name"] == name)


def _otel_value(value: JSONValue) -> Any:
    # OpenTelemetry attributes accept primitives and homogeneous sequences only
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, list):
        return tuple(_otel_value(item) for item in value)
    return str(value)


@dataclass(slots=True)
class OpenTelemetrySink:
    """
    Forwards measurements to the global OpenTelemetry tracer and meter.

    `opentelemetry` is imported on first use, so the package works without it
    as long as this sink is not selected. Events are exported as increments of
    the `switchyard.events` counter tagged with the event name.
    """

    tracer_name: str = "switchyard"
    meter_name: str = "switchyard"

    _tracer: Any = field(default=None, init=False, repr=False)
    _meter: Any = field(default=None, init=False, repr=False)
    _instruments: dict[tuple[str, str], Any] = field(default_factory=dict, init=False, repr=False)

    def _providers(self) -> tuple[Any, Any]:
        if self._tracer is None or self._meter is None:
            try:
                from opentelemetry import metrics, trace
            except ImportError as e:
                raise RuntimeError(
                    "OpenTelemetrySink requires 'opentelemetry-api' and 'opentelemetry-sdk'"
                ) from e
            self._tracer = trace.get_tracer(self.tracer_name)
            self._meter = metrics.get_meter(self.meter_name)
        return self._tracer, self._meter

    def _instrument(self, kind: str, name: str) -> Any:
        key = (kind, name)
        if key not in self._instruments:
            _, meter = self._providers()
            create = meter.create_counter if kind == "counter" else meter.create_histogram
            self._instruments[key] = create(name)
        return self._instruments[key]

    @staticmethod
    def _attrs(attributes: Attributes | None) -> dict[str, Any]:
        return {str(k): _otel_value(v) for k, v in (attributes or {}).items()}

    def record_event(self, event: TelemetryEvent) -> None:
        self.increment_counter(
            "switchyard.events",
            attributes={**event.attributes, "event_name": event.name},
        )

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> TelemetrySpan:
        tracer, _ = self._providers()
        native = tracer.start_span(name=name, attributes=self._attrs(attributes) or None)
        return TelemetrySpan(
            name=name,
            started_at_ms=now_ms(),
            attributes=dict(attributes or {}),
            native_span=native,
        )

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None:
        if span is None or span.native_span is None:
            return
        from opentelemetry.trace import Status, StatusCode

        native = span.native_span
        final = self._attrs(attributes)
        if final:
            native.set_attributes(final)
        if status == "ok":
            native.set_status(Status(StatusCode.OK))
        else:
            native.set_status(Status(StatusCode.ERROR, error or status))
        native.end()

    def increment_counter(self, name: str, value: int = 1, *, attributes: Attributes | None = None) -> None:
        self._instrument("counter", name).add(int(value), attributes=self._attrs(attributes))

    def record_histogram(self, name: str, value: float, *, attributes: Attributes | None = None) -> None:
        self._instrument("histogram", name).record(float(value), attributes=self._attrs(attributes))


class SafeTelemetry:
    """
    Failure-isolating facade over a `TelemetrySink`.

    Sink exceptions are dropped here and only here: telemetry must never change
    the outcome of a run or a task.
    """

    def __init__(self, sink: TelemetrySink | None = None) -> None:
        self.sink: TelemetrySink = sink or NullTelemetrySink()

    @staticmethod
    def _quietly(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception:
            return None

    def start_span(self, name: str, *, attributes: Attributes | None = None) -> TelemetrySpan | None:
        return self._quietly(self.sink.start_span, name, attributes=attributes)

    def end_span(
        self,
        span: TelemetrySpan | None,
        *,
        status: str,
        error: str | None = None,
        attributes: Attributes | None = None,
    ) -> None:
        self._quietly(self.sink.end_span, span, status=status, error=error, attributes=attributes)

    def counter(self, name: str, *, value: int = 1, attributes: Attributes | None = None) -> None:
        self._quietly(self.sink.increment_counter, name, value=value, attributes=attributes)

    def histogram(self, name: str, *, value: float, attributes: Attributes | None = None) -> None:
        self._quietly(self.sink.record_histogram, name, value, attributes=attributes)

    def event(self, name: str, *, attributes: Attributes | None = None) -> None:
        self._quietly(
            self.sink.record_event,
            TelemetryEvent(name=name, timestamp_ms=now_ms(), attributes=dict(attributes or {})),
        )
