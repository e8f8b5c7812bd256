"""
Lifecycle hook registry.

Handlers are registered per event name. Dispatching an event with no
registered handler is a no-op; a failing handler raises
`HookExecutionError` so the caller decides what the failure aborts.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, TypeAlias, get_args

from ..llms.types import JSONValue
from .errors import AgentConfigurationError, HookExecutionError

OwnLifecycleEvent = Literal[
    "on_agent_start",
    "on_agent_resume",
    "on_agent_complete",
    "on_agent_suspend",
    "on_agent_error",
    "on_agent_cancelled",
]
SubAgentEvent = Literal[
    "on_sub_agent_start",
    "on_sub_agent_complete",
    "on_sub_agent_suspend",
    "on_sub_agent_error",
    "on_sub_agent_cancelled",
]
HookEvent: TypeAlias = OwnLifecycleEvent | SubAgentEvent

OWN_LIFECYCLE_EVENTS: frozenset[str] = frozenset(get_args(OwnLifecycleEvent))
SUB_AGENT_EVENTS: frozenset[str] = frozenset(get_args(SubAgentEvent))
HOOK_EVENTS: frozenset[str] = OWN_LIFECYCLE_EVENTS | SUB_AGENT_EVENTS


@dataclass(frozen=True, slots=True)
class HookContext:
    """
    Payload passed to every hook handler.

    Attributes:
        event: Event being dispatched.
        manifest_id: Manifest owning the hooks.
        manifest_version: Version of that manifest.
        state_id: State id of the agent owning the hooks.
        step_number: Step counter of that agent at dispatch time.
        child_state_id: Child state id for sub-agent events. The child state
            is already persisted when the hook runs.
        child_manifest_id: Child manifest id for sub-agent events.
        tool_call_id: Parent tool call that started the child.
        data: Event-specific JSON payload (output, error, reason...).
    """

    event: HookEvent
    manifest_id: str
    manifest_version: str
    state_id: str
    step_number: int = 0
    child_state_id: str | None = None
    child_manifest_id: str | None = None
    tool_call_id: str | None = None
    data: dict[str, JSONValue] = field(default_factory=dict)


HookHandler: TypeAlias = Callable[[HookContext], "Awaitable[None] | None"]


class AgentHooks:
    """Tagged registry of lifecycle handlers keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[HookHandler]] = {}

    def on(self, event: HookEvent, handler: HookHandler | None = None) -> Any:
        """
        Register `handler` for `event`. Usable directly or as a decorator.

        Raises:
            AgentConfigurationError: If `event` is not a known hook name.
        """
        if event not in HOOK_EVENTS:
            raise AgentConfigurationError(f"Unknown hook event: {event!r}")

        def _register(fn: HookHandler) -> HookHandler:
            self._handlers.setdefault(event, []).append(fn)
            return fn

        if handler is None:
            return _register
        return _register(handler)

    def has(self, event: HookEvent) -> bool:
        return bool(self._handlers.get(event))

    def handlers(self, event: HookEvent) -> list[HookHandler]:
        return list(self._handlers.get(event, []))

    async def dispatch(self, ctx: HookContext) -> None:
        """
        Invoke every handler registered for `ctx.event` in registration order.

        Raises:
            HookExecutionError: If any handler raises.
        """
        for handler in self._handlers.get(ctx.event, []):
            try:
                maybe = handler(ctx)
                if inspect.isawaitable(maybe):
                    await maybe
            except HookExecutionError:
                raise
            except Exception as e:
                raise HookExecutionError(
                    f"Hook '{ctx.event}' failed for manifest '{ctx.manifest_id}': {e}",
                    metadata={"event": ctx.event, "state_id": ctx.state_id},
                ) from e
