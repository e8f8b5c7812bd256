from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from switchyard.agents import (
    AgentConfigurationError,
    AgentHooks,
    AgentManifest,
    ApprovalPolicy,
    HookContext,
    HookExecutionError,
    ManifestNotFoundError,
    ManifestRegistry,
    OutputToolConfig,
    StepCountCondition,
    SubAgentRef,
)
from switchyard.core import validate_output
from switchyard.tools import tool


def run_async(coro):
    return asyncio.run(coro)


class QueryArgs(BaseModel):
    query: str


class Answer(BaseModel):
    value: int


@tool(args_model=QueryArgs, name="search")
def search(args: QueryArgs) -> str:
    return args.query


@tool(args_model=QueryArgs, name="wipe", requires_approval=True)
def wipe(args: QueryArgs) -> str:
    return args.query


@tool(args_model=QueryArgs, name="lookup", requires_approval=False)
def lookup(args: QueryArgs) -> str:
    return args.query


def ref(manifest_id: str, tool_name: str | None = None) -> SubAgentRef:
    return SubAgentRef(manifest_id=manifest_id, manifest_version="1", tool_name=tool_name or f"ask_{manifest_id}")


def test_manifest_rejects_invalid_configuration():
    with pytest.raises(AgentConfigurationError):
        AgentManifest(id="", version="1")
    with pytest.raises(AgentConfigurationError):
        AgentManifest(id="a", version="1", on_text_only="maybe")
    with pytest.raises(AgentConfigurationError):
        AgentManifest(id="a", version="1", stop_when=[StepCountCondition(step_count=0)])
    with pytest.raises(AgentConfigurationError, match="duplicate tool names"):
        AgentManifest(id="a", version="1", tools=[search], sub_agents=[ref("b", "search")])


def test_approval_policy_precedence():
    default_off = AgentManifest(id="a", version="1", tools=[search, wipe, lookup])
    assert default_off.tool_requires_approval(search) is False
    assert default_off.tool_requires_approval(wipe) is True

    default_on = AgentManifest(
        id="b",
        version="1",
        human_in_the_loop=ApprovalPolicy(default_requires_approval=True),
    )
    assert default_on.tool_requires_approval(search) is True
    assert default_on.tool_requires_approval(lookup) is False

    always = AgentManifest(
        id="c",
        version="1",
        human_in_the_loop=ApprovalPolicy(always_require_approval=True),
    )
    assert always.tool_requires_approval(lookup) is True


def test_registry_resolves_by_id_and_version():
    registry = ManifestRegistry()
    v1 = AgentManifest(id="writer", version="1")
    v2 = AgentManifest(id="writer", version="2", instructions="newer")
    registry.register(v1)
    registry.register(v2)

    assert registry.get("writer", "2") is v2
    assert registry.resolve(ref("writer")) is v1
    assert registry.has("writer", "1")
    assert not registry.has("writer", "3")
    with pytest.raises(ManifestNotFoundError):
        registry.get("writer", "3")
    with pytest.raises(AgentConfigurationError):
        registry.register(AgentManifest(id="writer", version="1"))


def test_validate_references_reports_unknown_children():
    registry = ManifestRegistry()
    registry.register(AgentManifest(id="parent", version="1", sub_agents=[ref("ghost")]))
    with pytest.raises(ManifestNotFoundError, match="ghost"):
        registry.validate_references()


def test_validate_references_reports_cycles():
    registry = ManifestRegistry()
    registry.register(AgentManifest(id="a", version="1", sub_agents=[ref("b")]))
    registry.register(AgentManifest(id="b", version="1", sub_agents=[ref("c")]))
    registry.register(AgentManifest(id="c", version="1", sub_agents=[ref("a")]))
    with pytest.raises(AgentConfigurationError, match="Circular"):
        registry.validate_references()


def test_validate_references_accepts_shared_children():
    registry = ManifestRegistry()
    registry.register(AgentManifest(id="leaf", version="1"))
    registry.register(AgentManifest(id="left", version="1", sub_agents=[ref("leaf")]))
    registry.register(AgentManifest(id="right", version="1", sub_agents=[ref("leaf")]))
    registry.register(
        AgentManifest(id="root", version="1", sub_agents=[ref("left"), ref("right")])
    )
    registry.validate_references()


def test_hooks_dispatch_in_registration_order_and_wrap_failures():
    hooks = AgentHooks()
    seen: list[str] = []

    @hooks.on("on_agent_start")
    def first(ctx: HookContext) -> None:
        seen.append("first")

    async def second(ctx: HookContext) -> None:
        seen.append("second")

    hooks.on("on_agent_start", second)
    hooks.on("on_agent_error", lambda ctx: 1 / 0)
    ctx = HookContext(event="on_agent_start", manifest_id="m", manifest_version="1", state_id="s")

    run_async(hooks.dispatch(ctx))
    assert seen == ["first", "second"]
    assert hooks.has("on_agent_start")
    assert not hooks.has("on_agent_complete")

    with pytest.raises(HookExecutionError) as exc_info:
        run_async(
            hooks.dispatch(
                HookContext(event="on_agent_error", manifest_id="m", manifest_version="1", state_id="s")
            )
        )
    assert exc_info.value.metadata["event"] == "on_agent_error"
    assert isinstance(exc_info.value.__cause__, ZeroDivisionError)


def test_hooks_reject_unknown_events():
    with pytest.raises(AgentConfigurationError):
        AgentHooks().on("on_something_else", lambda ctx: None)


def test_validate_output_reports_errors_and_normalizes_values():
    config = OutputToolConfig(args_model=Answer)
    good = validate_output(config, {"value": "5"})
    bad = validate_output(config, {"value": "five"})
    assert good.valid and good.value == {"value": 5}
    assert not bad.valid and bad.error
