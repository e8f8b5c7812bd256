from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from switchyard.agents import (
    AgentHooks,
    AgentManifest,
    FatalToolError,
    HookExecutionError,
    InvalidAgentStateError,
    ManifestNotFoundError,
    OutputToolConfig,
    OutputValidationError,
    StepCountCondition,
    ToolUseCondition,
)
from switchyard.agents.registry import ManifestRegistry
from switchyard.agents.state_store import AgentStateStore
from switchyard.agents.types import RunOptions
from switchyard.core import InMemoryTelemetrySink, Runner, RunnerConfig
from switchyard.llms.types import LLMResponse, Message, ToolCall
from switchyard.storage import InMemoryKeyValueStore
from switchyard.tools import tool


def run_async(coro):
    return asyncio.run(coro)


class ScriptedCompletion:
    def __init__(self, *responses: LLMResponse) -> None:
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def __call__(self, messages, tools, tool_choice):
        self.calls.append(
            {
                "messages": list(messages),
                "tools": [t["function"]["name"] for t in tools],
                "tool_choice": tool_choice,
            }
        )
        if not self.responses:
            raise AssertionError("unexpected completion call")
        return self.responses.pop(0)


class EchoArgs(BaseModel):
    text: str


class Answer(BaseModel):
    value: int


@tool(args_model=EchoArgs, name="echo")
def echo(args: EchoArgs) -> dict:
    return {"echoed": args.text}


@tool(args_model=EchoArgs, name="explode", fatal=True)
def explode(args: EchoArgs) -> str:
    raise ValueError(f"boom: {args.text}")


@tool(args_model=EchoArgs, name="flaky")
def flaky(args: EchoArgs) -> str:
    raise ValueError("flaky failure")


def make_runner(manifest: AgentManifest, completion, **kwargs):
    registry = ManifestRegistry()
    registry.register(manifest, hooks=kwargs.pop("hooks", None))
    kv = kwargs.pop("kv", None) or InMemoryKeyValueStore()
    return Runner(registry=registry, completion=completion, kv=kv, **kwargs), kv


def test_text_only_response_completes_in_one_step():
    manifest = AgentManifest(id="echo", version="1", instructions="Be brief.")
    completion = ScriptedCompletion(LLMResponse(text="hello", finish_reason="stop"))
    runner, kv = make_runner(manifest, completion)

    async def scenario():
        result = await runner.run_agent(manifest, "hi")
        state = await AgentStateStore(kv, ttl_s=60).load(result.state_id)
        return result, state

    result, state = run_async(scenario())
    assert result.kind == "complete"
    assert result.output == "hello"
    assert result.step_number == 1
    assert state is not None and state.status == "complete"
    assert state.result == {"output": "hello", "structured_output": None}

    sent = completion.calls[0]["messages"]
    assert sent[0] == Message(role="system", content="Be brief.")
    assert sent[1] == Message(role="user", content="hi")
    # Instructions are never stored in history.
    assert all(m.role != "system" for m in state.messages)


def test_unregistered_manifest_is_rejected():
    registered = AgentManifest(id="a", version="1")
    other = AgentManifest(id="b", version="1")
    runner, _ = make_runner(registered, ScriptedCompletion())

    with pytest.raises(ManifestNotFoundError):
        run_async(runner.run_agent(other, "hi"))


def test_tool_calls_execute_and_results_feed_next_step():
    manifest = AgentManifest(id="echoer", version="1", tools=[echo])
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[ToolCall(id="call_1", tool_name="echo", arguments={"text": "ping"})],
            finish_reason="tool_calls",
        ),
        LLMResponse(text="done", finish_reason="stop"),
    )
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "go"))

    assert result.kind == "complete"
    assert [s.step_number for s in result.steps] == [1, 2]
    record = result.steps[0].tool_results[0]
    assert record.success and record.output == {"echoed": "ping"}
    tool_message = completion.calls[1]["messages"][-1]
    assert tool_message.role == "tool"
    assert tool_message.content == [
        {"type": "tool_result", "tool_use_id": "call_1", "content": '{"echoed":"ping"}'}
    ]
    assert completion.calls[0]["tool_choice"] == "auto"


def test_unknown_and_failing_tools_are_reported_to_the_model():
    manifest = AgentManifest(id="mixed", version="1", tools=[flaky])
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[
                ToolCall(id="c1", tool_name="missing", arguments={}),
                ToolCall(id="c2", tool_name="flaky", arguments={"text": "x"}),
            ],
            finish_reason="tool_calls",
        ),
        LLMResponse(text="recovered", finish_reason="stop"),
    )
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "go"))

    assert result.kind == "complete"
    first, second = result.steps[0].tool_results
    assert not first.success and "Unknown tool" in (first.error or "")
    assert not second.success and "flaky failure" in (second.error or "")
    parts = completion.calls[1]["messages"][-1].content
    assert all(part.get("is_error") for part in parts)


def test_fatal_tool_failure_fails_the_run():
    manifest = AgentManifest(id="fatal", version="1", tools=[explode])
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[ToolCall(id="c1", tool_name="explode", arguments={"text": "x"})],
            finish_reason="tool_calls",
        )
    )
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "go"))

    assert result.kind == "error"
    assert isinstance(result.error, FatalToolError)
    assert result.error_payload["code"] == "InternalServer"


def test_default_step_limit_stops_the_run():
    manifest = AgentManifest(id="chatty", version="1", on_text_only="continue")
    completion = ScriptedCompletion(
        *[LLMResponse(text=f"turn {i}", finish_reason="stop") for i in range(1, 4)]
    )
    runner, _ = make_runner(manifest, completion, config=RunnerConfig(max_steps_default=3))

    result = run_async(runner.run_agent(manifest, "talk"))

    assert result.kind == "complete"
    assert result.step_number == 3
    assert result.output == "turn 3"


def test_default_limit_is_twenty_steps():
    manifest = AgentManifest(id="chatty20", version="1", on_text_only="continue")
    completion = ScriptedCompletion(
        *[LLMResponse(text=f"turn {i}", finish_reason="stop") for i in range(1, 21)]
    )
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "talk"))

    assert result.step_number == 20
    assert len(completion.calls) == 20


def test_stop_conditions_first_match_wins():
    manifest = AgentManifest(
        id="stopper",
        version="1",
        tools=[echo],
        stop_when=[ToolUseCondition(name="echo"), StepCountCondition(step_count=5)],
    )
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[ToolCall(id="c1", tool_name="echo", arguments={"text": "a"})],
            finish_reason="tool_calls",
        )
    )
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "go"))

    assert result.kind == "complete"
    assert result.step_number == 1


def test_output_tool_completes_with_structured_output():
    manifest = AgentManifest(
        id="structured",
        version="1",
        output_tool=OutputToolConfig(args_model=Answer),
    )
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[ToolCall(id="o1", tool_name="final_output", arguments={"value": "abc"})],
            finish_reason="tool_calls",
        ),
        LLMResponse(
            tool_calls=[ToolCall(id="o2", tool_name="final_output", arguments={"value": 7})],
            finish_reason="tool_calls",
        ),
    )
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "compute"))

    assert result.kind == "complete"
    assert result.structured_output == {"value": 7}
    assert completion.calls[0]["tool_choice"] == "required"
    assert "final_output" in completion.calls[0]["tools"]
    corrective = completion.calls[1]["messages"][-1]
    assert corrective.role == "user" and "final_output" in corrective.content


def test_output_tool_retries_are_bounded():
    manifest = AgentManifest(
        id="bad-structured",
        version="1",
        output_tool=OutputToolConfig(args_model=Answer, max_retries=1),
    )
    invalid = LLMResponse(
        tool_calls=[ToolCall(id="o", tool_name="final_output", arguments={})],
        finish_reason="tool_calls",
    )
    completion = ScriptedCompletion(invalid, invalid)
    runner, _ = make_runner(manifest, completion)

    result = run_async(runner.run_agent(manifest, "compute"))

    assert result.kind == "error"
    assert isinstance(result.error, OutputValidationError)
    assert len(completion.calls) == 2


def test_timeout_is_an_error_with_timeout_code():
    manifest = AgentManifest(id="slow", version="1", tools=[echo])

    async def slow_completion(messages, tools, tool_choice):
        await asyncio.sleep(0.05)
        return LLMResponse(
            tool_calls=[ToolCall(id=f"c{len(messages)}", tool_name="echo", arguments={"text": "x"})],
            finish_reason="tool_calls",
        )

    runner, _ = make_runner(manifest, slow_completion)

    result = run_async(runner.run_agent(manifest, "go", options=RunOptions(timeout_ms=20)))

    assert result.kind == "error"
    assert result.error_payload["code"] == "Timeout"


def test_completion_failure_becomes_error_result():
    manifest = AgentManifest(id="broken", version="1")

    async def failing(messages, tools, tool_choice):
        raise RuntimeError("model unavailable")

    runner, kv = make_runner(manifest, failing)

    async def scenario():
        result = await runner.run_agent(manifest, "go")
        state = await AgentStateStore(kv, ttl_s=60).load(result.state_id)
        return result, state

    result, state = run_async(scenario())
    assert result.kind == "error"
    assert result.error_payload == {"code": "InternalServer", "message": "model unavailable"}
    assert state.status == "error"
    assert state.error == result.error_payload


def test_failing_completion_hook_turns_the_run_into_an_error():
    manifest = AgentManifest(id="hooked", version="1")
    hooks = AgentHooks()

    @hooks.on("on_agent_complete")
    def _explode(ctx):
        raise RuntimeError("hook down")

    completion = ScriptedCompletion(LLMResponse(text="ok", finish_reason="stop"))
    runner, kv = make_runner(manifest, completion, hooks=hooks)

    async def scenario():
        result = await runner.run_agent(manifest, "go")
        state = await AgentStateStore(kv, ttl_s=60).load(result.state_id)
        return result, state

    result, state = run_async(scenario())
    assert result.kind == "error"
    assert isinstance(result.error, HookExecutionError)
    assert state.status == "error"


class RecordingKeyValueStore(InMemoryKeyValueStore):
    def __init__(self) -> None:
        super().__init__()
        self.state_writes: list[str] = []

    async def set(self, key, value, *, ttl_s=None):
        if key.startswith("switchyard:agent-state:"):
            self.state_writes.append(value["status"])
        await super().set(key, value, ttl_s=ttl_s)


def test_failing_terminal_hooks_write_the_terminal_state_once():
    manifest = AgentManifest(id="hooked", version="1")
    hooks = AgentHooks()
    hooks.on("on_agent_complete", lambda ctx: 1 / 0)
    hooks.on("on_agent_error", lambda ctx: 1 / 0)
    completion = ScriptedCompletion(LLMResponse(text="ok", finish_reason="stop"))
    kv = RecordingKeyValueStore()
    runner, _ = make_runner(manifest, completion, hooks=hooks, kv=kv)

    async def scenario():
        handle = await runner.stream_agent(manifest, "go")
        types = [event.type async for event in handle.events]
        result = await handle.await_result()
        state = await AgentStateStore(kv, ttl_s=60).load(result.state_id)
        return types, result, state

    types, result, state = run_async(scenario())
    assert kv.state_writes == ["running", "error"]
    assert result.kind == "error"
    assert "on_agent_complete" in result.error.message
    assert state.error == result.error_payload
    assert "run_completed" not in types
    assert types[-1] == "run_failed"


def test_failing_error_hook_replaces_the_persisted_error():
    manifest = AgentManifest(id="hooked", version="1")
    hooks = AgentHooks()
    hooks.on("on_agent_error", lambda ctx: 1 / 0)

    async def failing(messages, tools, tool_choice):
        raise RuntimeError("model unavailable")

    kv = RecordingKeyValueStore()
    runner, _ = make_runner(manifest, failing, hooks=hooks, kv=kv)

    async def scenario():
        result = await runner.run_agent(manifest, "go")
        return result, await AgentStateStore(kv, ttl_s=60).load(result.state_id)

    result, state = run_async(scenario())
    assert kv.state_writes == ["running", "error"]
    assert isinstance(result.error, HookExecutionError)
    assert "on_agent_error" in state.error["message"]


def test_hooks_fire_in_lifecycle_order():
    manifest = AgentManifest(id="observed", version="1")
    hooks = AgentHooks()
    seen: list[tuple[str, int]] = []

    async def record(ctx):
        seen.append((ctx.event, ctx.step_number))

    hooks.on("on_agent_start", record)
    hooks.on("on_agent_complete", record)
    completion = ScriptedCompletion(LLMResponse(text="ok", finish_reason="stop"))
    runner, _ = make_runner(manifest, completion, hooks=hooks)

    run_async(runner.run_agent(manifest, "go"))

    assert seen == [("on_agent_start", 0), ("on_agent_complete", 1)]


def test_stream_events_and_telemetry():
    manifest = AgentManifest(id="streamed", version="1", tools=[echo])
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[ToolCall(id="c1", tool_name="echo", arguments={"text": "a"})],
            finish_reason="tool_calls",
        ),
        LLMResponse(text="bye", finish_reason="stop"),
    )
    sink = InMemoryTelemetrySink()
    runner, _ = make_runner(manifest, completion, telemetry=sink)

    async def scenario():
        handle = await runner.stream_agent(manifest, "go")
        types = [event.type async for event in handle.events]
        result = await handle.await_result()
        return types, result

    types, result = run_async(scenario())
    assert result.kind == "complete"
    assert types == [
        "run_started",
        "step_started",
        "tool_started",
        "tool_finished",
        "step_finished",
        "step_started",
        "step_finished",
        "run_completed",
    ]
    assert sink.counter_total("agent.runs.total") == 1
    assert sink.counter_total("agent.run.events.total") == len(types)
    span_names = {span["name"] for span in sink.spans()}
    assert {"agent.run", "agent.llm.call", "agent.tool.call"} <= span_names


def test_approval_step_finishes_before_the_run_suspends():
    @tool(args_model=EchoArgs, name="guarded_echo", requires_approval=True)
    def guarded_echo(args: EchoArgs) -> str:
        return args.text

    manifest = AgentManifest(id="guarded", version="1", tools=[guarded_echo])
    completion = ScriptedCompletion(
        LLMResponse(
            tool_calls=[ToolCall(id="c1", tool_name="guarded_echo", arguments={"text": "a"})],
            finish_reason="tool_calls",
        )
    )
    runner, _ = make_runner(manifest, completion)

    async def scenario():
        handle = await runner.stream_agent(manifest, "go")
        events = [event async for event in handle.events]
        return events, await handle.await_result()

    events, result = run_async(scenario())
    assert result.kind == "suspended"
    assert [event.type for event in events] == [
        "run_started",
        "step_started",
        "step_finished",
        "run_suspended",
    ]
    finished = events[2]
    assert finished.step == 1
    assert finished.data["approval_ids"] == list(result.suspension_stack.approval_ids())


def test_stream_events_can_be_disabled():
    manifest = AgentManifest(id="quiet", version="1")
    completion = ScriptedCompletion(LLMResponse(text="ok", finish_reason="stop"))
    runner, _ = make_runner(
        manifest, completion, config=RunnerConfig(emit_stream_events=False)
    )

    async def scenario():
        handle = await runner.stream_agent(manifest, "go")
        events = [event async for event in handle.events]
        return events, await handle.await_result()

    events, result = run_async(scenario())
    assert events == []
    assert result.kind == "complete"


def test_explicit_state_id_cannot_be_reused():
    manifest = AgentManifest(id="dup", version="1")
    completion = ScriptedCompletion(
        LLMResponse(text="one", finish_reason="stop"),
        LLMResponse(text="two", finish_reason="stop"),
    )
    runner, _ = make_runner(manifest, completion)

    async def scenario():
        first = await runner.run_agent(manifest, "a", options=RunOptions(state_id="state_fixed"))
        with pytest.raises(InvalidAgentStateError) as exc_info:
            await runner.run_agent(manifest, "b", options=RunOptions(state_id="state_fixed"))
        return first, exc_info.value

    first, err = run_async(scenario())
    assert first.state_id == "state_fixed"
    assert err.code == "BadRequest"
