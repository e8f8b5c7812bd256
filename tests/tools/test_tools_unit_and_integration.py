from __future__ import annotations

import asyncio
import threading

import pytest
from pydantic import BaseModel

from switchyard.tools import (
    Tool,
    ToolContext,
    ToolRegistry,
    ToolSpec,
    as_async,
    normalize_json_schema,
    to_tool_definitions,
    to_tool_definitions_from_specs,
    tool,
    toolspec_to_definition,
)
from switchyard.tools.errors import (
    ToolAlreadyRegisteredError,
    ToolNotFoundError,
    ToolTimeoutError,
    ToolValidationError,
)


def run_async(coro):
    return asyncio.run(coro)


class EchoArgs(BaseModel):
    text: str


class AddArgs(BaseModel):
    a: int
    b: int


def test_as_async_supports_sync_and_async_functions():
    def sync_fn(value: int) -> int:
        return value + 1

    async def async_fn(value: int) -> int:
        return value + 2

    sync_wrapped = as_async(sync_fn)
    async_wrapped = as_async(async_fn)

    assert async_wrapped is async_fn
    assert run_async(sync_wrapped(10)) == 11
    assert run_async(async_wrapped(10)) == 12


def test_sync_tools_run_off_the_event_loop_thread():
    loop_thread: list[int] = []

    @tool(args_model=EchoArgs, name="where")
    def where(args: EchoArgs) -> int:
        return threading.get_ident()

    async def scenario():
        loop_thread.append(threading.get_ident())
        return await where.call({"text": "x"})

    result = run_async(scenario())
    assert result.success
    assert result.output != loop_thread[0]


def test_tool_decorator_uses_docstring_for_default_description():
    @tool(args_model=EchoArgs)
    def doc_tool(args: EchoArgs) -> str:
        """Echoes transformed user text.

        Longer body that is not part of the description.
        """
        return args.text

    assert doc_tool.name == "doc_tool"
    assert doc_tool.spec.description == "Echoes transformed user text."
    assert doc_tool.spec.parameters_schema["type"] == "object"
    assert doc_tool.spec.requires_approval is None
    assert doc_tool.spec.fatal is False


def test_tool_decorator_carries_approval_and_fatal_flags():
    @tool(args_model=EchoArgs, name="wipe", requires_approval=True, fatal=True)
    def wipe(args: EchoArgs) -> str:
        return args.text

    @tool(args_model=EchoArgs, name="peek", requires_approval=False)
    def peek(args: EchoArgs) -> str:
        return args.text

    assert wipe.spec.requires_approval is True
    assert wipe.spec.fatal is True
    assert wipe.spec.description == "wipe"
    assert peek.spec.requires_approval is False


def test_tool_function_signature_variants_are_supported():
    @tool(args_model=EchoArgs, name="args_only")
    def args_only(args: EchoArgs) -> str:
        return args.text

    @tool(args_model=EchoArgs, name="args_ctx")
    def args_ctx(args: EchoArgs, ctx: ToolContext) -> str:
        return f"{ctx.user_id}:{args.text}"

    @tool(args_model=EchoArgs, name="ctx_args")
    async def ctx_args(ctx, args: EchoArgs) -> str:
        return f"{ctx.state_id}:{args.text}"

    result_1 = run_async(args_only.call({"text": "hello"}))
    result_2 = run_async(
        args_ctx.call({"text": "hello"}, ctx=ToolContext(user_id="u1"))
    )
    result_3 = run_async(
        ctx_args.call({"text": "hello"}, ctx=ToolContext(state_id="state_1"), tool_call_id="c9")
    )

    assert result_1.success and result_1.output == "hello"
    assert result_1.tool_name == "args_only"
    assert result_2.success and result_2.output == "u1:hello"
    assert result_3.success and result_3.output == "state_1:hello"
    assert result_3.tool_call_id == "c9"


def test_invalid_tool_signature_is_rejected():
    with pytest.raises(ToolValidationError):

        @tool(args_model=EchoArgs, name="bad")
        def bad(first: EchoArgs, second: str) -> str:
            return first.text + second

        _ = bad

    with pytest.raises(ToolValidationError, match="cannot have"):

        @tool(args_model=EchoArgs, name="variadic")
        def variadic(*args) -> str:
            return ""

        _ = variadic

    with pytest.raises(ToolValidationError, match="invalid signature"):

        @tool(args_model=EchoArgs, name="three")
        def three(a, b, ctx) -> str:
            return ""

        _ = three


def test_tool_validation_and_execution_errors_return_failed_tool_result():
    @tool(args_model=AddArgs, name="add")
    def add_tool(args: AddArgs) -> int:
        if args.b == 0:
            raise ValueError("b cannot be zero here")
        return args.a + args.b

    bad_validation = run_async(add_tool.call({"a": 1}))
    bad_execution = run_async(add_tool.call({"a": 1, "b": 0}))
    ok = run_async(add_tool.call({"a": 1, "b": "2"}))

    assert bad_validation.success is False
    assert "Invalid arguments for tool 'add'" in (bad_validation.error_message or "")

    assert bad_execution.success is False
    assert bad_execution.output is None
    assert bad_execution.error_message == "Error executing tool 'add': b cannot be zero here"

    assert ok.success and ok.output == 3


def test_tool_raise_on_error_raises_instead_of_returning_failure():
    @tool(args_model=AddArgs, name="must_add", raise_on_error=True)
    def must_add(args: AddArgs) -> int:
        return args.a // args.b

    with pytest.raises(ToolValidationError):
        run_async(must_add.call({"a": 1}))

    with pytest.raises(Exception, match="Error executing tool 'must_add'") as exc_info:
        run_async(must_add.call({"a": 1, "b": 0}))
    assert isinstance(exc_info.value.__cause__, ZeroDivisionError)


def test_tool_timeout_behavior_with_and_without_raise_on_error():
    @tool(args_model=EchoArgs, name="slow", timeout=0.01)
    async def slow_tool(args: EchoArgs) -> str:
        await asyncio.sleep(0.05)
        return args.text

    failed = run_async(slow_tool.call({"text": "x"}))
    assert failed.success is False
    assert "execution exceeded timeout" in (failed.error_message or "")

    passed = run_async(slow_tool.call({"text": "x"}, timeout=1.0))
    assert passed.success and passed.output == "x"

    @tool(args_model=EchoArgs, name="slow_raise", timeout=0.01, raise_on_error=True)
    async def slow_raise(args: EchoArgs) -> str:
        await asyncio.sleep(0.05)
        return args.text

    with pytest.raises(ToolTimeoutError):
        run_async(slow_raise.call({"text": "x"}))


def test_tool_class_direct_instantiation():
    def core_fn(args: EchoArgs) -> str:
        return args.text.upper()

    direct = Tool(
        spec=ToolSpec(
            name="shout",
            description="Uppercases text",
            parameters_schema=EchoArgs.model_json_schema(),
        ),
        fn=core_fn,
        args_model=EchoArgs,
    )

    result = run_async(direct.call({"text": "hey"}))
    assert result.output == "HEY"
    assert direct.validate({"text": "x"}) == EchoArgs(text="x")


def test_registry_register_call_and_records():
    @tool(args_model=EchoArgs, name="echo")
    def echo(args: EchoArgs) -> str:
        return args.text

    @tool(args_model=AddArgs, name="add")
    def add(args: AddArgs) -> int:
        return args.a + args.b

    registry = ToolRegistry()
    registry.register_many([echo, add])

    ok = run_async(registry.call("echo", {"text": "hi"}, tool_call_id="c1"))
    failed = run_async(registry.call("add", {"a": 1}, tool_call_id="c2"))

    assert registry.names() == ["echo", "add"]
    assert registry.has("echo") and not registry.has("missing")
    assert registry.get("add") is add
    assert [t.name for t in registry.list()] == ["echo", "add"]
    assert ok.output == "hi"
    assert failed.success is False

    records = registry.recent_calls()
    assert [(r.tool_name, r.ok, r.tool_call_id) for r in records] == [
        ("echo", True, "c1"),
        ("add", False, "c2"),
    ]
    assert records[1].error and "Invalid arguments" in records[1].error
    assert records[0].ended_at_s >= records[0].started_at_s
    assert registry.recent_calls(limit=1) == [records[1]]


def test_registry_duplicate_and_unknown_tool_errors():
    @tool(args_model=EchoArgs, name="echo_dup")
    def echo_dup(args: EchoArgs) -> str:
        return args.text

    @tool(args_model=EchoArgs, name="echo_dup", description="replacement")
    def replacement(args: EchoArgs) -> str:
        return args.text * 2

    registry = ToolRegistry()
    registry.register(echo_dup)

    with pytest.raises(ToolAlreadyRegisteredError):
        registry.register(echo_dup)

    registry.register(replacement, overwrite=True)
    assert registry.get("echo_dup").spec.description == "replacement"

    with pytest.raises(ToolNotFoundError):
        run_async(registry.call("missing", {"text": "x"}))

    with pytest.raises(ValueError):
        ToolRegistry(max_concurrency=0)


def test_registry_timeout_precedence():
    @tool(args_model=EchoArgs, name="slow_tool", timeout=0.5)
    async def slow_tool(args: EchoArgs) -> str:
        await asyncio.sleep(0.05)
        return args.text

    registry = ToolRegistry(default_timeout=0.01)
    registry.register(slow_tool)

    with pytest.raises(ToolTimeoutError):
        run_async(registry.call("slow_tool", {"text": "x"}, timeout=0.001))

    # the tool's own timeout wins over the registry default
    result = run_async(registry.call("slow_tool", {"text": "ok"}))
    assert result.success is True
    assert registry.recent_calls()[0].ok is False


def test_registry_limits_concurrent_calls():
    active = 0
    peak = 0

    @tool(args_model=EchoArgs, name="busy")
    async def busy(args: EchoArgs) -> str:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return args.text

    async def scenario():
        registry = ToolRegistry(max_concurrency=2)
        registry.register(busy)
        return await asyncio.gather(
            *(registry.call("busy", {"text": str(i)}) for i in range(5))
        )

    results = run_async(scenario())
    assert [r.output for r in results] == ["0", "1", "2", "3", "4"]
    assert peak == 2


def test_export_helpers_produce_function_tool_definitions():
    @tool(args_model=EchoArgs, name="exportable", description="export me")
    def exportable(args: EchoArgs) -> str:
        return args.text

    registry = ToolRegistry()
    registry.register(exportable)

    from_registry = registry.to_tool_definitions()
    from_tools = to_tool_definitions(registry.list())
    from_specs = to_tool_definitions_from_specs(registry.specs())
    from_spec = toolspec_to_definition(exportable.spec)

    assert from_registry == from_tools == from_specs == [from_spec]
    assert from_spec["type"] == "function"
    assert from_spec["function"]["name"] == "exportable"
    assert from_spec["function"]["description"] == "export me"
    assert from_spec["function"]["parameters"]["properties"]["text"]["type"] == "string"


def test_normalize_json_schema_fills_object_defaults():
    assert normalize_json_schema({}) == {"type": "object", "properties": {}}
    assert normalize_json_schema("nope") == {"type": "object", "properties": {}}

    source = {"type": "object", "properties": {"a": {"type": "integer"}}, "required": ["a"]}
    normalized = normalize_json_schema(source)
    assert normalized == source
    assert normalized is not source
