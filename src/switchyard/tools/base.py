from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Tool types for agent runs.

A tool is a plain sync or async function paired with a Pydantic v2 model for
its arguments. The runner only ever sees `Tool.call`, which validates raw
model-produced arguments, applies the timeout and folds every failure into a
`ToolResult` so the failure can be shown to the model as an error tool result.
"""

import asyncio
import functools
import inspect
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Optional,
    Type,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ValidationError

from .errors import ToolError, ToolExecutionError, ToolTimeoutError, ToolValidationError


ArgsT = TypeVar("ArgsT", bound=BaseModel)
ReturnT = TypeVar("ReturnT")

AsyncToolFn = Callable[..., Awaitable[Any]]
SyncToolFn = Callable[..., Any]
ToolFn = Union[AsyncToolFn, SyncToolFn]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """
    Model-facing description of a tool plus its run-time policy flags.

    Attributes:
        name: Unique tool name within a manifest.
        description: Text shown to the model.
        parameters_schema: JSON Schema of the arguments.
        requires_approval: `None` defers to the manifest's approval policy.
        fatal: When `True` a failed call fails the whole run.
    """

    name: str
    description: str
    parameters_schema: Dict[str, Any]
    requires_approval: Optional[bool] = None
    fatal: bool = False


@dataclass(frozen=True, slots=True)
class ToolContext:
    """Run identity handed to tools that ask for it."""

    state_id: str | None = None
    manifest_id: str | None = None
    tool_call_id: str | None = None
    user_id: str | None = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult(Generic[ReturnT]):
    """Outcome of one tool call. Failures set `success=False` and `error_message`."""

    output: Optional[ReturnT] = None
    success: bool = True
    error_message: Optional[str] = None
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None


def as_async(fn: ToolFn) -> AsyncToolFn:
    """
    Return an awaitable version of `fn`.

    Coroutine functions are returned unchanged; sync functions are run in the
    default thread pool so a blocking tool never stalls the event loop.
    """
    if inspect.iscoroutinefunction(fn):
        return fn  # type: ignore[return-value]

    @functools.wraps(fn)
    async def _threaded(*args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))

    return _threaded


def _is_ctx_param(param: inspect.Parameter) -> bool:
    # annotations may be strings under `from __future__ import annotations`
    return param.name == "ctx" or param.annotation in (ToolContext, "ToolContext")


def _infer_call_style(fn: Callable[..., Any]) -> str:
    """
    Work out where the `ToolContext` goes when calling `fn`.

    Supported signatures are `(args)`, `(args, ctx)` and `(ctx, args)`. The
    context parameter is recognised by the name `ctx` or a `ToolContext`
    annotation.

    Returns:
        One of `"args"`, `"args_ctx"` or `"ctx_args"`.

    Raises:
        ToolValidationError: For any other signature.
    """
    fn_name = getattr(fn, "__name__", "unknown")
    sig = inspect.signature(fn)
    params = list(sig.parameters.values())

    if any(p.kind in (p.VAR_KEYWORD, p.VAR_POSITIONAL) for p in params):
        raise ToolValidationError(f"Tool function '{fn_name}' cannot have *args or **kwargs.")

    if len(params) == 1:
        return "args"
    if len(params) == 2:
        if _is_ctx_param(params[0]):
            return "ctx_args"
        if _is_ctx_param(params[1]):
            return "args_ctx"
        raise ToolValidationError(
            f"Tool function '{fn_name}' must take ToolContext as 'ctx' "
            f"(by name or annotation). Signature: {sig}"
        )
    raise ToolValidationError(
        f"Tool function '{fn_name}' has invalid signature. "
        f"Expected (args), (args, ctx) or (ctx, args). Got {sig}."
    )


class Tool(Generic[ArgsT, ReturnT]):
    """
    Function-backed tool with pydantic-validated arguments.

    `call` never raises tool failures unless `raise_on_error=True`; the
    registry and the runner rely on `ToolResult.success` instead.
    """

    def __init__(
        self,
        *,
        spec: ToolSpec,
        fn: ToolFn,
        args_model: Type[ArgsT],
        default_timeout: Optional[float] = None,
        raise_on_error: bool = False,
    ) -> None:
        self.spec = spec
        self.args_model = args_model
        self.default_timeout = default_timeout
        self.raise_on_error = raise_on_error
        self._call_style = _infer_call_style(fn)
        self._fn = as_async(fn)

    @property
    def name(self) -> str:
        return self.spec.name

    def validate(self, raw_args: Dict[str, Any]) -> ArgsT:
        """
        Validate model-produced arguments.

        Raises:
            ToolValidationError: When the arguments do not match `args_model`.
        """
        try:
            return self.args_model.model_validate(raw_args)
        except ValidationError as e:
            raise ToolValidationError(f"Invalid arguments for tool '{self.name}': {e}") from e

    def _invoke(self, args: ArgsT, ctx: ToolContext) -> Awaitable[Any]:
        if self._call_style == "ctx_args":
            return self._fn(ctx, args)
        if self._call_style == "args_ctx":
            return self._fn(args, ctx)
        return self._fn(args)

    def _failed(self, err: ToolError, tool_call_id: Optional[str]) -> ToolResult[ReturnT]:
        return ToolResult(
            success=False,
            error_message=str(err),
            tool_name=self.name,
            tool_call_id=tool_call_id,
        )

    async def call(
        self,
        raw_args: Dict[str, Any],
        *,
        ctx: Optional[ToolContext] = None,
        timeout: Optional[float] = None,
        tool_call_id: Optional[str] = None,
    ) -> ToolResult[ReturnT]:
        """
        Validate `raw_args` and run the tool.

        Args:
            raw_args: Arguments as produced by the model.
            ctx: Run context; an empty one is used when omitted.
            timeout: Seconds; overrides `default_timeout` for this call.
            tool_call_id: Echoed on the result.

        Returns:
            A successful or failed `ToolResult`.

        Raises:
            ToolError: Only when `raise_on_error` is set.
        """
        try:
            args = self.validate(raw_args)
        except ToolValidationError as e:
            if self.raise_on_error:
                raise
            return self._failed(e, tool_call_id)

        limit = self.default_timeout if timeout is None else timeout
        pending = self._invoke(args, ctx or ToolContext())
        try:
            output = await (pending if limit is None else asyncio.wait_for(pending, timeout=limit))
        except asyncio.TimeoutError:
            err: ToolError = ToolTimeoutError(
                f"Tool '{self.name}' execution exceeded timeout of {limit} seconds."
            )
            if self.raise_on_error:
                raise err
            return self._failed(err, tool_call_id)
        except Exception as e:
            err = ToolExecutionError(f"Error executing tool '{self.name}': {e}")
            if self.raise_on_error:
                raise err from e
            return self._failed(err, tool_call_id)

        return ToolResult(output=output, tool_name=self.name, tool_call_id=tool_call_id)
