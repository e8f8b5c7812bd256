from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Decorator for authoring tools from plain sync/async functions.
"""

import inspect
from typing import Any, Callable, Optional, Type, TypeVar

from pydantic import BaseModel

from .base import Tool, ToolFn, ToolSpec

ArgsT = TypeVar("ArgsT", bound=BaseModel)
ReturnT = TypeVar("ReturnT")


def _default_description(fn: Callable[..., Any], fallback: str) -> str:
    doc = inspect.getdoc(fn) or ""
    first_line = doc.splitlines()[0].strip() if doc else ""
    return first_line or fallback


def tool(
    *,
    args_model: Type[ArgsT],
    name: str | None = None,
    description: str | None = None,
    timeout: float | None = None,
    requires_approval: Optional[bool] = None,
    fatal: bool = False,
    raise_on_error: bool = False,
) -> Callable[[ToolFn], Tool[ArgsT, ReturnT]]:
    """
    Create a Tool from a sync/async function and a Pydantic v2 args model.

    Tool function can be sync or async and should use one of:
      def/async def fn(args: ArgsModel) -> Any
      def/async def fn(args: ArgsModel, ctx: ToolContext) -> Any
      def/async def fn(ctx: ToolContext, args: ArgsModel) -> Any

    requires_approval:
      - None (default): follow the manifest's human-in-the-loop policy
      - True/False: always / never suspend the run for approval before calling

    fatal:
      - False (default): failures are reported back to the model
      - True: a failure fails the whole run
    """

    def decorator(fn: ToolFn) -> Tool[ArgsT, ReturnT]:
        tool_name = name or getattr(fn, "__name__", "tool")
        tool_desc = description or _default_description(fn, tool_name)

        schema = args_model.model_json_schema()
        spec = ToolSpec(
            name=tool_name,
            description=tool_desc,
            parameters_schema=schema,
            requires_approval=requires_approval,
            fatal=fatal,
        )

        return Tool(
            spec=spec,
            fn=fn,
            args_model=args_model,
            default_timeout=timeout,
            raise_on_error=raise_on_error,
        )

    return decorator
