from __future__ import annotations
"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Per-run tool registry.

The runner builds one `ToolRegistry` from a manifest's tools at the start of
every run or resume. The registry resolves model tool calls by name, bounds
concurrent execution, applies the timeout precedence and keeps a short log of
call outcomes for diagnostics.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..llms.types import ToolDefinition
from .base import Tool, ToolContext, ToolResult, ToolSpec
from .errors import ToolAlreadyRegisteredError, ToolNotFoundError, ToolTimeoutError
from .export import toolspec_to_definition


@dataclass(frozen=True, slots=True)
class ToolCallRecord:
    """One finished `ToolRegistry.call`, successful or not."""

    tool_name: str
    started_at_s: float
    ended_at_s: float
    ok: bool
    error: Optional[str] = None
    tool_call_id: Optional[str] = None


class ToolRegistry:
    """
    Name-indexed tool collection with bounded async execution.

    Args:
        max_concurrency: Upper bound on simultaneously running calls.
        default_timeout: Seconds applied when neither the call nor the tool
            sets a timeout.
        max_records: Size of the in-memory call log.
    """

    def __init__(
        self,
        *,
        max_concurrency: int = 32,
        default_timeout: float | None = None,
        max_records: int = 1000,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        self._tools: Dict[str, Tool[Any, Any]] = {}
        self._sem = asyncio.Semaphore(max_concurrency)
        self._default_timeout = default_timeout
        self._max_records = max_records
        self._records: List[ToolCallRecord] = []

    # ''''''''''''''''''''''''''''''''''''''
    # Registration
    # ''''''''''''''''''''''''''''''''''''''

    def register(self, tool: Tool[Any, Any], *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ToolAlreadyRegisteredError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def register_many(self, tools: Iterable[Tool[Any, Any]], *, overwrite: bool = False) -> None:
        for item in tools:
            self.register(item, overwrite=overwrite)

    def get(self, name: str) -> Tool[Any, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Unknown tool: {name}")
        return tool

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> List[Tool[Any, Any]]:
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools)

    # ''''''''''''''''''''''''''''''''''''''
    # Execution
    # ''''''''''''''''''''''''''''''''''''''

    def _timeout_for(self, tool: Tool[Any, Any], timeout: float | None) -> float | None:
        # call argument, then the tool's own default, then the registry default
        for candidate in (timeout, tool.default_timeout, self._default_timeout):
            if candidate is not None:
                return candidate
        return None

    def _log(
        self,
        name: str,
        started: float,
        *,
        ok: bool,
        error: str | None,
        tool_call_id: str | None,
    ) -> None:
        self._records.append(
            ToolCallRecord(
                tool_name=name,
                started_at_s=started,
                ended_at_s=time.time(),
                ok=ok,
                error=error,
                tool_call_id=tool_call_id,
            )
        )
        if len(self._records) > self._max_records:
            del self._records[: -self._max_records]

    async def call(
        self,
        name: str,
        raw_args: Dict[str, Any],
        *,
        ctx: ToolContext | None = None,
        timeout: float | None = None,
        tool_call_id: str | None = None,
    ) -> ToolResult[Any]:
        """
        Execute the tool registered as `name`.

        Tool-level failures come back as a failed `ToolResult`. Exceeding the
        effective timeout at the registry level raises instead.

        Raises:
            ToolNotFoundError: When no tool is registered under `name`.
            ToolTimeoutError: When the effective timeout elapses.
        """
        tool = self.get(name)
        limit = self._timeout_for(tool, timeout)
        started = time.time()

        async with self._sem:
            pending = tool.call(raw_args, ctx=ctx or ToolContext(), tool_call_id=tool_call_id)
            try:
                if limit is None:
                    result = await pending
                else:
                    result = await asyncio.wait_for(pending, timeout=limit)
            except asyncio.TimeoutError as e:
                err = ToolTimeoutError(f"Tool '{name}' timed out after {limit} seconds.")
                self._log(name, started, ok=False, error=str(err), tool_call_id=tool_call_id)
                raise err from e
            except Exception as e:
                self._log(name, started, ok=False, error=str(e), tool_call_id=tool_call_id)
                raise

        self._log(
            name,
            started,
            ok=result.success,
            error=result.error_message,
            tool_call_id=tool_call_id,
        )
        return result

    # ''''''''''''''''''''''''''''''''''''''
    # Observability
    # ''''''''''''''''''''''''''''''''''''''

    def recent_calls(self, limit: int = 100) -> List[ToolCallRecord]:
        return self._records[-limit:]

    # ''''''''''''''''''''''''''''''''''''''
    # Export
    # ''''''''''''''''''''''''''''''''''''''

    def specs(self) -> List[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    def to_tool_definitions(self) -> List[ToolDefinition]:
        return [toolspec_to_definition(spec) for spec in self.specs()]
