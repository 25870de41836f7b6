"""Tool registry — the catalog of plugins Nova can call during a turn."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from src.nova.errors import UnknownToolError
from src.tools.base import BaseTool, ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

_EMPTY_SCHEMA: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class ToolDef:
    """A registered plugin: its model-facing description plus the handler."""

    name: str
    description: str
    category: str
    handler: Callable[..., Awaitable[ToolResult]]
    params_model: type[ToolParams] | None = None


class ToolRegistry:
    """Maps tool names to handlers behind one invocation contract.

    Stateless plugins register with the decorator::

        @registry.tool(name="ping", description="Ping", category="utility")
        async def ping() -> ToolResult:
            return ToolResult(data={"pong": True})

    Plugins that hold a service (e.g. the knowledge-base search) subclass
    ``BaseTool`` and go through ``register()``. Registration happens while
    Nova is being assembled; turns only read the catalog.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable:
        """Decorator to register an async function as a tool."""

        def decorator(fn: Callable[..., Awaitable[ToolResult]]) -> Callable:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            self._add(ToolDef(name, description, category, fn, params_model))
            return fn

        return decorator

    def register(self, plugin: BaseTool) -> None:
        """Register a class-based plugin instance."""
        self._add(
            ToolDef(
                name=plugin.name,
                description=plugin.description,
                category=plugin.category,
                handler=plugin.execute,
                params_model=plugin.params_model,
            )
        )

    def _add(self, tool_def: ToolDef) -> None:
        if tool_def.name in self._tools:
            logger.info("Replacing registered tool '%s'", tool_def.name)
        self._tools[tool_def.name] = tool_def

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_tools_by_category(self) -> dict[str, list[ToolDef]]:
        groups: dict[str, list[ToolDef]] = {}
        for tool_def in self._tools.values():
            groups.setdefault(tool_def.category, []).append(tool_def)
        return groups

    def get_schemas(self) -> list[dict[str, Any]]:
        """Tool definitions in the Messages API format (``input_schema``)."""
        return [_tool_schema(t) for t in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> ToolResult:
        """Validate *arguments* and run the named tool.

        Every failure mode (unknown name, bad arguments, handler exception,
        timeout) is returned as ``ToolResult(error=...)`` so the model can
        see it and adjust. Cancellation of the calling task still propagates.
        """
        tool_def = self._tools.get(name)
        if tool_def is None:
            logger.warning("Model requested unknown tool '%s'", name)
            return ToolResult(error=str(UnknownToolError(name)))

        if tool_def.params_model is not None:
            try:
                kwargs = tool_def.params_model(**arguments).model_dump()
            except ValidationError as exc:
                logger.warning("Invalid arguments for tool '%s': %s", name, arguments)
                return ToolResult(error=f"Invalid arguments for tool '{name}': {_summarize(exc)}")
        else:
            kwargs = dict(arguments)

        logger.info("Tool '%s' called with %s", name, kwargs)
        t0 = time.monotonic()
        try:
            async with asyncio.timeout(timeout):
                result = await tool_def.handler(**kwargs)
        except TimeoutError:
            logger.warning("Tool '%s' timed out after %.2fs", name, time.monotonic() - t0)
            return ToolResult(error=f"Tool '{name}' timed out after {timeout}s")
        except Exception:
            logger.exception("Tool '%s' failed in %.2fs", name, time.monotonic() - t0)
            return ToolResult(error=f"Tool '{name}' failed. Check logs for details.")

        elapsed = time.monotonic() - t0
        if result.success:
            logger.info("Tool '%s' succeeded in %.2fs", name, elapsed)
        else:
            logger.warning("Tool '%s' returned error in %.2fs: %s", name, elapsed, result.error)
        return result


def _tool_schema(tool_def: ToolDef) -> dict[str, Any]:
    if tool_def.params_model is None:
        input_schema = dict(_EMPTY_SCHEMA)
    else:
        input_schema = tool_def.params_model.model_json_schema()
        # The class name is noise to the model
        input_schema.pop("title", None)
    return {
        "name": tool_def.name,
        "description": tool_def.description,
        "input_schema": input_schema,
    }


def _summarize(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'input'}: {err['msg']}"
        for err in exc.errors()
    )


# Global registry; plugins register here unless Nova is given its own.
registry = ToolRegistry()
