"""Tool invoker — runs one round of tool calls for a generation turn."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from src.config import settings
from src.nova.errors import ToolInvocationFailure
from src.nova.models import ToolInvocationRecord

if TYPE_CHECKING:
    from src.llm.events import ToolCallRequest
    from src.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ToolInvoker:
    """Dispatches tool calls for a single turn and tracks repeated failures.

    One invoker is created per turn. Calls requested together run
    concurrently, but records come back in the order they were requested.
    Consecutive failures are counted per tool name; a success resets that
    tool's count.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout: float | None = None,
        max_consecutive_failures: int | None = None,
    ) -> None:
        self._registry = registry
        self._timeout = timeout if timeout is not None else settings.tool_timeout_seconds
        self._max_failures = (
            max_consecutive_failures
            if max_consecutive_failures is not None
            else settings.max_consecutive_tool_failures
        )
        self._consecutive_failures: dict[str, int] = {}
        self._last_errors: dict[str, str] = {}

    async def invoke(self, call: ToolCallRequest) -> ToolInvocationRecord:
        """Run a single tool call and record the outcome."""
        t0 = time.monotonic()
        result = await self._registry.execute(call.name, call.input, timeout=self._timeout)
        duration_ms = (time.monotonic() - t0) * 1000
        return ToolInvocationRecord(
            tool_use_id=call.id,
            tool_name=call.name,
            input=call.input,
            output=result.data if result.success else None,
            error=result.error,
            duration_ms=duration_ms,
        )

    async def invoke_all(self, calls: list[ToolCallRequest]) -> list[ToolInvocationRecord]:
        """Run a batch of tool calls concurrently, preserving request order.

        If the surrounding task is cancelled, the in-flight calls are
        cancelled with it.
        """
        if not calls:
            return []

        records = list(await asyncio.gather(*(self.invoke(call) for call in calls)))
        for record in records:
            self._track(record)

        logger.info(
            "Tool round: %d call(s), %d failed",
            len(records),
            sum(1 for r in records if not r.success),
        )
        return records

    def _track(self, record: ToolInvocationRecord) -> None:
        if record.success:
            self._consecutive_failures[record.tool_name] = 0
            return
        self._consecutive_failures[record.tool_name] = (
            self._consecutive_failures.get(record.tool_name, 0) + 1
        )
        self._last_errors[record.tool_name] = record.error or ""

    def check_failures(self) -> None:
        """Raise if any tool has failed too many times in a row.

        Raises:
            ToolInvocationFailure: The turn should stop retrying this tool.
        """
        for name, count in self._consecutive_failures.items():
            if count >= self._max_failures:
                raise ToolInvocationFailure(name, self._last_errors.get(name, ""), count)
