"""Plugin contract: parameters in, ``ToolResult`` out."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel


@dataclass
class ToolResult:
    """Outcome of one plugin call.

    Exactly one of ``data`` or ``error`` is meaningful. Failures are values,
    not exceptions: the orchestrator hands them back to the model as an
    ``is_error`` tool_result block.
    """

    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """JSON text for the tool_result content block."""
        payload = {"error": self.error} if self.error else (self.data or {})
        return json.dumps(payload, default=str)


class ToolParams(BaseModel):
    """Base for plugin parameter models; its JSON schema is what the model sees."""


class BaseTool(ABC):
    """A plugin that needs state, such as a search service.

    Stateless plugins can use ``@registry.tool()`` instead.

    Example::

        class LookupTool(BaseTool):
            name = "lookup"
            description = "Look something up"
            category = "knowledge"
            params_model = LookupParams

            def __init__(self, service):
                self._service = service

            async def execute(self, **kwargs) -> ToolResult:
                return ToolResult(data=await self._service.find(kwargs["term"]))
    """

    name: str = ""
    description: str = ""
    category: str = ""
    params_model: type[ToolParams] | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Run with arguments already validated against ``params_model``."""
