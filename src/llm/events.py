"""Events yielded by a generation stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class TextDelta:
    """A chunk of assistant text."""

    text: str


@dataclass
class ToolCallRequest:
    """The model asked for a tool to be run."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationDone:
    """End of one generation round.

    ``stop_reason`` is ``"tool_use"`` when the round ended to wait for tool
    results, anything else means the response is complete.
    """

    stop_reason: str = "end_turn"
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


GenerationEvent = TextDelta | ToolCallRequest | GenerationDone
