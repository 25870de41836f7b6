"""Events streamed to the caller during a conversation turn."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from src.nova.models import Message, ToolInvocationRecord


class TurnState(StrEnum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    TOOL_PENDING = "tool_pending"
    COMPLETING = "completing"
    ERRORED = "errored"


class FailureKind(StrEnum):
    GENERATION = "generation_failure"
    TOOL = "tool_failure"
    CANCELLED = "cancelled"
    INTERNAL = "internal_error"


@dataclass
class TurnStarted:
    type: ClassVar[str] = "start"

    conversation_id: str
    is_new_conversation: bool


@dataclass
class TurnText:
    type: ClassVar[str] = "content"

    text: str


@dataclass
class TurnToolCall:
    type: ClassVar[str] = "tool_call"

    tool_use_id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class TurnToolResult:
    type: ClassVar[str] = "tool_result"

    record: ToolInvocationRecord


@dataclass
class TurnCompleted:
    type: ClassVar[str] = "done"

    message: Message


@dataclass
class TurnFailed:
    """Terminal error event. ``partial_content`` is what was already streamed."""

    type: ClassVar[str] = "error"

    kind: FailureKind
    error: str
    partial_content: str = ""
    message_id: str | None = None


TurnEvent = TurnStarted | TurnText | TurnToolCall | TurnToolResult | TurnCompleted | TurnFailed


def event_payload(event: TurnEvent) -> dict[str, Any]:
    """Flatten an event into a JSON-friendly dict with a ``type`` key."""
    if isinstance(event, TurnToolResult):
        return {"type": event.type, **event.record.model_dump()}
    if isinstance(event, TurnCompleted):
        return {
            "type": event.type,
            "message_id": event.message.id,
            "created_at": event.message.created_at,
        }
    return {"type": event.type, **asdict(event)}
