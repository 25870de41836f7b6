"""Error taxonomy for Nova conversations, retrieval, and tools."""

from __future__ import annotations


class NovaError(Exception):
    """Base class for all Nova errors."""


class ConversationNotFound(NovaError):
    """The conversation does not exist (or was deleted)."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class ConversationAccessDenied(NovaError):
    """The caller does not own the conversation."""

    def __init__(self, conversation_id: str, profile_id: str) -> None:
        self.conversation_id = conversation_id
        self.profile_id = profile_id
        super().__init__(
            f"Profile {profile_id} may not access conversation {conversation_id}"
        )


class UnknownToolError(NovaError):
    """The model asked for a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Unknown tool: {tool_name}")


class ToolInvocationFailure(NovaError):
    """A tool kept failing and the turn gave up on it."""

    def __init__(self, tool_name: str, reason: str, attempts: int) -> None:
        self.tool_name = tool_name
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Tool '{tool_name}' failed {attempts} consecutive times: {reason}"
        )


class GenerationServiceFailure(NovaError):
    """The external generation service failed irrecoverably."""


class RetrievalFailure(NovaError):
    """Content retrieval (embedding the query) failed."""
