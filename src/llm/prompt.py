"""System prompt and message history assembly."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from src.nova.models import TRUNCATION_MARKER, MessageRole

if TYPE_CHECKING:
    from src.nova.models import ContentSearchResult, LearnerProfile, Memory, Message

logger = logging.getLogger(__name__)

NOVA_PERSONA = """\
You are Nova, an AI learning coach. You help developers grow their technical \
skills through conversation.

## Your Voice
You sound like a senior developer friend who's been through the trenches. \
Conversational, not formal. You get straight to the point without being curt.

You have opinions and you share them. When something is a bad idea, you say \
so. When there's nuance, you explain what the trade-off actually depends on.

## How to Help
- Give your actual take first, then explain the reasoning
- Use concrete examples from real development scenarios
- Ask follow-up questions when the context would change your answer
- If you don't know, say so"""

CONTEXT_INSTRUCTIONS = (
    "The following content was retrieved from the knowledge base for the "
    "user's latest message. Prefer it over general knowledge and mention the "
    "source when you rely on it."
)

LEARNER_INSTRUCTIONS = (
    "Use this to pitch explanations at the right level and pick relevant "
    "examples. Don't recite it back to the learner."
)

FINAL_ROUND_NOTICE = (
    "Tool use is no longer available for this response. Answer with the "
    "information you already have."
)


def format_context(results: list[ContentSearchResult]) -> str:
    """Render retrieved chunks with source attribution."""
    if not results:
        return ""

    lines = ["# Retrieved Context\n", CONTEXT_INSTRUCTIONS, ""]
    for i, result in enumerate(results, start=1):
        header = f"[{i}] {result.source.label}: {result.title}"
        if result.author:
            header += f" by {result.author}"
        if result.source_url:
            header += f" ({result.source_url})"
        lines.append(header)
        lines.append(result.content)
        lines.append("")
    return "\n".join(lines).rstrip()


def format_learner_profile(profile: LearnerProfile | None) -> str:
    """Render the learner's profile, or "" when nothing is known."""
    if profile is None:
        return ""

    fields = [
        ("Role", profile.current_role),
        (
            "Experience",
            f"{profile.experience_years} years" if profile.experience_years is not None else None,
        ),
        ("Tech stack", profile.primary_tech_stack),
        ("Current project", profile.current_project),
        ("Learning goals", profile.learning_goals),
        ("Learning style", profile.learning_style),
        ("Preferred pace", profile.preferred_pace),
        ("Strengths", profile.identified_strengths),
        ("Struggles", profile.identified_struggles),
    ]
    lines = [f"- {name}: {value}" for name, value in fields if value]
    if not lines:
        return ""
    return "\n".join(["# About This Learner\n", LEARNER_INSTRUCTIONS, "", *lines])


def format_memories(memories: list[Memory]) -> str:
    """Render recalled memories, highest ranked first."""
    if not memories:
        return ""

    lines = ["## Recalled Memories\n"]
    for memory in memories:
        lines.append(f"- [{memory.category.label}] {memory.content}")
    return "\n".join(lines)


def build_system_prompt(
    context: list[ContentSearchResult] | None = None,
    *,
    profile: LearnerProfile | None = None,
    memories: list[Memory] | None = None,
    final_round: bool = False,
) -> list[dict[str, Any]]:
    """Assemble the system prompt blocks.

    The persona is static and gets ``cache_control`` so it is cached across
    tool-calling rounds. Time, the learner's profile and memories, retrieved
    context and the final-round notice follow as separate blocks, each
    omitted when empty.
    """
    now = datetime.now(UTC)
    blocks: list[dict[str, Any]] = [
        {
            "type": "text",
            "text": NOVA_PERSONA,
            "cache_control": {"type": "ephemeral"},
        },
        {
            "type": "text",
            "text": f"Current time: {now.strftime('%A, %B %d, %Y %H:%M')} UTC",
        },
    ]

    for text in (
        format_learner_profile(profile),
        format_memories(memories or []),
        format_context(context or []),
    ):
        if text:
            blocks.append({"type": "text", "text": text})

    if final_round:
        blocks.append({"type": "text", "text": FINAL_ROUND_NOTICE})

    return blocks


def to_api_messages(history: list[Message]) -> list[dict[str, Any]]:
    """Format stored messages for the Claude API.

    Only user and assistant text is replayed; interrupted replies keep a
    marker so the model knows they were cut short. Consecutive messages with the
    same role are merged so the API sees alternating turns.
    """
    api_messages: list[dict[str, Any]] = []
    for message in history:
        if message.role not in (MessageRole.USER, MessageRole.ASSISTANT):
            continue
        content = message.content
        if message.truncated:
            content = (content + TRUNCATION_MARKER).strip()
        if not content:
            continue
        role = message.role.value
        # The API requires the first message to come from the user
        if not api_messages and role != MessageRole.USER.value:
            continue
        if api_messages and api_messages[-1]["role"] == role:
            api_messages[-1]["content"] += "\n\n" + content
        else:
            api_messages.append({"role": role, "content": content})
    return api_messages
