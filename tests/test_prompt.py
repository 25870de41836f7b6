"""Tests for system prompt and history assembly."""

from src.llm.prompt import (
    FINAL_ROUND_NOTICE,
    NOVA_PERSONA,
    build_system_prompt,
    format_context,
    format_learner_profile,
    format_memories,
    to_api_messages,
)
from src.nova.models import (
    TRUNCATION_MARKER,
    ContentSearchResult,
    ContentSource,
    LearnerProfile,
    Memory,
    MemoryCategory,
    Message,
    MessageRole,
)


def _result(**kwargs) -> ContentSearchResult:
    defaults = {
        "chunk_id": "c1",
        "source": ContentSource.BOOK,
        "title": "Clean Code",
        "content": "Functions should do one thing.",
        "similarity": 0.9,
    }
    defaults.update(kwargs)
    return ContentSearchResult(**defaults)


def _msg(role: MessageRole, content: str, **kwargs) -> Message:
    return Message(conversation_id="c", role=role, content=content, **kwargs)


# -- format_context ------------------------------------------------------------


def test_format_context_empty() -> None:
    assert format_context([]) == ""


def test_format_context_attributes_sources() -> None:
    text = format_context([
        _result(author="Robert Martin", source_url="https://example.com/cc"),
        _result(chunk_id="c2", source=ContentSource.PULSE, title="Thread on naming", content="Names matter."),
    ])
    assert text.startswith("# Retrieved Context")
    assert "[1] Book: Clean Code by Robert Martin (https://example.com/cc)" in text
    assert "[2] Community: Thread on naming" in text
    assert "Functions should do one thing." in text
    assert "Names matter." in text


# -- build_system_prompt -------------------------------------------------------


def test_system_prompt_caches_persona() -> None:
    blocks = build_system_prompt()
    assert blocks[0]["text"] == NOVA_PERSONA
    assert blocks[0]["cache_control"] == {"type": "ephemeral"}
    assert blocks[1]["text"].startswith("Current time:")
    assert len(blocks) == 2


def test_system_prompt_includes_context() -> None:
    blocks = build_system_prompt([_result()])
    assert len(blocks) == 3
    assert "Clean Code" in blocks[2]["text"]


def test_system_prompt_final_round_notice() -> None:
    blocks = build_system_prompt(final_round=True)
    assert blocks[-1]["text"] == FINAL_ROUND_NOTICE


def test_system_prompt_learner_blocks_before_context() -> None:
    profile = LearnerProfile(profile_id="alice", current_role="Backend developer")
    memories = [
        Memory(profile_id="alice", category=MemoryCategory.CURRENT_FOCUS, content="Learning asyncio"),
    ]
    blocks = build_system_prompt([_result()], profile=profile, memories=memories)

    assert len(blocks) == 5
    assert blocks[2]["text"].startswith("# About This Learner")
    assert blocks[3]["text"].startswith("## Recalled Memories")
    assert "Clean Code" in blocks[4]["text"]


# -- Learner profile and memories ----------------------------------------------


def test_format_learner_profile_lists_known_fields() -> None:
    text = format_learner_profile(
        LearnerProfile(
            profile_id="alice",
            current_role="Backend developer",
            experience_years=4,
            primary_tech_stack="Python, PostgreSQL",
            identified_struggles="Async error handling",
        )
    )
    assert text.startswith("# About This Learner")
    assert "- Role: Backend developer" in text
    assert "- Experience: 4 years" in text
    assert "- Tech stack: Python, PostgreSQL" in text
    assert "- Struggles: Async error handling" in text
    assert "Learning goals" not in text


def test_format_learner_profile_empty() -> None:
    assert format_learner_profile(None) == ""
    assert format_learner_profile(LearnerProfile(profile_id="alice")) == ""


def test_format_memories_keeps_order_with_category_labels() -> None:
    text = format_memories([
        Memory(profile_id="a", category=MemoryCategory.STRUGGLE_IDENTIFIED, content="Confused by GIL"),
        Memory(profile_id="a", category=MemoryCategory.TOPIC_DISCUSSED, content="Thread pools"),
    ])
    assert text.splitlines()[1:] == [
        "",
        "- [Struggle identified] Confused by GIL",
        "- [Topic discussed] Thread pools",
    ]
    assert format_memories([]) == ""


# -- to_api_messages -----------------------------------------------------------


def test_alternating_history_passes_through() -> None:
    history = [
        _msg(MessageRole.USER, "hi"),
        _msg(MessageRole.ASSISTANT, "hello"),
        _msg(MessageRole.USER, "what's a mutex?"),
    ]
    assert to_api_messages(history) == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "user", "content": "what's a mutex?"},
    ]


def test_truncated_reply_gets_marker() -> None:
    history = [
        _msg(MessageRole.USER, "explain"),
        _msg(MessageRole.ASSISTANT, "The answer is", truncated=True),
        _msg(MessageRole.USER, "go on"),
    ]
    messages = to_api_messages(history)
    assert messages[1]["content"] == "The answer is" + TRUNCATION_MARKER


def test_empty_truncated_reply_keeps_marker_only() -> None:
    history = [
        _msg(MessageRole.USER, "explain"),
        _msg(MessageRole.ASSISTANT, "", truncated=True),
    ]
    messages = to_api_messages(history)
    assert messages[1]["content"] == TRUNCATION_MARKER.strip()


def test_consecutive_same_role_messages_merge() -> None:
    history = [
        _msg(MessageRole.USER, "first"),
        _msg(MessageRole.USER, "second"),
    ]
    assert to_api_messages(history) == [{"role": "user", "content": "first\n\nsecond"}]


def test_leading_assistant_and_tool_messages_dropped() -> None:
    history = [
        _msg(MessageRole.ASSISTANT, "orphan"),
        _msg(MessageRole.TOOL, "tool output"),
        _msg(MessageRole.USER, "hi"),
    ]
    assert to_api_messages(history) == [{"role": "user", "content": "hi"}]


def test_empty_messages_skipped() -> None:
    history = [
        _msg(MessageRole.USER, "hi"),
        _msg(MessageRole.ASSISTANT, ""),
        _msg(MessageRole.USER, "anyone?"),
    ]
    assert to_api_messages(history) == [{"role": "user", "content": "hi\n\nanyone?"}]
