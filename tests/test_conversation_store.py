"""Tests for ConversationStore and ContentChunkStore — aiosqlite persistence."""

import asyncio

import pytest

from src.nova.models import (
    ContentSource,
    Conversation,
    Message,
    MessageRole,
    ToolInvocationRecord,
)
from src.nova.store import ContentChunkStore, ConversationStore
from tests.fakes import make_chunk


def _message(conversation_id: str, content: str, role: MessageRole = MessageRole.USER, **kwargs) -> Message:
    return Message(conversation_id=conversation_id, role=role, content=content, **kwargs)


@pytest.fixture
async def conversation(conversation_store: ConversationStore) -> Conversation:
    return await conversation_store.create_conversation(
        Conversation(id="conv1", profile_id="alice", title="First chat")
    )


# -- Conversations -------------------------------------------------------------


async def test_create_and_get(conversation_store: ConversationStore, conversation: Conversation) -> None:
    fetched = await conversation_store.get_conversation("conv1")
    assert fetched is not None
    assert fetched.profile_id == "alice"
    assert fetched.title == "First chat"
    assert fetched.deleted is False


async def test_get_missing_returns_none(conversation_store: ConversationStore) -> None:
    assert await conversation_store.get_conversation("nope") is None


async def test_soft_delete_hides_conversation(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    assert await conversation_store.delete_conversation("conv1") is True
    assert await conversation_store.get_conversation("conv1") is None
    assert await conversation_store.delete_conversation("conv1") is False


# -- Messages ------------------------------------------------------------------


async def test_positions_start_at_zero_and_increase(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    first = await conversation_store.append_message(_message("conv1", "hello"))
    second = await conversation_store.append_message(
        _message("conv1", "hi there", MessageRole.ASSISTANT)
    )
    assert first.position == 0
    assert second.position == 1


async def test_append_ignores_caller_position(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    stored = await conversation_store.append_message(_message("conv1", "hello", position=42))
    assert stored.position == 0


async def test_concurrent_appends_get_distinct_positions(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    await asyncio.gather(
        *(conversation_store.append_message(_message("conv1", f"m{i}")) for i in range(8))
    )
    messages = await conversation_store.list_messages("conv1")
    assert [m.position for m in messages] == list(range(8))


async def test_positions_are_per_conversation(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    await conversation_store.create_conversation(Conversation(id="conv2", profile_id="alice"))
    await conversation_store.append_message(_message("conv1", "a"))
    stored = await conversation_store.append_message(_message("conv2", "b"))
    assert stored.position == 0


async def test_list_messages_round_trips_fields(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    record = ToolInvocationRecord(
        tool_use_id="t1",
        tool_name="search_knowledge_base",
        input={"query": "mutex"},
        output={"count": 1},
        duration_ms=12.5,
    )
    await conversation_store.append_message(_message("conv1", "what is a mutex?"))
    await conversation_store.append_message(
        _message(
            "conv1",
            "A mutex is",
            MessageRole.ASSISTANT,
            tool_invocations=[record],
            truncated=True,
            tokens_used=42,
            model_used="fake-model",
        )
    )

    messages = await conversation_store.list_messages("conv1")
    assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]
    reply = messages[1]
    assert reply.content == "A mutex is"
    assert reply.truncated is True
    assert reply.tokens_used == 42
    assert reply.model_used == "fake-model"
    assert reply.tool_invocations == [record]


async def test_list_messages_is_idempotent(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    for text in ("one", "two", "three"):
        await conversation_store.append_message(_message("conv1", text))
    first = await conversation_store.list_messages("conv1")
    second = await conversation_store.list_messages("conv1")
    assert first == second


async def test_recent_messages_returns_tail_oldest_first(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    for i in range(5):
        await conversation_store.append_message(_message("conv1", f"m{i}"))
    recent = await conversation_store.recent_messages("conv1", limit=3)
    assert [m.content for m in recent] == ["m2", "m3", "m4"]


async def test_append_bumps_updated_at(
    conversation_store: ConversationStore, conversation: Conversation
) -> None:
    await conversation_store.append_message(_message("conv1", "hello"))
    fetched = await conversation_store.get_conversation("conv1")
    assert fetched.updated_at > conversation.updated_at


# -- Listing -------------------------------------------------------------------


async def _seed(store: ConversationStore, count: int) -> None:
    for i in range(count):
        stamp = f"2025-01-{i + 1:02d}T00:00:00+00:00"
        await store.create_conversation(
            Conversation(id=f"c{i}", profile_id="alice", title=f"Chat {i}", created_at=stamp, updated_at=stamp)
        )


async def test_list_conversations_most_recent_first(conversation_store: ConversationStore) -> None:
    await _seed(conversation_store, 3)
    await conversation_store.create_conversation(Conversation(id="other", profile_id="bob"))

    page = await conversation_store.list_conversations("alice")
    assert [c.id for c in page.conversations] == ["c2", "c1", "c0"]
    assert page.has_more is False


async def test_list_conversations_paginates(conversation_store: ConversationStore) -> None:
    await _seed(conversation_store, 5)

    page = await conversation_store.list_conversations("alice", limit=2)
    assert [c.id for c in page.conversations] == ["c4", "c3"]
    assert page.has_more is True

    last = page.conversations[-1]
    page = await conversation_store.list_conversations(
        "alice", limit=2, before_updated_at=last.updated_at, before_id=last.id
    )
    assert [c.id for c in page.conversations] == ["c2", "c1"]
    assert page.has_more is True

    last = page.conversations[-1]
    page = await conversation_store.list_conversations(
        "alice", limit=2, before_updated_at=last.updated_at, before_id=last.id
    )
    assert [c.id for c in page.conversations] == ["c0"]
    assert page.has_more is False


@pytest.mark.parametrize("limit", [0, -3])
async def test_list_conversations_non_positive_limit_returns_one(
    conversation_store: ConversationStore, limit: int
) -> None:
    await _seed(conversation_store, 3)

    page = await conversation_store.list_conversations("alice", limit=limit)
    assert [c.id for c in page.conversations] == ["c2"]
    assert page.has_more is True


async def test_list_conversations_counts_messages_and_skips_deleted(
    conversation_store: ConversationStore,
) -> None:
    await _seed(conversation_store, 2)
    await conversation_store.append_message(_message("c0", "hello"))
    await conversation_store.append_message(_message("c0", "hi", MessageRole.ASSISTANT))
    await conversation_store.delete_conversation("c1")

    page = await conversation_store.list_conversations("alice")
    assert [(c.id, c.message_count) for c in page.conversations] == [("c0", 2)]


# -- Content chunks ------------------------------------------------------------


async def test_chunk_round_trip(chunk_store: ContentChunkStore) -> None:
    chunk = make_chunk(
        "k1",
        0.5,
        source=ContentSource.YOUTUBE,
        source_url="https://youtube.com/watch?v=x",
        author="Dan",
        technology="dotnet",
    )
    await chunk_store.add_chunk(chunk)

    (loaded,) = await chunk_store.list_chunks()
    assert loaded.id == "k1"
    assert loaded.source == ContentSource.YOUTUBE
    assert loaded.author == "Dan"
    assert loaded.embedding == pytest.approx(chunk.embedding, abs=1e-6)
