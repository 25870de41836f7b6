"""Pydantic models persisted by the Nova stores."""

from __future__ import annotations

import json
import struct
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TRUNCATION_MARKER = "\n\n[response interrupted]"


def _now() -> str:
    return datetime.now(UTC).isoformat()


def make_id() -> str:
    """Generate a new entity ID."""
    return uuid.uuid4().hex


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentSource(StrEnum):
    """Where an indexed chunk came from."""

    BOOK = "book"
    OFFICIAL_DOCS = "official_docs"
    DOCUMENTATION = "documentation"
    YOUTUBE = "youtube"
    TRANSCRIPT = "transcript"
    ARTICLE = "article"
    PULSE = "pulse"

    @property
    def label(self) -> str:
        """Short attribution label used in prompts."""
        return _SOURCE_LABELS[self]


_SOURCE_LABELS: dict[ContentSource, str] = {
    ContentSource.BOOK: "Book",
    ContentSource.OFFICIAL_DOCS: "Docs",
    ContentSource.DOCUMENTATION: "Docs",
    ContentSource.YOUTUBE: "YouTube",
    ContentSource.TRANSCRIPT: "Transcript",
    ContentSource.ARTICLE: "Article",
    ContentSource.PULSE: "Community",
}


# -- Conversations -------------------------------------------------------------


class ToolInvocationRecord(BaseModel):
    """Audit record of one tool call made during an assistant turn."""

    tool_use_id: str
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


class Message(BaseModel):
    """A single message in a conversation."""

    id: str = Field(default_factory=make_id)
    conversation_id: str
    role: MessageRole
    content: str = ""
    position: int = 0
    created_at: str = Field(default_factory=_now)
    tool_invocations: list[ToolInvocationRecord] = Field(default_factory=list)
    truncated: bool = False
    tokens_used: int = 0
    model_used: str | None = None

    model_config = ConfigDict(protected_namespaces=())

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``messages`` column order."""
        return (
            self.id,
            self.conversation_id,
            self.role.value,
            self.content,
            self.position,
            self.created_at,
            json.dumps([r.model_dump() for r in self.tool_invocations]),
            int(self.truncated),
            self.tokens_used,
            self.model_used,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Message:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            conversation_id=row[1],
            role=MessageRole(row[2]),
            content=row[3] or "",
            position=row[4],
            created_at=row[5],
            tool_invocations=[
                ToolInvocationRecord(**r) for r in json.loads(row[6] or "[]")
            ],
            truncated=bool(row[7]),
            tokens_used=row[8] or 0,
            model_used=row[9],
        )


class Conversation(BaseModel):
    """A conversation owned by exactly one profile."""

    id: str = Field(default_factory=make_id)
    profile_id: str
    title: str | None = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)
    deleted: bool = False

    def to_row(self) -> tuple:
        return (
            self.id,
            self.profile_id,
            self.title,
            self.created_at,
            self.updated_at,
            int(self.deleted),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Conversation:
        return cls(
            id=row[0],
            profile_id=row[1],
            title=row[2],
            created_at=row[3],
            updated_at=row[4],
            deleted=bool(row[5]),
        )


class ConversationSummary(BaseModel):
    """Listing entry for a profile's conversations."""

    id: str
    title: str | None
    created_at: str
    updated_at: str
    message_count: int


class ConversationPage(BaseModel):
    conversations: list[ConversationSummary]
    has_more: bool


# -- Learners ------------------------------------------------------------------


class MemoryCategory(StrEnum):
    """What a remembered fact is about."""

    TOPIC_DISCUSSED = "topic_discussed"
    CONCEPT_EXPLAINED = "concept_explained"
    STRUGGLE_IDENTIFIED = "struggle_identified"
    STRENGTH_DEMONSTRATED = "strength_demonstrated"
    QUESTION_ASKED = "question_asked"
    CURRENT_FOCUS = "current_focus"
    PREFERRED_EXAMPLES = "preferred_examples"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class LearnerProfile(BaseModel):
    """What Nova knows about a learner's background and preferences."""

    profile_id: str
    current_role: str | None = None
    experience_years: int | None = None
    primary_tech_stack: str | None = None
    current_project: str | None = None
    learning_goals: str | None = None
    learning_style: str | None = None
    preferred_pace: str | None = None
    identified_strengths: str | None = None
    identified_struggles: str | None = None
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    def has_user_data(self) -> bool:
        return any(
            value is not None
            for value in (
                self.current_role,
                self.experience_years,
                self.primary_tech_stack,
                self.current_project,
                self.learning_goals,
                self.learning_style,
                self.preferred_pace,
            )
        )

    def to_row(self) -> tuple:
        return (
            self.profile_id,
            self.current_role,
            self.experience_years,
            self.primary_tech_stack,
            self.current_project,
            self.learning_goals,
            self.learning_style,
            self.preferred_pace,
            self.identified_strengths,
            self.identified_struggles,
            self.created_at,
            self.updated_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> LearnerProfile:
        return cls(
            profile_id=row[0],
            current_role=row[1],
            experience_years=row[2],
            primary_tech_stack=row[3],
            current_project=row[4],
            learning_goals=row[5],
            learning_style=row[6],
            preferred_pace=row[7],
            identified_strengths=row[8],
            identified_struggles=row[9],
            created_at=row[10],
            updated_at=row[11],
        )


class Memory(BaseModel):
    """A fact remembered about a learner from earlier conversations.

    Importance runs from 1 to 5. A superseded memory has been replaced by a
    newer one and is never recalled.
    """

    id: str = Field(default_factory=make_id)
    profile_id: str
    category: MemoryCategory
    content: str
    importance: int = Field(default=3, ge=1, le=5)
    embedding: list[float] | None = None
    created_at: str = Field(default_factory=_now)
    superseded_at: str | None = None

    def to_row(self) -> tuple:
        return (
            self.id,
            self.profile_id,
            self.category.value,
            self.content,
            self.importance,
            serialize_embedding(self.embedding) if self.embedding else None,
            self.created_at,
            self.superseded_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Memory:
        return cls(
            id=row[0],
            profile_id=row[1],
            category=MemoryCategory(row[2]),
            content=row[3],
            importance=row[4],
            embedding=deserialize_embedding(row[5]) if row[5] else None,
            created_at=row[6],
            superseded_at=row[7],
        )


# -- Content -------------------------------------------------------------------


class ContentChunk(BaseModel):
    """An indexed piece of content with its precomputed embedding."""

    id: str = Field(default_factory=make_id)
    source: ContentSource
    source_url: str | None = None
    title: str
    content: str
    author: str | None = None
    technology: str | None = None
    embedding: list[float]

    model_config = ConfigDict(frozen=True)

    def to_row(self) -> tuple:
        return (
            self.id,
            self.source.value,
            self.source_url,
            self.title,
            self.content,
            self.author,
            self.technology,
            serialize_embedding(self.embedding),
        )

    @classmethod
    def from_row(cls, row: tuple) -> ContentChunk:
        return cls(
            id=row[0],
            source=ContentSource(row[1]),
            source_url=row[2],
            title=row[3],
            content=row[4],
            author=row[5],
            technology=row[6],
            embedding=deserialize_embedding(row[7]),
        )


class ContentSearchResult(BaseModel):
    """A chunk that matched a search query, with its similarity score."""

    chunk_id: str
    source: ContentSource
    source_url: str | None = None
    title: str
    content: str
    author: str | None = None
    technology: str | None = None
    similarity: float


def serialize_embedding(vector: list[float]) -> bytes:
    """Pack a vector as little-endian float32."""
    return struct.pack(f"<{len(vector)}f", *vector)


def deserialize_embedding(data: bytes) -> list[float]:
    """Unpack a little-endian float32 blob."""
    return list(struct.unpack(f"<{len(data) // 4}f", data))
