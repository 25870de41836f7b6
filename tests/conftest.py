"""Shared test fixtures."""

from pathlib import Path

import pytest

from src.nova.store import ContentChunkStore, ConversationStore, LearnerStore


@pytest.fixture
def conversation_store(tmp_path: Path) -> ConversationStore:
    """ConversationStore backed by a temp database."""
    return ConversationStore(db_path=tmp_path / "test.db")


@pytest.fixture
def chunk_store(tmp_path: Path) -> ContentChunkStore:
    return ContentChunkStore(db_path=tmp_path / "test.db")


@pytest.fixture
def learner_store(tmp_path: Path) -> LearnerStore:
    return LearnerStore(db_path=tmp_path / "test.db")
