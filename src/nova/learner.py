"""Learner context: the profile and remembered facts that personalize a turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.nova.embeddings import cosine_similarity

if TYPE_CHECKING:
    from src.nova.embeddings import Embedder
    from src.nova.models import LearnerProfile, Memory
    from src.nova.store import LearnerStore

logger = logging.getLogger(__name__)

RECENT_MEMORIES = 5
HIGH_IMPORTANCE_THRESHOLD = 4
HIGH_IMPORTANCE_LIMIT = 5
SIMILAR_MEMORIES = 10
MIN_MEMORY_SIMILARITY = 0.7
MAX_MEMORIES = 20


@dataclass
class LearnerContext:
    profile: LearnerProfile | None = None
    memories: list[Memory] = field(default_factory=list)


class LearnerContextLoader:
    """Loads a learner's profile and the memories worth recalling for a message.

    ``recall`` runs the recent, important and similar-to-message queries
    and ranks the union with ``merge_memories``. Similarity recall is
    skipped when there is no embedder or the message cannot be embedded.
    """

    def __init__(self, store: LearnerStore, embedder: Embedder | None = None) -> None:
        self._store = store
        self._embedder = embedder

    async def load(self, profile_id: str, message: str) -> LearnerContext:
        profile = await self._store.get_profile(profile_id)
        memories = await self.recall(profile_id, message)
        logger.debug(
            "Learner context for %s: profile=%s, %d memories",
            profile_id,
            profile is not None,
            len(memories),
        )
        return LearnerContext(profile=profile, memories=memories)

    async def recall(self, profile_id: str, message: str) -> list[Memory]:
        recent = await self._store.recent_memories(profile_id, RECENT_MEMORIES)
        important = await self._store.important_memories(
            profile_id, HIGH_IMPORTANCE_THRESHOLD, HIGH_IMPORTANCE_LIMIT
        )
        similar = await self._similar(profile_id, message)
        return merge_memories(similar, important, recent)

    async def _similar(self, profile_id: str, message: str) -> list[tuple[float, Memory]]:
        if self._embedder is None:
            return []
        candidates = await self._store.embedded_memories(profile_id)
        if not candidates:
            return []

        try:
            vector = await self._embedder.embed(message)
        except Exception as exc:
            logger.warning("Could not embed message for memory recall: %s", exc)
            return []

        scored: list[tuple[float, Memory]] = []
        for memory in candidates:
            try:
                similarity = cosine_similarity(vector, memory.embedding or [])
            except ValueError:
                logger.debug("Skipping memory %s with mismatched embedding", memory.id)
                continue
            if similarity >= MIN_MEMORY_SIMILARITY:
                scored.append((similarity, memory))

        scored.sort(key=lambda item: -item[0])
        return scored[:SIMILAR_MEMORIES]


def merge_memories(
    similar: list[tuple[float, Memory]],
    important: list[Memory],
    recent: list[Memory],
    limit: int = MAX_MEMORIES,
) -> list[Memory]:
    """Rank recalled memories and drop duplicates.

    Similar memories score ``1 + similarity`` so they always lead. Important
    ones score ``importance / 5``. Recent ones score from 0.5 down by
    position. A memory found more than once keeps its first score.
    """
    seen: set[str] = set()
    ranked: list[tuple[float, Memory]] = []

    def _add(score: float, memory: Memory) -> None:
        if memory.id not in seen:
            seen.add(memory.id)
            ranked.append((score, memory))

    for similarity, memory in sorted(similar, key=lambda item: -item[0]):
        _add(1.0 + similarity, memory)
    for memory in sorted(important, key=lambda m: -m.importance):
        _add(memory.importance / 5, memory)
    for i, memory in enumerate(recent):
        _add((len(recent) - i) / len(recent) * 0.5, memory)

    ranked.sort(key=lambda item: -item[0])
    return [memory for _, memory in ranked[:limit]]
