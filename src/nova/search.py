"""Semantic search over the content index."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.nova.embeddings import cosine_similarity
from src.nova.errors import RetrievalFailure
from src.nova.models import ContentSearchResult, ContentSource

if TYPE_CHECKING:
    from src.nova.embeddings import Embedder
    from src.nova.index import ContentIndex
    from src.nova.models import ContentChunk

logger = logging.getLogger(__name__)


def _matches(value: str | None, wanted: str | None) -> bool:
    """Exact, case-insensitive match; a missing filter matches everything."""
    if wanted is None or not wanted.strip():
        return True
    if value is None:
        return False
    return value.casefold() == wanted.strip().casefold()


class ContentSearchService:
    """Cosine-similarity search over a ``ContentIndex``.

    Example::

        service = ContentSearchService(index, embedder)
        results = await service.search("what is a mutex", limit=3)
    """

    def __init__(self, index: ContentIndex, embedder: Embedder) -> None:
        self._index = index
        self._embedder = embedder

    async def search(
        self,
        query: str,
        source: ContentSource | str | None = None,
        technology: str | None = None,
        author: str | None = None,
        limit: int = 5,
        min_similarity: float = 0.7,
    ) -> list[ContentSearchResult]:
        """Return up to *limit* chunks similar to *query*.

        Chunks are filtered by *source*, *technology* and *author* before
        scoring. Results score at least *min_similarity* (clamped to
        [0, 1]) and are ordered by similarity descending, then chunk id.

        Raises:
            RetrievalFailure: The query could not be embedded.
        """
        if limit <= 0:
            return []
        min_similarity = min(max(min_similarity, 0.0), 1.0)

        try:
            query_vector = await self._embedder.embed(query)
        except Exception as exc:
            msg = f"Failed to embed search query: {exc}"
            raise RetrievalFailure(msg) from exc

        source_value = source.value if isinstance(source, ContentSource) else source
        candidates = [
            chunk
            for chunk in await self._index.all()
            if _matches(chunk.source.value, source_value)
            and _matches(chunk.technology, technology)
            and _matches(chunk.author, author)
        ]

        scored: list[tuple[float, ContentChunk]] = []
        skipped = 0
        for chunk in candidates:
            try:
                similarity = cosine_similarity(query_vector, chunk.embedding)
            except ValueError:
                # Indexed with a different embedding model
                skipped += 1
                continue
            if similarity >= min_similarity:
                scored.append((similarity, chunk))
        if skipped:
            logger.warning(
                "Skipped %d chunk(s) whose embedding dimension differs from the query's (%d)",
                skipped,
                len(query_vector),
            )

        scored.sort(key=lambda item: (-item[0], item[1].id))
        results = [_to_result(chunk, similarity) for similarity, chunk in scored[:limit]]

        logger.debug(
            "Search '%s' scored %d candidates, returning %d",
            query[:80],
            len(candidates),
            len(results),
        )
        return results


def _to_result(chunk: ContentChunk, similarity: float) -> ContentSearchResult:
    return ContentSearchResult(
        chunk_id=chunk.id,
        source=chunk.source,
        source_url=chunk.source_url,
        title=chunk.title,
        content=chunk.content,
        author=chunk.author,
        technology=chunk.technology,
        similarity=min(max(similarity, 0.0), 1.0),
    )
