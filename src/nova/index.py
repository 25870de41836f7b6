"""In-memory snapshot of indexed content chunks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.nova.models import ContentChunk
    from src.nova.store import ContentChunkStore

logger = logging.getLogger(__name__)


class ContentIndex:
    """Read-only view of all content chunks, loaded once from the store.

    Searches read the current snapshot without touching the database.
    ``refresh()`` swaps in a new tuple atomically, so readers never see a
    half-loaded index.
    """

    def __init__(self, store: ContentChunkStore | None = None) -> None:
        self._store = store
        self._chunks: tuple[ContentChunk, ...] = ()
        self._loaded = asyncio.Event()
        self._refresh_lock = asyncio.Lock()

    @classmethod
    def from_chunks(cls, chunks: list[ContentChunk]) -> ContentIndex:
        """Build a pre-loaded index (no backing store)."""
        index = cls()
        index._chunks = tuple(chunks)
        index._loaded.set()
        return index

    @property
    def loaded(self) -> bool:
        return self._loaded.is_set()

    def __len__(self) -> int:
        return len(self._chunks)

    async def refresh(self) -> int:
        """Reload every chunk from the store. Returns the chunk count."""
        if self._store is None:
            msg = "ContentIndex has no backing store to refresh from"
            raise RuntimeError(msg)

        async with self._refresh_lock:
            chunks = await self._store.list_chunks()
            self._chunks = tuple(chunks)
            self._loaded.set()
        logger.info("Content index loaded %d chunks", len(chunks))
        return len(chunks)

    async def all(self) -> tuple[ContentChunk, ...]:
        """Return the current snapshot, waiting for the first load."""
        await self._loaded.wait()
        return self._chunks
