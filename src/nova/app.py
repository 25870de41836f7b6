"""Nova application factory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from src.llm.client import AnthropicGenerationService
from src.nova.embeddings import OpenAIEmbedder
from src.nova.index import ContentIndex
from src.nova.orchestrator import ConversationOrchestrator
from src.nova.search import ContentSearchService
from src.nova.learner import LearnerContextLoader
from src.nova.store import ContentChunkStore, ConversationStore, LearnerStore
from src.tools.knowledge_tools import SearchKnowledgeBaseTool
from src.tools.registry import registry as default_registry

if TYPE_CHECKING:
    from pathlib import Path

    from src.llm.client import GenerationService
    from src.nova.embeddings import Embedder
    from src.nova.models import ContentSearchResult, ContentSource
    from src.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Nova:
    """The assembled Nova services."""

    orchestrator: ConversationOrchestrator
    search: ContentSearchService
    index: ContentIndex
    registry: ToolRegistry

    async def search_content(
        self,
        query: str,
        source: ContentSource | str | None = None,
        technology: str | None = None,
        author: str | None = None,
        limit: int = 5,
        min_similarity: float = 0.7,
    ) -> list[ContentSearchResult]:
        """Read-only content search, independent of any conversation."""
        return await self.search.search(
            query,
            source=source,
            technology=technology,
            author=author,
            limit=limit,
            min_similarity=min_similarity,
        )


async def create_nova(
    db_path: Path | None = None,
    generator: GenerationService | None = None,
    embedder: Embedder | None = None,
    registry: ToolRegistry | None = None,
) -> Nova:
    """Build Nova and load the content index.

    Defaults come from settings: Anthropic for generation, OpenAI for
    embeddings, and the global tool registry.
    """
    conversation_store = ConversationStore(db_path=db_path)
    chunk_store = ContentChunkStore(db_path=db_path)

    index = ContentIndex(chunk_store)
    await index.refresh()

    embedder = embedder or OpenAIEmbedder()
    search = ContentSearchService(index, embedder)
    learners = LearnerContextLoader(LearnerStore(db_path=db_path), embedder)

    tools = registry if registry is not None else default_registry
    tools.register(SearchKnowledgeBaseTool(search))

    orchestrator = ConversationOrchestrator(
        conversation_store,
        generator or AnthropicGenerationService(),
        tools,
        search,
        learners,
    )
    logger.info(
        "Nova ready: %d content chunks, tools=%s",
        len(index),
        tools.tool_names,
    )
    return Nova(orchestrator=orchestrator, search=search, index=index, registry=tools)
