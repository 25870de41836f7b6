"""Knowledge-base search tool backed by the content search service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import Field

from src.nova.errors import RetrievalFailure
from src.tools.base import BaseTool, ToolParams, ToolResult

if TYPE_CHECKING:
    from src.nova.models import ContentSearchResult
    from src.nova.search import ContentSearchService

logger = logging.getLogger(__name__)

MAX_RESULT_TOKENS = 2500
CHARS_PER_TOKEN = 4
SEARCH_LIMIT = 8
MIN_SIMILARITY = 0.5

NO_RESULTS = "No relevant results found in the knowledge base."


class SearchKnowledgeBaseParams(ToolParams):
    query: str = Field(
        description=(
            "The search query - describe the concept, pattern, or topic "
            "you want to learn about"
        )
    )


def _source_entry(result: ContentSearchResult, content: str) -> str:
    lines = [f'<source type="{result.source.label}" title="{result.title}">']
    if result.author and result.author.strip():
        lines.append(f"Author: {result.author}")
    if result.source_url:
        lines.append(f"URL: {result.source_url}")
    lines.extend(["", content, "</source>", ""])
    return "\n".join(lines) + "\n"


def format_results(
    results: list[ContentSearchResult],
    max_chars: int = MAX_RESULT_TOKENS * CHARS_PER_TOKEN,
) -> str:
    """Render search results as a ``<knowledge_base>`` block within a char budget.

    Entries are added whole until the next one would exceed *max_chars*.
    If even the first entry is too large, its content is cut and marked
    ``... [truncated]`` so the block is never empty.
    """
    if not results:
        return NO_RESULTS

    parts = [
        "<knowledge_base>",
        "The following content is from the knowledge base. "
        "Use this as your PRIMARY source for answering.",
        "",
    ]
    total = 0
    for result in results:
        entry = _source_entry(result, result.content)
        if total + len(entry) > max_chars:
            if total == 0:
                keep = max(max_chars - 100, 0)
                content = result.content
                if len(content) > keep:
                    content = content[:keep] + "... [truncated]"
                parts.append(_source_entry(result, content))
            break
        parts.append(entry)
        total += len(entry)

    parts.append("</knowledge_base>")
    return "\n".join(parts)


class SearchKnowledgeBaseTool(BaseTool):
    """Lets the model search every content source on demand."""

    name = "search_knowledge_base"
    description = (
        "Search the knowledge base for authoritative information on software "
        "development topics. Searches across all available sources including "
        "technical books, official documentation, video transcripts, expert "
        "articles, and community posts. Returns the most relevant content "
        "regardless of source type."
    )
    category = "knowledge"
    params_model = SearchKnowledgeBaseParams

    def __init__(self, search_service: ContentSearchService) -> None:
        self._search = search_service

    async def execute(self, **kwargs: Any) -> ToolResult:
        query = kwargs["query"]
        try:
            results = await self._search.search(
                query,
                limit=SEARCH_LIMIT,
                min_similarity=MIN_SIMILARITY,
            )
        except RetrievalFailure as exc:
            return ToolResult(error=str(exc))

        logger.debug("Knowledge base search for '%s' returned %d results", query, len(results))
        return ToolResult(
            data={
                "count": len(results),
                "results": format_results(results),
            }
        )
