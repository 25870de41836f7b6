#!/usr/bin/env python3
"""Index a text file into Nova's content store.

Splits the file into paragraph-sized chunks, embeds each one, and appends
them to the ``content_chunks`` table. A running Nova picks them up on its
next ``ContentIndex.refresh()``.

Usage examples:
    # Index an article
    uv run python scripts/index_content.py notes/mutex.md --source article --title "Mutexes"

    # Index a transcript with author and technology tags
    uv run python scripts/index_content.py talk.txt --source transcript \\
        --title "Async in .NET" --author Dan --technology dotnet
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.nova.embeddings import OpenAIEmbedder
from src.nova.models import ContentChunk, ContentSource
from src.nova.store import ContentChunkStore

MAX_CHUNK_CHARS = 2000


def split_chunks(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[str]:
    """Group paragraphs into chunks of at most *max_chars* characters."""
    chunks: list[str] = []
    current = ""
    for paragraph in (p.strip() for p in text.split("\n\n")):
        if not paragraph:
            continue
        if current and len(current) + len(paragraph) + 2 > max_chars:
            chunks.append(current)
            current = ""
        current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        chunks.append(current)
    return chunks


async def index_file(args: argparse.Namespace) -> int:
    text = Path(args.path).read_text(encoding="utf-8")
    embedder = OpenAIEmbedder()
    store = ContentChunkStore()

    count = 0
    for piece in split_chunks(text):
        chunk = ContentChunk(
            source=ContentSource(args.source),
            source_url=args.url,
            title=args.title,
            content=piece,
            author=args.author,
            technology=args.technology.lower() if args.technology else None,
            embedding=await embedder.embed(piece),
        )
        await store.add_chunk(chunk)
        count += 1
    return count


def main() -> None:
    parser = argparse.ArgumentParser(description="Index content for Nova search")
    parser.add_argument("path", help="Text or markdown file to index")
    parser.add_argument(
        "--source",
        required=True,
        choices=[s.value for s in ContentSource],
    )
    parser.add_argument("--title", required=True)
    parser.add_argument("--url", default=None)
    parser.add_argument("--author", default=None)
    parser.add_argument("--technology", default=None)
    args = parser.parse_args()

    count = asyncio.run(index_file(args))
    print(f"Indexed {count} chunk(s) from {args.path}")


if __name__ == "__main__":
    main()
