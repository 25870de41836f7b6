"""Nova console entry point."""

import argparse
import asyncio
import logging
import sys

from src.config import settings
from src.nova.errors import NovaError
from src.nova.events import TurnCompleted, TurnFailed, TurnStarted, TurnText, TurnToolCall

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def _chat(profile_id: str, conversation_id: str | None) -> None:
    """Interactive console chat; one turn per input line."""
    from src.nova.app import create_nova

    nova = await create_nova()
    print("Nova is ready. Empty line or Ctrl-D to quit.")

    while True:
        try:
            text = await asyncio.to_thread(input, "> ")
        except EOFError:
            break
        if not text.strip():
            break

        try:
            stream = await nova.orchestrator.send_message(conversation_id, profile_id, text)
        except NovaError as exc:
            print(f"[error] {exc}", file=sys.stderr)
            continue

        async for event in stream:
            if isinstance(event, TurnStarted):
                conversation_id = event.conversation_id
            elif isinstance(event, TurnText):
                print(event.text, end="", flush=True)
            elif isinstance(event, TurnToolCall):
                print(f"\n[tool: {event.name}]", flush=True)
            elif isinstance(event, TurnCompleted):
                print()
            elif isinstance(event, TurnFailed):
                print(f"\n[{event.kind}] {event.error}", file=sys.stderr)

    if conversation_id:
        print(f"Conversation: {conversation_id}")


async def _search(query: str, source: str | None, technology: str | None, limit: int) -> None:
    from src.nova.app import create_nova

    nova = await create_nova()
    results = await nova.search_content(
        query,
        source=source,
        technology=technology,
        limit=limit,
        min_similarity=settings.retrieval_min_similarity,
    )
    if not results:
        print("No results.")
    for result in results:
        print(f"{result.similarity:.3f}  [{result.source.label}] {result.title}")


def main() -> None:
    """Run the Nova console."""
    parser = argparse.ArgumentParser(description="Nova AI assistant")
    sub = parser.add_subparsers(dest="command", required=True)

    chat = sub.add_parser("chat", help="Chat with Nova in the terminal")
    chat.add_argument("--profile", default="local", help="Caller profile ID")
    chat.add_argument("--conversation", default=None, help="Continue an existing conversation")

    search = sub.add_parser("search", help="Search indexed content")
    search.add_argument("query")
    search.add_argument("--source", default=None)
    search.add_argument("--technology", default=None)
    search.add_argument("--limit", type=int, default=5)

    args = parser.parse_args()
    if args.command == "chat":
        logger.info("Starting Nova chat with model %s...", settings.chat_model)
        asyncio.run(_chat(args.profile, args.conversation))
    else:
        asyncio.run(_search(args.query, args.source, args.technology, args.limit))


if __name__ == "__main__":
    main()
