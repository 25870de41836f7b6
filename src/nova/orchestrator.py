"""Conversation orchestrator — runs a Nova turn from user message to stored reply.

A turn moves through ``retrieving → generating → tool_pending → generating …
→ completing`` and ends ``idle`` or ``errored``. The work happens in a
producer task that pushes ``TurnEvent``s onto a queue; the caller consumes
them through a ``TurnStream``. Only one turn runs per conversation at a
time; turns on different conversations run in parallel.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from src.config import settings
from src.llm.events import GenerationDone, TextDelta, ToolCallRequest
from src.llm.prompt import build_system_prompt, to_api_messages
from src.nova.errors import (
    ConversationNotFound,
    GenerationServiceFailure,
    RetrievalFailure,
    ToolInvocationFailure,
)
from src.nova.events import (
    FailureKind,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
    TurnState,
    TurnText,
    TurnToolCall,
    TurnToolResult,
)
from src.nova.guard import AccessGuard
from src.nova.learner import LearnerContext
from src.nova.locks import KeyedLock
from src.nova.models import Conversation, Message, MessageRole
from src.tools.base import ToolResult
from src.tools.invoker import ToolInvoker

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from src.llm.client import GenerationService
    from src.nova.events import TurnEvent
    from src.nova.learner import LearnerContextLoader
    from src.nova.models import ContentSearchResult, ConversationPage, ToolInvocationRecord
    from src.nova.search import ContentSearchService
    from src.nova.store import ConversationStore
    from src.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50
TITLE_MIN_BREAK = 20

_END = object()


def generate_title(first_message: str) -> str:
    """Title a conversation from its first message.

    Short messages are used as-is. Longer ones are cut at the last space
    before 50 characters (or hard at 50 if that space comes too early)
    and get an ellipsis.
    """
    title = first_message.strip()
    if len(title) <= TITLE_MAX_CHARS:
        return title

    break_point = title.rfind(" ", 0, TITLE_MAX_CHARS + 1)
    if break_point < TITLE_MIN_BREAK:
        break_point = TITLE_MAX_CHARS
    return title[:break_point].rstrip() + "..."


class TurnStream:
    """Caller-facing side of a running turn.

    Iterate it to receive events; the stream ends after a ``TurnCompleted``
    or ``TurnFailed``. Leaving the iteration early (or calling ``cancel()``)
    stops the producer, which stores whatever text it already produced.
    """

    def __init__(self, conversation_id: str, is_new: bool, turn: _Turn) -> None:
        self.conversation_id = conversation_id
        self.is_new_conversation = is_new
        self._turn = turn
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> TurnState:
        return self._turn.state

    def _start(self, coro: Any, release: Callable[[], None]) -> None:
        """Run *coro* as the producer; *release* frees the conversation lock.

        The producer releases the lock itself. If its task is cancelled
        before the body ever runs, the done callback releases it instead and
        ends the stream.
        """
        turn = self._turn

        def _on_done(task: asyncio.Task) -> None:
            if turn.started:
                return
            logger.info("Turn for %s cancelled before it started", self.conversation_id)
            turn.state = TurnState.ERRORED
            turn.emit(TurnFailed(kind=FailureKind.CANCELLED, error="Turn cancelled"))
            turn.emit(_END)
            release()

        self._task = asyncio.create_task(coro, name=f"nova-turn-{self.conversation_id}")
        self._task.add_done_callback(_on_done)

    def cancel(self) -> None:
        """Ask the producer to stop."""
        if self._task is None or self._task.done():
            return
        if self._turn.started:
            self._task.cancel()
        else:
            # Checked by the producer on entry
            self._turn.cancel_requested = True

    async def wait(self) -> None:
        """Wait for the producer to finish (including cleanup after cancel)."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(self._task)

    async def __aiter__(self) -> AsyncIterator[TurnEvent]:
        try:
            while True:
                event = await self._turn.queue.get()
                if event is _END:
                    return
                yield event
        finally:
            if self._task is not None and not self._task.done():
                self.cancel()
                await self.wait()

    async def collect(self) -> list[TurnEvent]:
        """Drain the stream into a list."""
        return [event async for event in self]


class _Turn:
    """Mutable state of one turn, owned by the producer task."""

    def __init__(self) -> None:
        self.state = TurnState.IDLE
        self.started = False
        self.cancel_requested = False
        self.queue: asyncio.Queue = asyncio.Queue()
        self.text = ""
        self.records: list[ToolInvocationRecord] = []
        self.tokens_used = 0
        self.model_used: str | None = None

    def emit(self, event: Any) -> None:
        self.queue.put_nowait(event)


class ConversationOrchestrator:
    """Composes storage, access checks, retrieval, tools and generation."""

    def __init__(
        self,
        store: ConversationStore,
        generator: GenerationService,
        registry: ToolRegistry,
        search: ContentSearchService | None = None,
        learners: LearnerContextLoader | None = None,
        *,
        retrieval_enabled: bool | None = None,
        retrieval_limit: int | None = None,
        retrieval_min_similarity: float | None = None,
        max_tool_rounds: int | None = None,
        max_context_messages: int | None = None,
        tool_timeout: float | None = None,
        max_consecutive_tool_failures: int | None = None,
    ) -> None:
        self._store = store
        self._guard = AccessGuard(store)
        self._generator = generator
        self._registry = registry
        self._search = search
        self._learners = learners
        self._locks = KeyedLock()

        def _pick(value: Any, default: Any) -> Any:
            return default if value is None else value

        self.retrieval_enabled = _pick(retrieval_enabled, settings.retrieval_enabled)
        self.retrieval_limit = _pick(retrieval_limit, settings.retrieval_limit)
        self.retrieval_min_similarity = _pick(
            retrieval_min_similarity, settings.retrieval_min_similarity
        )
        self.max_tool_rounds = _pick(max_tool_rounds, settings.max_tool_rounds)
        self.max_context_messages = _pick(max_context_messages, settings.max_context_messages)
        self.tool_timeout = _pick(tool_timeout, settings.tool_timeout_seconds)
        self.max_consecutive_tool_failures = _pick(
            max_consecutive_tool_failures, settings.max_consecutive_tool_failures
        )

    @property
    def guard(self) -> AccessGuard:
        return self._guard

    # -- Read side -------------------------------------------------------------

    async def list_messages(self, conversation_id: str, caller_profile_id: str) -> list[Message]:
        """Return the conversation's messages in position order."""
        await self._guard.authorize(conversation_id, caller_profile_id)
        return await self._store.list_messages(conversation_id)

    async def list_conversations(
        self,
        caller_profile_id: str,
        limit: int = 20,
        before_updated_at: str | None = None,
        before_id: str | None = None,
    ) -> ConversationPage:
        return await self._store.list_conversations(
            caller_profile_id,
            limit=limit,
            before_updated_at=before_updated_at,
            before_id=before_id,
        )

    # -- Write side ------------------------------------------------------------

    async def delete_conversation(self, conversation_id: str, caller_profile_id: str) -> None:
        """Soft-delete a conversation once no turn is running on it."""
        await self._guard.authorize(conversation_id, caller_profile_id)
        async with self._locks.hold(conversation_id):
            await self._store.delete_conversation(conversation_id)

    async def send_message(
        self,
        conversation_id: str | None,
        caller_profile_id: str,
        text: str,
    ) -> TurnStream:
        """Append a user message and start generating the reply.

        With ``conversation_id=None`` a new conversation owned by the caller
        is created. Access errors are raised here, before anything is
        written; everything after that is reported through the stream.

        Raises:
            ConversationNotFound: *conversation_id* does not exist.
            ConversationAccessDenied: The caller does not own it.
        """
        is_new = conversation_id is None
        if is_new:
            conversation = Conversation(
                profile_id=caller_profile_id,
                title=generate_title(text),
            )
        else:
            conversation = await self._guard.authorize(conversation_id, caller_profile_id)

        await self._locks.acquire(conversation.id)
        try:
            if is_new:
                await self._store.create_conversation(conversation)
            elif await self._store.get_conversation(conversation.id) is None:
                # Deleted while this call waited for the lock
                raise ConversationNotFound(conversation.id)
            user_message = await self._store.append_message(
                Message(
                    conversation_id=conversation.id,
                    role=MessageRole.USER,
                    content=text,
                )
            )
        except BaseException:
            self._locks.release(conversation.id)
            raise

        turn = _Turn()
        stream = TurnStream(conversation.id, is_new, turn)
        stream._start(
            self._run_turn(conversation, user_message, is_new, turn),
            release=lambda: self._locks.release(conversation.id),
        )
        return stream

    # -- Turn ------------------------------------------------------------------

    async def _run_turn(
        self,
        conversation: Conversation,
        user_message: Message,
        is_new: bool,
        turn: _Turn,
    ) -> None:
        turn.started = True
        try:
            turn.emit(TurnStarted(conversation.id, is_new))
            if turn.cancel_requested:
                raise asyncio.CancelledError

            turn.state = TurnState.RETRIEVING
            learner = await self._load_learner(conversation.profile_id, user_message.content)
            context = await self._retrieve(user_message.content)

            await self._generate(conversation, context, learner, turn)

            turn.state = TurnState.COMPLETING
            message = await self._store_reply(conversation.id, turn, truncated=False)
            turn.emit(TurnCompleted(message))
            turn.state = TurnState.IDLE
            logger.info(
                "Turn complete for %s: %d chars, %d tool call(s)",
                conversation.id,
                len(turn.text),
                len(turn.records),
            )
        except asyncio.CancelledError:
            logger.info("Turn cancelled for %s", conversation.id)
            await self._fail(conversation.id, turn, FailureKind.CANCELLED, "Turn cancelled")
            raise
        except ToolInvocationFailure as exc:
            logger.warning("Aborting turn for %s: %s", conversation.id, exc)
            await self._fail(conversation.id, turn, FailureKind.TOOL, str(exc))
        except GenerationServiceFailure as exc:
            logger.error("Generation failed for %s: %s", conversation.id, exc)
            await self._fail(conversation.id, turn, FailureKind.GENERATION, str(exc))
        except Exception as exc:
            logger.exception("Turn failed for %s", conversation.id)
            await self._fail(conversation.id, turn, FailureKind.INTERNAL, str(exc))
        finally:
            turn.emit(_END)
            self._locks.release(conversation.id)

    async def _load_learner(self, profile_id: str, message: str) -> LearnerContext:
        """Profile and recalled memories; failures degrade to neither."""
        if self._learners is None:
            return LearnerContext()
        try:
            return await self._learners.load(profile_id, message)
        except Exception:
            logger.exception("Loading learner context failed for %s", profile_id)
            return LearnerContext()

    async def _retrieve(self, query: str) -> list[ContentSearchResult]:
        """Find supporting content; failures degrade to no context."""
        if not self.retrieval_enabled or self._search is None:
            return []
        try:
            return await self._search.search(
                query,
                limit=self.retrieval_limit,
                min_similarity=self.retrieval_min_similarity,
            )
        except RetrievalFailure as exc:
            logger.warning("Retrieval failed, answering without context: %s", exc)
            return []

    async def _generate(
        self,
        conversation: Conversation,
        context: list[ContentSearchResult],
        learner: LearnerContext,
        turn: _Turn,
    ) -> None:
        """Run generation rounds until the model stops asking for tools."""
        history = await self._store.recent_messages(conversation.id, self.max_context_messages)
        loop_messages = to_api_messages(history)
        tool_schemas = self._registry.get_schemas()
        invoker = ToolInvoker(
            self._registry,
            timeout=self.tool_timeout,
            max_consecutive_failures=self.max_consecutive_tool_failures,
        )

        tool_rounds = 0
        while True:
            final_round = tool_rounds >= self.max_tool_rounds
            turn.state = TurnState.GENERATING
            round_text, calls = await self._stream_round(
                loop_messages,
                system=build_system_prompt(
                    context,
                    profile=learner.profile,
                    memories=learner.memories,
                    final_round=final_round and tool_rounds > 0,
                ),
                tools=None if final_round else tool_schemas,
                turn=turn,
            )

            if not calls:
                return
            if final_round:
                logger.warning(
                    "Hit max tool rounds (%d) for %s; ignoring %d tool call(s)",
                    self.max_tool_rounds,
                    conversation.id,
                    len(calls),
                )
                return

            tool_rounds += 1
            turn.state = TurnState.TOOL_PENDING
            logger.info(
                "Round %d: %d tool call(s): %s",
                tool_rounds,
                len(calls),
                ", ".join(c.name for c in calls),
            )
            for call in calls:
                turn.emit(TurnToolCall(call.id, call.name, call.input))

            records = await invoker.invoke_all(calls)
            turn.records.extend(records)
            for record in records:
                turn.emit(TurnToolResult(record))
            invoker.check_failures()

            loop_messages.append({
                "role": "assistant",
                "content": _assistant_blocks(round_text, calls),
            })
            loop_messages.append({
                "role": "user",
                "content": [_tool_result_block(r) for r in records],
            })

    async def _stream_round(
        self,
        messages: list[dict[str, Any]],
        *,
        system: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        turn: _Turn,
    ) -> tuple[str, list[ToolCallRequest]]:
        """Stream one generation round, forwarding text as it arrives."""
        round_text = ""
        calls: list[ToolCallRequest] = []
        first_chunk = True

        try:
            async for event in self._generator.generate(messages, system=system, tools=tools):
                if isinstance(event, TextDelta):
                    if not event.text:
                        continue
                    # Separate text from successive tool rounds
                    if first_chunk and turn.text and not turn.text.endswith("\n"):
                        turn.text += "\n\n"
                        turn.emit(TurnText("\n\n"))
                    first_chunk = False
                    round_text += event.text
                    turn.text += event.text
                    turn.emit(TurnText(event.text))
                elif isinstance(event, ToolCallRequest):
                    calls.append(event)
                elif isinstance(event, GenerationDone):
                    turn.tokens_used += event.input_tokens + event.output_tokens
                    turn.model_used = event.model or turn.model_used
        except GenerationServiceFailure:
            raise
        except Exception as exc:
            msg = f"Generation stream failed: {exc}"
            raise GenerationServiceFailure(msg) from exc

        return round_text, calls

    async def _store_reply(self, conversation_id: str, turn: _Turn, *, truncated: bool) -> Message:
        return await self._store.append_message(
            Message(
                conversation_id=conversation_id,
                role=MessageRole.ASSISTANT,
                content=turn.text,
                tool_invocations=turn.records,
                truncated=truncated,
                tokens_used=turn.tokens_used,
                model_used=turn.model_used,
            )
        )

    async def _fail(
        self,
        conversation_id: str,
        turn: _Turn,
        kind: FailureKind,
        error: str,
    ) -> None:
        """Persist the partial reply and emit the terminal error event."""
        turn.state = TurnState.ERRORED
        message_id = None
        try:
            message = await self._store_reply(conversation_id, turn, truncated=True)
            message_id = message.id
        except Exception:
            logger.exception("Failed to store partial reply for %s", conversation_id)
        turn.emit(
            TurnFailed(
                kind=kind,
                error=error,
                partial_content=turn.text,
                message_id=message_id,
            )
        )


def _assistant_blocks(text: str, calls: list[ToolCallRequest]) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if text:
        blocks.append({"type": "text", "text": text})
    for call in calls:
        blocks.append({
            "type": "tool_use",
            "id": call.id,
            "name": call.name,
            "input": call.input,
        })
    return blocks


def _tool_result_block(record: ToolInvocationRecord) -> dict[str, Any]:
    result = ToolResult(data=record.output, error=record.error)
    return {
        "type": "tool_result",
        "tool_use_id": record.tool_use_id,
        "content": result.to_content(),
        "is_error": not result.success,
    }
