"""Async Claude API client exposing a streaming generation service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import anthropic

from src.config import settings
from src.llm.events import GenerationDone, TextDelta, ToolCallRequest
from src.nova.errors import GenerationServiceFailure

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from src.llm.events import GenerationEvent

logger = logging.getLogger(__name__)


class GenerationService(Protocol):
    """Streams one model round.

    Yields ``TextDelta`` chunks as they arrive, then one ``ToolCallRequest``
    per requested tool, then a single ``GenerationDone``. A round is not
    resumable: after a failure or cancellation the caller starts a new one.
    """

    def generate(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[GenerationEvent]: ...


class AnthropicGenerationService:
    """``GenerationService`` backed by ``anthropic.AsyncAnthropic`` streaming."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._client = client
        self._model = model or settings.chat_model
        self._max_tokens = max_tokens or settings.max_tokens
        self._temperature = temperature if temperature is not None else settings.temperature

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazily initialize the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        return self._client

    async def generate(
        self,
        messages: list[dict[str, Any]],
        *,
        system: str | list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[GenerationEvent]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": system,
            "messages": messages,
        }
        if tools:
            kwargs["tools"] = tools

        try:
            async with self._get_client().messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    yield TextDelta(text)
                response = await stream.get_final_message()
        except anthropic.APIError as exc:
            logger.exception("Generation request failed")
            msg = f"Generation service error: {exc}"
            raise GenerationServiceFailure(msg) from exc

        for block in response.content:
            if block.type == "tool_use":
                yield ToolCallRequest(id=block.id, name=block.name, input=dict(block.input or {}))

        usage = getattr(response, "usage", None)
        yield GenerationDone(
            stop_reason=response.stop_reason or "end_turn",
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            model=getattr(response, "model", None) or self._model,
        )
