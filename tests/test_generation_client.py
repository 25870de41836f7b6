"""Tests for AnthropicGenerationService — streaming events and error handling."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock

import anthropic
import httpx
import pytest

from src.llm.client import AnthropicGenerationService
from src.llm.events import GenerationDone, TextDelta, ToolCallRequest
from src.nova.errors import GenerationServiceFailure

# ---------------------------------------------------------------------------
# Helpers: mock the streaming API
# ---------------------------------------------------------------------------


@dataclass
class _FakeBlock:
    type: str
    text: str = ""
    id: str = ""
    name: str = ""
    input: dict[str, Any] | None = None


class _FakeStream:
    """Simulates an anthropic streaming context manager."""

    def __init__(
        self,
        text_chunks: list[str],
        content_blocks: list[_FakeBlock],
        fail_after: int | None = None,
    ) -> None:
        self._text_chunks = text_chunks
        self._content_blocks = content_blocks
        self._fail_after = fail_after

    @property
    async def text_stream(self):
        for i, chunk in enumerate(self._text_chunks):
            if self._fail_after is not None and i >= self._fail_after:
                raise _api_error()
            yield chunk

    async def get_final_message(self):
        has_tools = any(b.type == "tool_use" for b in self._content_blocks)
        return SimpleNamespace(
            content=self._content_blocks,
            stop_reason="tool_use" if has_tools else "end_turn",
            usage=SimpleNamespace(input_tokens=12, output_tokens=7),
            model="claude-test",
        )


def _api_error() -> anthropic.APIError:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return anthropic.APIConnectionError(request=request)


def _make_mock_client(stream: _FakeStream):
    client = MagicMock()
    client.calls = []

    @asynccontextmanager
    async def _stream(**kwargs):
        client.calls.append(kwargs)
        yield stream

    client.messages.stream = _stream
    return client


async def _collect(service: AnthropicGenerationService, **kwargs) -> list:
    kwargs.setdefault("system", "sys")
    return [event async for event in service.generate([{"role": "user", "content": "hi"}], **kwargs)]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


async def test_streams_text_then_done() -> None:
    client = _make_mock_client(_FakeStream(["Hello", " there"], [_FakeBlock("text", text="Hello there")]))
    service = AnthropicGenerationService(client=client, model="claude-test", max_tokens=100, temperature=0.2)

    events = await _collect(service)

    assert events[:2] == [TextDelta("Hello"), TextDelta(" there")]
    assert events[2] == GenerationDone(
        stop_reason="end_turn", input_tokens=12, output_tokens=7, model="claude-test"
    )
    assert client.calls[0]["model"] == "claude-test"
    assert client.calls[0]["max_tokens"] == 100
    assert client.calls[0]["temperature"] == 0.2
    assert "tools" not in client.calls[0]


async def test_tool_use_blocks_become_requests() -> None:
    blocks = [
        _FakeBlock("text", text="Let me look."),
        _FakeBlock("tool_use", id="tu1", name="search_knowledge_base", input={"query": "mutex"}),
    ]
    client = _make_mock_client(_FakeStream(["Let me look."], blocks))
    service = AnthropicGenerationService(client=client, model="claude-test")
    tools = [{"name": "search_knowledge_base", "description": "d", "input_schema": {"type": "object"}}]

    events = await _collect(service, tools=tools)

    assert events[1] == ToolCallRequest(id="tu1", name="search_knowledge_base", input={"query": "mutex"})
    assert events[2].stop_reason == "tool_use"
    assert client.calls[0]["tools"] == tools


async def test_api_error_becomes_generation_failure() -> None:
    client = _make_mock_client(_FakeStream(["The answer", " is"], [], fail_after=1))
    service = AnthropicGenerationService(client=client, model="claude-test")

    received = []
    with pytest.raises(GenerationServiceFailure) as exc_info:
        async for event in service.generate([{"role": "user", "content": "hi"}], system="sys"):
            received.append(event)

    assert received == [TextDelta("The answer")]
    assert isinstance(exc_info.value.__cause__, anthropic.APIError)
