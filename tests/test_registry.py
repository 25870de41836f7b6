"""Tests for the tool registry."""

import asyncio

import pytest
from pydantic import Field

from src.tools.base import BaseTool, ToolParams, ToolResult
from src.tools.registry import ToolRegistry

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def reg() -> ToolRegistry:
    """Fresh registry for each test."""
    return ToolRegistry()


# -- Registration ------------------------------------------------------------


def test_register_via_decorator(reg: ToolRegistry) -> None:
    @reg.tool(name="ping", description="Ping", category="test")
    async def ping() -> ToolResult:
        return ToolResult(data={"pong": True})

    assert reg.tool_names == ["ping"]
    assert reg.get("ping").category == "test"


def test_decorator_rejects_sync_function(reg: ToolRegistry) -> None:
    with pytest.raises(TypeError, match="must be an async function"):

        @reg.tool(name="bad", description="Bad", category="test")
        def bad() -> ToolResult:
            return ToolResult()


def test_register_class_based_tool(reg: ToolRegistry) -> None:
    class LookupTool(BaseTool):
        name = "lookup"
        description = "Look something up"
        category = "knowledge"

        async def execute(self, **kwargs) -> ToolResult:
            return ToolResult(data={"class_based": True})

    reg.register(LookupTool())
    assert "lookup" in reg.tool_names
    assert reg.get("lookup").description == "Look something up"


def test_get_unknown_returns_none(reg: ToolRegistry) -> None:
    assert reg.get("missing") is None


def test_tools_by_category(reg: ToolRegistry) -> None:
    @reg.tool(name="a", description="A", category="alpha")
    async def a() -> ToolResult:
        return ToolResult()

    @reg.tool(name="b", description="B", category="beta")
    async def b() -> ToolResult:
        return ToolResult()

    @reg.tool(name="c", description="C", category="alpha")
    async def c() -> ToolResult:
        return ToolResult()

    groups = reg.get_tools_by_category()
    assert [t.name for t in groups["alpha"]] == ["a", "c"]
    assert len(groups["beta"]) == 1


# -- Schema generation -------------------------------------------------------


def test_get_schemas_no_params(reg: ToolRegistry) -> None:
    @reg.tool(name="simple", description="Simple tool", category="test")
    async def simple() -> ToolResult:
        return ToolResult()

    schemas = reg.get_schemas()
    assert schemas == [
        {
            "name": "simple",
            "description": "Simple tool",
            "input_schema": {"type": "object", "properties": {}},
        }
    ]


def test_get_schemas_with_params(reg: ToolRegistry) -> None:
    class Params(ToolParams):
        query: str = Field(description="Search query")
        limit: int = Field(default=10, description="Max results")

    @reg.tool(name="search", description="Search things", category="test", params_model=Params)
    async def search(query: str, limit: int = 10) -> ToolResult:
        return ToolResult()

    schema = reg.get_schemas()[0]["input_schema"]
    assert schema["type"] == "object"
    assert "title" not in schema
    assert schema["properties"]["query"]["type"] == "string"
    assert schema["properties"]["limit"]["type"] == "integer"
    assert schema["required"] == ["query"]


# -- Execution ---------------------------------------------------------------


async def test_execute_with_params(reg: ToolRegistry) -> None:
    class AddParams(ToolParams):
        a: int = Field(description="First number")
        b: int = Field(description="Second number")

    @reg.tool(name="add", description="Add", category="test", params_model=AddParams)
    async def add(a: int, b: int) -> ToolResult:
        return ToolResult(data={"sum": a + b})

    result = await reg.execute("add", {"a": 3, "b": 7})
    assert result.success
    assert result.data["sum"] == 10


async def test_execute_unknown_tool(reg: ToolRegistry) -> None:
    result = await reg.execute("nonexistent", {})
    assert not result.success
    assert result.error == "Unknown tool: nonexistent"


async def test_execute_with_invalid_params(reg: ToolRegistry) -> None:
    class Params(ToolParams):
        count: int = Field(description="A number")

    @reg.tool(name="strict", description="Strict", category="test", params_model=Params)
    async def strict(count: int) -> ToolResult:
        return ToolResult(data={"count": count})

    result = await reg.execute("strict", {"count": "not_a_number"})
    assert not result.success
    assert result.error.startswith("Invalid arguments for tool 'strict': count:")


async def test_execute_handler_exception(reg: ToolRegistry) -> None:
    @reg.tool(name="boom", description="Boom", category="test")
    async def boom() -> ToolResult:
        msg = "kaboom"
        raise RuntimeError(msg)

    result = await reg.execute("boom", {})
    assert not result.success
    assert "failed" in result.error


async def test_execute_times_out(reg: ToolRegistry) -> None:
    @reg.tool(name="slow", description="Slow", category="test")
    async def slow() -> ToolResult:
        await asyncio.sleep(5)
        return ToolResult(data={})

    result = await reg.execute("slow", {}, timeout=0.01)
    assert not result.success
    assert "timed out" in result.error


async def test_execute_passes_tool_error_through(reg: ToolRegistry) -> None:
    @reg.tool(name="refuse", description="Refuse", category="test")
    async def refuse() -> ToolResult:
        return ToolResult(error="not today")

    result = await reg.execute("refuse", {})
    assert result.error == "not today"


# -- ToolResult serialization ------------------------------------------------


def test_tool_result_success_serialization() -> None:
    r = ToolResult(data={"key": "val"})
    assert r.success
    assert r.to_content() == '{"key": "val"}'


def test_tool_result_error_serialization() -> None:
    r = ToolResult(error="something broke")
    assert not r.success
    assert r.to_content() == '{"error": "something broke"}'
