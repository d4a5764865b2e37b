"""Tests for the model pool, OpenAI chat model adapter and MCP registry."""
from __future__ import annotations

from types import SimpleNamespace

import pytest

from petagent.config import AzureOpenAIConfig, OpenAIConfig
from petagent.services.chat_model import OpenAIChatModel, ToolCall, parse_tool_arguments
from petagent.services.llm_pool import LLMPool
from petagent.services.mcp import MCPRegistry, MCPServer, MCPToolDescriptor, StaticMCPServer
from petagent.tools.base import ParameterKind


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeCompletions:
    def __init__(self, response) -> None:
        self.response = response
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        return self.response


def _client(response) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(response)))


def _chunk(content=None, tool_calls=None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))])


def _call_delta(index, call_id=None, name=None, arguments=None) -> SimpleNamespace:
    return SimpleNamespace(index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


async def _stream_of(*chunks):
    for chunk in chunks:
        yield chunk


@pytest.mark.anyio
async def test_pool_acquire_and_model_ids() -> None:
    pool = LLMPool()
    client = object()
    pool.register_client("fake", client)
    pool.register_azure_openai("azure", AzureOpenAIConfig(api_key="k", endpoint="https://x", deployment_name="dep"))
    pool.register_openai("compat", OpenAIConfig(api_key="k", model="deepseek-chat"))

    async with pool.acquire("fake") as acquired:
        assert acquired is client

    assert pool.has_model("azure") and pool.has_model("compat")
    assert pool.model_id("azure") == "dep"
    assert pool.model_id("compat") == "deepseek-chat"
    assert pool.model_id("fake") == "fake"
    with pytest.raises(KeyError):
        async with pool.acquire("missing"):
            pass


@pytest.mark.anyio
async def test_generate_returns_message_content() -> None:
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Meow"))])
    client = _client(response)
    pool = LLMPool()
    pool.register_client("pet", client)

    text = await OpenAIChatModel(pool, "pet").generate([{"role": "user", "content": "hi"}], temperature=0.2)

    assert text == "Meow"
    request = client.chat.completions.requests[0]
    assert (request["model"], request["temperature"]) == ("pet", 0.2)


@pytest.mark.anyio
async def test_stream_yields_text_then_assembled_tool_calls() -> None:
    client = _client(
        _stream_of(
            _chunk("Let me "),
            SimpleNamespace(choices=[]),
            _chunk("check."),
            _chunk(tool_calls=[_call_delta(0, "call_a", "current_", '{"time')]),
            _chunk(tool_calls=[_call_delta(0, None, "time", 'zone": "UTC"}'), _call_delta(1, None, "file_exists")]),
        )
    )
    pool = LLMPool()
    pool.register_client("pet", client)
    model = OpenAIChatModel(pool, "pet")
    tools = [{"type": "function", "function": {"name": "current_time"}}]

    chunks = [chunk async for chunk in model.stream([{"role": "user", "content": "time?"}], tools=tools)]

    assert [chunk.text for chunk in chunks[:-1]] == ["Let me ", "check."]
    assert chunks[-1].tool_calls == [
        ToolCall(id="call_a", name="current_time", arguments={"timezone": "UTC"}),
        ToolCall(id="call_1", name="file_exists", arguments={}),
    ]
    request = client.chat.completions.requests[0]
    assert request["stream"] is True
    assert request["tools"] == tools
    assert "max_tokens" not in request


def test_parse_tool_arguments() -> None:
    assert parse_tool_arguments(None) == {}
    assert parse_tool_arguments('{"a": 1}') == {"a": 1}
    assert parse_tool_arguments("[1]") == {"value": [1]}
    assert parse_tool_arguments("{broken") == {}


class BrokenServer(MCPServer):
    async def list_tools(self):
        raise ConnectionError("server went away")

    async def call_tool(self, name, arguments):
        raise AssertionError("not reachable")


@pytest.mark.anyio
async def test_mcp_discovery_namespaces_tools_and_skips_failures() -> None:
    server = StaticMCPServer("fs")
    server.add_tool(
        MCPToolDescriptor(
            name="read",
            description="Read a file",
            input_schema={
                "type": "object",
                "properties": {"path": {"type": "string", "description": "File path"}},
                "required": ["path"],
            },
        ),
        lambda args: f"contents of {args['path']}",
    )
    registry = MCPRegistry()
    registry.register(server)
    registry.register(BrokenServer("flaky"))

    tools = await registry.discover_tools()

    (tool,) = tools
    assert tool.name == "fs:read"
    assert tool.required == ["path"]
    assert tool.parameters["path"].kind is ParameterKind.STRING
    assert await tool.execute({"path": "/tmp/a"}) == "contents of /tmp/a"

    assert registry.list_servers() == ["fs", "flaky"]
    registry.unregister("flaky")
    assert registry.get("fs") is server
    with pytest.raises(KeyError):
        registry.get("flaky")


@pytest.mark.anyio
async def test_static_server_rejects_unknown_tool() -> None:
    with pytest.raises(KeyError):
        await StaticMCPServer("fs").call_tool("write", {})
