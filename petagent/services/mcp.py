"""MCP servers as a source of namespaced tools for the agent runtime."""
from __future__ import annotations

import abc
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Union

from petagent.tools.base import ParameterSpec, Tool, ToolExecutionContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MCPToolDescriptor:
    """Tool as advertised by an MCP server's ``tools/list``."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


class MCPServer(abc.ABC):
    """Connected MCP server; the transport lives behind this interface."""

    def __init__(self, server_id: str) -> None:
        self.server_id = server_id

    @abc.abstractmethod
    async def list_tools(self) -> List[MCPToolDescriptor]:
        """Return the tools the server currently exposes."""

    @abc.abstractmethod
    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Invoke ``name`` on the server and return its result payload."""


ToolHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class StaticMCPServer(MCPServer):
    """In-process MCP server backed by Python callables."""

    def __init__(self, server_id: str) -> None:
        super().__init__(server_id)
        self._tools: Dict[str, MCPToolDescriptor] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    def add_tool(self, descriptor: MCPToolDescriptor, handler: ToolHandler) -> None:
        self._tools[descriptor.name] = descriptor
        self._handlers[descriptor.name] = handler

    async def list_tools(self) -> List[MCPToolDescriptor]:
        return list(self._tools.values())

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise KeyError(f"Unknown tool '{name}' on MCP server {self.server_id}")
        result = handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def namespaced(server_id: str, tool_name: str) -> str:
    return f"{server_id}:{tool_name}"


def mcp_tool(server: MCPServer, descriptor: MCPToolDescriptor) -> Tool:
    """Normalise an MCP tool descriptor into the uniform Tool contract."""
    schema = descriptor.input_schema or {}
    required = set(schema.get("required", []))
    parameters = {
        key: ParameterSpec.from_json_schema(prop, key in required)
        for key, prop in (schema.get("properties") or {}).items()
    }

    async def execute(args: Dict[str, Any], context: ToolExecutionContext) -> Any:
        if context.signal is not None:
            return await context.signal.guard(server.call_tool(descriptor.name, args))
        return await server.call_tool(descriptor.name, args)

    return Tool(
        name=namespaced(server.server_id, descriptor.name),
        description=descriptor.description or descriptor.name,
        parameters=parameters,
        execute_fn=execute,
    )


class MCPRegistry:
    """Registry of connected MCP servers keyed by server id."""

    def __init__(self) -> None:
        self._servers: Dict[str, MCPServer] = {}

    def register(self, server: MCPServer) -> None:
        self._servers[server.server_id] = server

    def unregister(self, server_id: str) -> None:
        self._servers.pop(server_id, None)

    def get(self, server_id: str) -> MCPServer:
        if server_id not in self._servers:
            raise KeyError(f"No MCP server registered: {server_id}")
        return self._servers[server_id]

    def list_servers(self) -> List[str]:
        return list(self._servers)

    async def discover_tools(self) -> List[Tool]:
        """Collect namespaced tools from every server; one failing server is skipped."""
        servers = list(self._servers.values())
        listings = await asyncio.gather(
            *(server.list_tools() for server in servers), return_exceptions=True
        )

        tools: List[Tool] = []
        for server, listing in zip(servers, listings):
            if isinstance(listing, BaseException):
                logger.error(f"Tool discovery failed for MCP server {server.server_id}: {listing}")
                continue
            tools.extend(mcp_tool(server, descriptor) for descriptor in listing)
        logger.info(f"Discovered {len(tools)} MCP tools from {len(servers)} servers")
        return tools
