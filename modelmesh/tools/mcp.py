"""
MCP collaborator boundary.

The tool manager only carries MCP server configuration and routing
intent. Discovery and invocation happen behind the MCPClient protocol,
keyed by server and tool name.

FastMCPToolClient adapts the fastmcp client library (optional extra:
pip install modelmesh[mcp]). Import is lazy so the core never needs
fastmcp installed.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from modelmesh.config.schema import MCPServerConfig
from modelmesh.tools.types import ToolResult

logger = logging.getLogger(__name__)

MCP_PREFIX = "mcp:"


def strip_mcp_prefix(tool_name: str) -> str:
    """'mcp:search' -> 'search'; names without the prefix are unchanged."""
    if tool_name.startswith(MCP_PREFIX):
        return tool_name[len(MCP_PREFIX):]
    return tool_name


@runtime_checkable
class MCPClient(Protocol):
    """What the tool manager needs from an MCP integration."""

    async def list_tools(self, server: MCPServerConfig) -> list[str]:
        """Names of the tools the server exposes."""
        ...

    async def call_tool(
        self, server: MCPServerConfig, tool_name: str, tool_input: Any
    ) -> ToolResult:
        """Invoke one tool on one server."""
        ...


class FastMCPToolClient:
    """
    MCPClient backed by fastmcp.Client.

    Opens a short-lived session per call against server.url; the tool
    manager calls it rarely (only on local misses), so no pooling.
    """

    def _client(self, server: MCPServerConfig) -> Any:
        from fastmcp import Client

        return Client(server.url)

    async def list_tools(self, server: MCPServerConfig) -> list[str]:
        async with self._client(server) as client:
            tools = await client.list_tools()
        return [tool.name for tool in tools]

    async def call_tool(
        self, server: MCPServerConfig, tool_name: str, tool_input: Any
    ) -> ToolResult:
        arguments = tool_input if isinstance(tool_input, dict) else {"input": tool_input}
        try:
            async with self._client(server) as client:
                result = await client.call_tool(tool_name, arguments)
        except Exception as e:
            return ToolResult.fail(str(e), server=server.name)

        if getattr(result, "is_error", False):
            return ToolResult.fail(
                _content_text(getattr(result, "content", None)) or "MCP tool error",
                server=server.name,
            )

        data = getattr(result, "data", None)
        if data is None:
            data = _content_text(getattr(result, "content", result))
        return ToolResult.ok(data, server=server.name)


def _content_text(content: Any) -> str:
    if not content:
        return ""
    if isinstance(content, (list, tuple)):
        return "\n".join(getattr(part, "text", str(part)) for part in content)
    return getattr(content, "text", str(content))
