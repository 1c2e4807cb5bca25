"""
Tool Manager — registry of callable tools with cached execution.

Independent of the LLM providers: callers register tools, expose their
schemas to a model, and execute them when the model asks. Nothing here
wires a provider's tool_use output into execution automatically.

Failures never raise. An unknown tool, a tool that raises, or an MCP
miss all come back as ToolResult(success=False, error=...).

Usage:
    from modelmesh.tools.manager import ToolManager
    from modelmesh.tools.types import ToolRegistration, ToolResult, ToolSchema

    async def echo(payload):
        return ToolResult.ok(payload)

    tools = ToolManager()
    tools.register_tool(ToolRegistration(
        name="echo",
        execute=echo,
        schema=ToolSchema(name="echo", description="Return the input unchanged"),
    ))

    result = await tools.execute_tool("echo", {"x": 1})
    result = await tools.execute_tool("echo", {"x": 1})  # served from cache
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, Optional

from modelmesh.config.schema import MCPServerConfig
from modelmesh.tools.cache import ToolResultCache
from modelmesh.tools.mcp import MCP_PREFIX, MCPClient, strip_mcp_prefix
from modelmesh.tools.types import ToolRegistration, ToolResult, ToolSchema

logger = logging.getLogger(__name__)


class ToolManager:
    """
    Manages local tools, MCP server registrations, and a result cache.

    Only successful results are cached. Unregistering a tool drops its
    cached results.
    """

    def __init__(
        self,
        *,
        cache: Optional[ToolResultCache] = None,
        mcp_client: Optional[MCPClient] = None,
    ):
        self._tools: dict[str, ToolRegistration] = {}
        self._mcp_servers: dict[str, MCPServerConfig] = {}
        self._cache = cache or ToolResultCache()
        self._cache_enabled = True
        self._mcp_client = mcp_client

    # --- Registration ---

    def register_tool(self, registration: ToolRegistration) -> None:
        if registration.name in self._tools:
            logger.warning(
                "tool_overwritten", extra={"tool_name": registration.name}
            )
            self._cache.invalidate_tool(registration.name)
        self._tools[registration.name] = registration

    def unregister_tool(self, name: str) -> bool:
        """Remove a tool and its cached results. Returns False if unknown."""
        if self._tools.pop(name, None) is None:
            return False
        self._cache.invalidate_tool(name)
        return True

    def get_tool(self, name: str) -> Optional[ToolRegistration]:
        return self._tools.get(name)

    def register_mcp_server(self, config: MCPServerConfig) -> None:
        self._mcp_servers[config.name] = config

    def unregister_mcp_server(self, name: str) -> None:
        self._mcp_servers.pop(name, None)

    def get_mcp_servers(self) -> list[MCPServerConfig]:
        return list(self._mcp_servers.values())

    # --- Execution ---

    async def execute_tool(self, name: str, tool_input: Any) -> ToolResult:
        """
        Execute a registered tool, serving repeated inputs from the cache.

        The cache key is the tool name plus the canonical JSON of the
        input, so {"a": 1, "b": 2} and {"b": 2, "a": 1} share an entry.
        """
        key = ToolResultCache.make_key(name, tool_input)
        if self._cache_enabled:
            cached = self._cache.get(key)
            if cached is not None:
                return replace(cached, metadata=dict(cached.metadata))

        tool = self._tools.get(name)
        if tool is None:
            return ToolResult.fail(f"Tool {name} not found")

        try:
            result = tool.execute(tool_input)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.warning(
                "tool_execution_failed",
                extra={"tool_name": name, "error": str(e)[:200]},
            )
            return ToolResult.fail(str(e))

        if not isinstance(result, ToolResult):
            return ToolResult.fail(
                f"Tool {name} returned {type(result).__name__}, expected ToolResult"
            )

        if self._cache_enabled and result.success:
            self._cache.put(
                key, replace(result, metadata=dict(result.metadata)), tool_name=name
            )

        return result

    async def execute_with_fallback(self, tool_name: str, tool_input: Any) -> ToolResult:
        """
        Try the local registry, then each enabled MCP server.

        A server is used only if its discovered tool list contains the
        name with any "mcp:" prefix removed. Servers are skipped when no
        MCP client is configured.
        """
        local_result = await self.execute_tool(tool_name, tool_input)
        if local_result.success:
            return local_result

        mcp_tool_name = strip_mcp_prefix(tool_name)
        for server in self._mcp_servers.values():
            if not server.enabled:
                continue
            if self._mcp_client is None:
                logger.debug(
                    "mcp_client_not_configured", extra={"server": server.name}
                )
                continue

            try:
                available = await self._mcp_client.list_tools(server)
                if mcp_tool_name not in available:
                    continue
                result = await self._mcp_client.call_tool(
                    server, mcp_tool_name, tool_input
                )
            except Exception as e:
                logger.warning(
                    "mcp_tool_failed",
                    extra={
                        "server": server.name,
                        "tool_name": mcp_tool_name,
                        "error": str(e)[:200],
                    },
                )
                continue

            if result.success:
                return result

        return ToolResult.fail(f"Tool {tool_name} not available")

    # --- Discovery ---

    def get_available_tools(self) -> list[ToolSchema]:
        """Local tool schemas plus one placeholder per enabled MCP server."""
        tools: list[ToolSchema] = []

        for tool in self._tools.values():
            schema = tool.schema
            tools.append(ToolSchema(
                name=tool.name,
                description=schema.description if schema else f"Execute {tool.name}",
                input_schema=schema.input_schema if schema else None,
                output_schema=schema.output_schema if schema else None,
            ))

        for server in self._mcp_servers.values():
            if server.enabled:
                tools.append(ToolSchema(
                    name=f"{MCP_PREFIX}{server.name}",
                    description=f"MCP tool from {server.name}",
                    input_schema={},
                    output_schema={},
                ))

        return tools

    # --- Cache control ---

    def clear_cache(self) -> int:
        return self._cache.clear()

    def set_cache_enabled(self, enabled: bool) -> None:
        self._cache_enabled = enabled

    def get_cache_stats(self) -> dict[str, Any]:
        stats = self._cache.get_stats()
        stats["enabled"] = self._cache_enabled
        return stats

    # --- Lifecycle ---

    async def initialize(self) -> None:
        for server in self._mcp_servers.values():
            if server.enabled:
                logger.info(
                    "mcp_server_registered",
                    extra={"server": server.name, "url": server.url},
                )

    async def disconnect_all(self) -> None:
        for server in self._mcp_servers.values():
            logger.info("mcp_server_disconnected", extra={"server": server.name})
