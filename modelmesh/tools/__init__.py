"""
Tool registry and execution.

- types: ToolSchema, ToolResult, ToolRegistration
- cache: ToolResultCache — LRU + TTL result cache
- manager: ToolManager — registration, cached execution, MCP fallback
- mcp: MCPClient protocol and fastmcp adapter
"""
