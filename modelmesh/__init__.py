"""
modelmesh — multi-provider completion routing.

Picks among interchangeable text-generation backends, streams tokens
back with ordered fallback, tracks spend, and manages cached tool
execution.

Modules:
- llm: providers, provider factory, ModelManager, StreamHandler
- tools: ToolManager with LRU/TTL result cache and MCP fallback
- config: Pydantic schema + YAML loader for ModelConfig
- observability: structured logging configuration
- exceptions: error hierarchy
"""

__version__ = "0.3.0"
