"""Tool schema, result, and registration types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union


@dataclass
class ToolSchema:
    """Description of a tool as exposed to a model."""

    name: str
    description: str
    input_schema: Optional[dict[str, Any]] = None
    output_schema: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
        }


@dataclass
class ToolResult:
    """Outcome of a tool execution. Failures are data, not exceptions."""

    success: bool
    output: Any = None
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, output: Any = None, **metadata: Any) -> "ToolResult":
        return cls(success=True, output=output, metadata=dict(metadata))

    @classmethod
    def fail(cls, error: str, **metadata: Any) -> "ToolResult":
        return cls(success=False, error=error, metadata=dict(metadata))


ToolExecutor = Callable[[Any], Union[Awaitable[ToolResult], ToolResult]]


@dataclass
class ToolRegistration:
    """A named, executable tool with an optional schema."""

    name: str
    execute: ToolExecutor
    schema: Optional[ToolSchema] = None
