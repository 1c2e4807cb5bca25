"""
Core runtime types shared by providers, the model manager, and the
stream handler.

Configuration types (ModelInfo, ProviderConfig, ModelConfig) live in
modelmesh.config.schema; everything here is created per call.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional, Union


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageRole(str, Enum):
    """Roles accepted by every provider."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class LLMMessage:
    """A single provider-agnostic chat message."""

    role: MessageRole
    content: str

    def __post_init__(self) -> None:
        if not isinstance(self.role, MessageRole):
            self.role = MessageRole(self.role)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LLMMessage":
        return cls(role=MessageRole(data["role"]), content=str(data.get("content", "")))

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


MessageLike = Union[LLMMessage, dict[str, Any]]


def normalize_messages(messages: Optional[Iterable[MessageLike]]) -> list[LLMMessage]:
    """Accept LLMMessage objects or plain {"role", "content"} dicts."""
    if not messages:
        return []
    return [
        m if isinstance(m, LLMMessage) else LLMMessage.from_dict(m)
        for m in messages
    ]


def split_system_messages(
    messages: list[LLMMessage],
) -> tuple[str, list[LLMMessage]]:
    """
    Separate system entries from conversational turns.

    Returns (joined system prompt, remaining user/assistant turns).
    """
    system = [m.content for m in messages if m.role == MessageRole.SYSTEM]
    turns = [m for m in messages if m.role != MessageRole.SYSTEM]
    return "\n".join(system), turns


def estimate_token_count(messages: list[LLMMessage]) -> int:
    """Character-length heuristic: roughly four characters per token."""
    total_chars = sum(len(m.content) for m in messages)
    return math.ceil(total_chars / 4)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

@dataclass
class LLMOptions:
    """Per-call generation options. None means "use the backend default"."""

    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: Optional[list[str]] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None


# ---------------------------------------------------------------------------
# Stream Chunk
# ---------------------------------------------------------------------------

@dataclass
class StreamChunk:
    """A single chunk of streamed text from a provider."""

    text: str                       # The new text fragment
    done: bool = False              # True on the chunk that ends the stream
    tokens: Optional[int] = None    # Tokens so far, when the backend reports it


# ---------------------------------------------------------------------------
# Selection + Cost
# ---------------------------------------------------------------------------

@dataclass
class ModelSelection:
    """Result of a successful select_model() call."""

    provider: str
    model: str
    estimated_cost: float = 0.0
    estimated_tokens: int = 0

    @property
    def model_id(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass
class ModelCost:
    """One recorded estimate for a completed stream."""

    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    provider: str = ""              # Provider that actually served the stream
    model: str = ""


@dataclass
class CostSummary:
    """Aggregate view over the retained cost history."""

    total: float
    count: int
    average: float
    by_provider: dict[str, float] = field(default_factory=dict)
