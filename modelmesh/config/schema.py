"""
Pydantic configuration schema for modelmesh.

A deployment is described by a single models.yaml that conforms to
ModelConfig: which providers exist, which models each one offers, and
the ordered fallback chain used for selection and streaming.

Model identifiers in the fallback chain use the "provider/model" form,
e.g. "anthropic/claude-3-5-sonnet-20241022".
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Model catalog entries
# ---------------------------------------------------------------------------

class ModelInfo(BaseModel):
    """One entry in a provider's static model catalog."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    max_tokens: Optional[int] = Field(
        None, description="Maximum output tokens the model will produce"
    )
    context_length: Optional[int] = None


class PricedModelInfo(ModelInfo):
    """Catalog entry for a billed backend (USD per 1K tokens)."""
    context_window: int = 0
    input_cost_per_1k: float = 0.0
    output_cost_per_1k: float = 0.0


# ---------------------------------------------------------------------------
# Provider + MCP server configs
# ---------------------------------------------------------------------------

class ProviderConfig(BaseModel):
    """Configuration for one backend. Input only, never mutated."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Provider type, e.g. 'anthropic', 'host'")
    api_key: Optional[str] = None
    api_key_env: Optional[str] = Field(
        None, description="Environment variable holding the API key"
    )
    base_url: Optional[str] = None
    models: list[ModelInfo] = Field(default_factory=list)
    enabled: bool = True

    @field_validator("name")
    @classmethod
    def name_is_lowercase(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("provider name must not be empty")
        return v


class MCPServerConfig(BaseModel):
    """An MCP server the tool manager may fall back to."""
    name: str
    url: str
    enabled: bool = True


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

class ModelConfig(BaseModel):
    """Process-level routing configuration."""
    default_model: str = Field(
        ..., description="Default model in provider/model form"
    )
    fallback_models: list[str] = Field(
        default_factory=list,
        description="Ordered fallback chain, tried first to last",
    )
    providers: list[ProviderConfig] = Field(default_factory=list)
    track_costs: bool = True
    count_tokens: bool = True
    mcp_servers: list[MCPServerConfig] = Field(default_factory=list)

    @field_validator("default_model")
    @classmethod
    def default_model_has_provider(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError(
                f"default_model must be in provider/model form, got '{v}'"
            )
        return v

    def get_provider_config(self, name: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None
