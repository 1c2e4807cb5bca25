"""
Provider Factory — builds a provider instance from a ProviderConfig.

Dispatch goes through a name-keyed registry of constructors, so a new
backend is one decorated function:

    @register_provider_type("mybackend")
    def _build_mybackend(config, factory):
        return MyBackendProvider(...)

Construction is where credentials are validated: a backend that needs
an API key fails here with ConfigurationError, not on first use. The
factory is stateless dispatch; caching instances is the model
manager's job.

Usage:
    from modelmesh.llm.factory import create_provider

    provider = create_provider(ProviderConfig(name="anthropic", api_key="sk-..."))
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from modelmesh.config.schema import ProviderConfig
from modelmesh.exceptions import ConfigurationError
from modelmesh.llm.providers.anthropic import AnthropicProvider
from modelmesh.llm.providers.base import LLMProvider
from modelmesh.llm.providers.gemini import GeminiProvider
from modelmesh.llm.providers.host import HostBridge, HostProvider
from modelmesh.llm.providers.mock import MockProvider
from modelmesh.llm.providers.ollama import OllamaProvider
from modelmesh.llm.providers.openai import OpenAIProvider

logger = logging.getLogger(__name__)

ProviderConstructor = Callable[[ProviderConfig, "ProviderFactory"], LLMProvider]

# Global map: provider name -> constructor
PROVIDER_CONSTRUCTORS: dict[str, ProviderConstructor] = {}


def register_provider_type(*names: str):
    """
    Decorator to register a provider constructor under one or more names.

    Usage:
        @register_provider_type("ollama", "local")
        def _build_ollama(config, factory):
            ...
    """

    def decorator(fn: ProviderConstructor) -> ProviderConstructor:
        for name in names:
            if name in PROVIDER_CONSTRUCTORS:
                logger.warning(
                    f"Overwriting existing provider type registration: {name}"
                )
            PROVIDER_CONSTRUCTORS[name] = fn
        return fn

    return decorator


def _require_api_key(config: ProviderConfig, label: str) -> str:
    if not config.api_key:
        hint = f" (set {config.api_key_env})" if config.api_key_env else ""
        raise ConfigurationError(
            f"{label} provider requires API key{hint}",
            provider=config.name,
        )
    return config.api_key


# ---------------------------------------------------------------------------
# Built-in constructors
# ---------------------------------------------------------------------------

@register_provider_type("anthropic")
def _build_anthropic(config: ProviderConfig, factory: "ProviderFactory") -> LLMProvider:
    return AnthropicProvider(
        api_key=_require_api_key(config, "Anthropic"),
        base_url=config.base_url,
        models=config.models or None,
    )


@register_provider_type("openai")
def _build_openai(config: ProviderConfig, factory: "ProviderFactory") -> LLMProvider:
    return OpenAIProvider(
        api_key=_require_api_key(config, "OpenAI"),
        base_url=config.base_url,
        models=config.models or None,
    )


@register_provider_type("gemini")
def _build_gemini(config: ProviderConfig, factory: "ProviderFactory") -> LLMProvider:
    return GeminiProvider(
        api_key=_require_api_key(config, "Gemini"),
        base_url=config.base_url,
        models=config.models or None,
    )


@register_provider_type("ollama", "local")
def _build_ollama(config: ProviderConfig, factory: "ProviderFactory") -> LLMProvider:
    return OllamaProvider(base_url=config.base_url, models=config.models or None)


@register_provider_type("host", "vscode")
def _build_host(config: ProviderConfig, factory: "ProviderFactory") -> LLMProvider:
    return HostProvider(bridge=factory.host_bridge, models=config.models or None)


@register_provider_type("mock")
def _build_mock(config: ProviderConfig, factory: "ProviderFactory") -> LLMProvider:
    return MockProvider(models=config.models or None)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class ProviderFactory:
    """
    Creates providers by name.

    Holds the collaborators some backends need at construction time
    (currently the host bridge) and, optionally, a private constructor
    table that replaces the global registry.
    """

    def __init__(
        self,
        *,
        host_bridge: Optional[HostBridge] = None,
        constructors: Optional[dict[str, ProviderConstructor]] = None,
    ):
        self.host_bridge = host_bridge
        self._constructors = constructors

    @property
    def constructors(self) -> dict[str, ProviderConstructor]:
        if self._constructors is not None:
            return self._constructors
        return PROVIDER_CONSTRUCTORS

    def create(self, config: ProviderConfig) -> LLMProvider:
        constructor = self.constructors.get(config.name)
        if constructor is None:
            raise ConfigurationError(
                f"Unknown provider: {config.name}",
                provider=config.name,
                details={"known": self.available_types()},
            )
        return constructor(config, self)

    def available_types(self) -> list[str]:
        return sorted(self.constructors.keys())

    def __call__(self, config: ProviderConfig) -> LLMProvider:
        return self.create(config)


def create_provider(
    config: ProviderConfig,
    host_bridge: Optional[HostBridge] = None,
) -> LLMProvider:
    """Create a provider instance from its config."""
    return ProviderFactory(host_bridge=host_bridge).create(config)


def available_provider_types() -> list[str]:
    """Return all registered provider names."""
    return sorted(PROVIDER_CONSTRUCTORS.keys())


def is_valid_provider(name: str) -> bool:
    return name in PROVIDER_CONSTRUCTORS
