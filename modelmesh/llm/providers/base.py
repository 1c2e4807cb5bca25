"""
Provider contract — the fixed capability set every backend implements.

The model manager only ever talks to providers through this interface,
so a new backend means one subclass plus a factory registration:

    @register_provider_type("mybackend")
    def _build(config, factory):
        return MyBackendProvider(api_key=config.api_key, models=config.models or None)

Capabilities:
- is_available(): never raises for "not configured", just returns False
- stream_completion(): lazy async iterator of StreamChunk
- estimate_cost(): static cost-table lookup, 0.0 when unknown or free
- count_tokens(): approximate token count
- get_models() / get_model_info(): static catalog lookups
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, ClassVar, Optional, Sequence

from modelmesh.config.schema import ModelInfo, PricedModelInfo
from modelmesh.llm.cancellation import CancellationToken
from modelmesh.llm.types import (
    LLMMessage,
    LLMOptions,
    StreamChunk,
    estimate_token_count,
)

logger = logging.getLogger(__name__)


class LLMProvider(ABC):
    """
    Base class for all completion backends.

    Subclasses own their credential and a lazily-constructed client
    handle. The model catalog is explicit data passed in at
    construction; DEFAULT_MODELS is only used when none is given.
    """

    name: ClassVar[str] = ""
    DEFAULT_MODELS: ClassVar[Sequence[ModelInfo]] = ()

    def __init__(self, models: Optional[Sequence[ModelInfo]] = None):
        self._models: list[ModelInfo] = list(
            models if models else self.DEFAULT_MODELS
        )

    # --- Contract ---

    @abstractmethod
    async def is_available(self) -> bool:
        """Return True if this backend can currently serve requests."""

    @abstractmethod
    def stream_completion(
        self,
        messages: list[LLMMessage],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion as StreamChunk objects.

        Implementations are async generators. Backend exceptions must
        be re-raised as ProviderRuntimeError; a triggered cancel_token
        raises StreamCancelledError.
        """

    @abstractmethod
    def estimate_cost(self, messages: list[LLMMessage], model_id: str) -> float:
        """Estimated USD cost for sending `messages` to `model_id`."""

    async def count_tokens(self, messages: list[LLMMessage]) -> int:
        """Approximate token count (no backend tokenizer call)."""
        return estimate_token_count(messages)

    # --- Catalog ---

    def get_models(self) -> list[ModelInfo]:
        return list(self._models)

    def get_model_info(self, model_id: str) -> Optional[ModelInfo]:
        for model in self._models:
            if model.id == model_id:
                return model
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} models={len(self._models)}>"


class PricedProvider(LLMProvider):
    """
    A billed backend with a static per-model cost table.

    The cost table is built from the default catalog and then updated
    with any PricedModelInfo entries passed in, so a config can add a
    model with its own prices.
    """

    def __init__(self, models: Optional[Sequence[ModelInfo]] = None):
        super().__init__(models)
        self._pricing: dict[str, PricedModelInfo] = {
            m.id: m for m in self.DEFAULT_MODELS if isinstance(m, PricedModelInfo)
        }
        for model in self._models:
            if isinstance(model, PricedModelInfo):
                self._pricing[model.id] = model

    def get_pricing(self, model_id: str) -> Optional[PricedModelInfo]:
        return self._pricing.get(model_id)

    def estimate_cost(self, messages: list[LLMMessage], model_id: str) -> float:
        """
        Input cost from the character heuristic plus output cost assuming
        the model's full output budget. An empty message list costs 0.0.
        """
        pricing = self.get_pricing(model_id)
        if pricing is None or not messages:
            return 0.0

        input_tokens = estimate_token_count(messages)
        output_tokens = pricing.max_tokens or 0
        return (
            input_tokens / 1000 * pricing.input_cost_per_1k
            + output_tokens / 1000 * pricing.output_cost_per_1k
        )
