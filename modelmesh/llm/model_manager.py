"""
Model Manager — fallback-ordered model selection and streaming.

Holds the registry of initialized providers, commits one
(provider, model) pair as "current", streams completions through an
ordered fallback chain, and keeps a bounded cost history.

Model identifiers use the "provider/model" form. Only the first slash
is structural: "host/org/model" parses as provider "host" and model
"org/model".

Usage:
    from modelmesh.llm.model_manager import create_model_manager

    manager = await create_model_manager(config)
    selection = await manager.select_model()
    print(f"Using {selection.provider}/{selection.model}")

    async for text in manager.stream_completion(
        [{"role": "system", "content": "Be brief."},
         {"role": "user", "content": "Explain fallbacks."}],
    ):
        print(text, end="", flush=True)

    print(f"\\nSpent so far: ${manager.get_total_cost():.4f}")
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import replace
from typing import AsyncIterator, Callable, Iterable, Optional

from modelmesh.config.schema import ModelConfig, ModelInfo, ProviderConfig
from modelmesh.exceptions import (
    ExhaustedFallbackError,
    ModelNotSelectedError,
    ProviderRuntimeError,
    StreamCancelledError,
)
from modelmesh.llm.cancellation import CancellationToken, check_cancelled
from modelmesh.llm.factory import ProviderFactory
from modelmesh.llm.providers.base import LLMProvider
from modelmesh.llm.types import (
    CostSummary,
    LLMMessage,
    LLMOptions,
    MessageLike,
    ModelCost,
    ModelSelection,
    normalize_messages,
)

logger = logging.getLogger(__name__)

MAX_COST_HISTORY = 100
CHARS_PER_TOKEN = 4


def parse_model_id(model_id: str) -> tuple[str, str]:
    """Split "provider/model" on the first slash only."""
    provider, _, model = model_id.partition("/")
    return provider, model


class ModelManager:
    """
    Coordinates providers, model selection, fallback, and cost tracking.

    Single-caller-per-instance: the provider registry and cost history
    are not locked. Drive one instance from one task, or synchronize
    externally.
    """

    def __init__(
        self,
        config: ModelConfig,
        *,
        factory: Optional[Callable[[ProviderConfig], LLMProvider]] = None,
    ):
        self._config = config
        self._factory = factory or ProviderFactory()

        self._providers: dict[str, LLMProvider] = {}
        self._current_provider: Optional[str] = None
        self._current_model: Optional[str] = None

        self._cost_history: deque[ModelCost] = deque(maxlen=MAX_COST_HISTORY)
        self._total_cost: float = 0.0

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def current_provider(self) -> Optional[str]:
        return self._current_provider

    @property
    def current_model(self) -> Optional[str]:
        return self._current_model

    @property
    def current_model_id(self) -> Optional[str]:
        if self._current_provider is None or self._current_model is None:
            return None
        return f"{self._current_provider}/{self._current_model}"

    # --- Initialization ---

    async def initialize(self) -> None:
        """
        Build the provider registry.

        Every enabled ProviderConfig is constructed and probed; only
        available ones are admitted. One bad provider never blocks the
        others.
        """
        self._providers.clear()

        for provider_config in self._config.providers:
            name = provider_config.name
            if not provider_config.enabled:
                logger.debug("provider_disabled", extra={"provider": name})
                continue

            try:
                provider = self._factory(provider_config)
            except Exception as e:
                logger.error(
                    "provider_init_failed",
                    extra={"provider": name, "error": str(e)[:200]},
                )
                continue

            if await self._check_available(name, provider):
                self._providers[name] = provider
                logger.info(
                    "provider_registered",
                    extra={"provider": name, "models": len(provider.get_models())},
                )
            else:
                logger.warning("provider_unavailable", extra={"provider": name})

    async def _check_available(self, name: str, provider: LLMProvider) -> bool:
        try:
            return bool(await provider.is_available())
        except Exception as e:
            logger.warning(
                "provider_availability_check_failed",
                extra={"provider": name, "error": str(e)[:200]},
            )
            return False

    async def aclose(self) -> None:
        """Release provider client handles that hold connections."""
        for provider in self._providers.values():
            close = getattr(provider, "aclose", None)
            if close is not None:
                await close()

    # --- Selection ---

    async def select_model(self, model_id: Optional[str] = None) -> ModelSelection:
        """
        Commit the first usable candidate as the current model.

        Candidates are [model_id] when given, otherwise the configured
        fallback chain. A candidate is skipped when its provider is not
        registered, is no longer available, or doesn't list the model.

        Raises:
            ExhaustedFallbackError: no candidate passed all checks.
        """
        candidates = [model_id] if model_id else list(self._config.fallback_models)

        for candidate in candidates:
            provider_name, model_name = parse_model_id(candidate)

            provider = self._providers.get(provider_name)
            if provider is None:
                logger.warning(
                    "candidate_provider_not_registered",
                    extra={"candidate": candidate, "provider": provider_name},
                )
                continue

            if not await self._check_available(provider_name, provider):
                logger.warning(
                    "candidate_provider_unavailable",
                    extra={"candidate": candidate, "provider": provider_name},
                )
                continue

            if provider.get_model_info(model_name) is None:
                logger.warning(
                    "candidate_model_not_found",
                    extra={"candidate": candidate, "provider": provider_name},
                )
                continue

            self._current_provider = provider_name
            self._current_model = model_name

            estimated_cost = provider.estimate_cost([], model_name)
            estimated_tokens = await self._count_tokens(provider, [])

            logger.info(
                "model_selected",
                extra={"provider": provider_name, "model": model_name},
            )
            return ModelSelection(
                provider=provider_name,
                model=model_name,
                estimated_cost=estimated_cost,
                estimated_tokens=estimated_tokens,
            )

        raise ExhaustedFallbackError(
            "No available model found in fallback chain",
            attempted=candidates,
        )

    # --- Streaming ---

    async def stream_completion(
        self,
        messages: Iterable[MessageLike],
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[str]:
        """
        Stream text deltas, falling back through the chain on failure.

        Attempt order is the current model followed by the whole
        fallback chain, so the current model may be tried twice. Text
        already yielded from an attempt that later fails is not
        retracted; the next attempt's output follows it.

        Raises:
            ModelNotSelectedError: select_model() has not succeeded.
            StreamCancelledError: cancel_token was triggered.
            ExhaustedFallbackError: every attempt failed. Only the most
                recent failure is named (and chained).
        """
        current = self.current_model_id
        if current is None:
            raise ModelNotSelectedError("No model selected. Call select_model() first.")

        messages = normalize_messages(messages)
        options = options or LLMOptions()
        attempt_order = [current, *self._config.fallback_models]

        attempted: list[str] = []
        last_error: Optional[Exception] = None

        for candidate in attempt_order:
            provider_name, model_name = parse_model_id(candidate)
            provider = self._providers.get(provider_name)
            if provider is None:
                continue

            check_cancelled(cancel_token)
            attempted.append(candidate)
            output_length = 0
            stream = provider.stream_completion(
                messages,
                replace(options, model=model_name),
                cancel_token=cancel_token,
            )

            try:
                async for chunk in stream:
                    if chunk.text:
                        output_length += len(chunk.text)
                        yield chunk.text

                    if chunk.done:
                        if self._config.track_costs:
                            await self._track_cost(
                                provider_name, provider, model_name,
                                messages, output_length,
                            )
                        logger.info(
                            "stream_completed",
                            extra={
                                "provider": provider_name,
                                "model": model_name,
                                "text_length": output_length,
                                "is_fallback": candidate != current,
                            },
                        )
                        return

                raise ProviderRuntimeError(
                    "Stream ended without a completion signal",
                    provider=provider_name,
                    model=model_name,
                )

            except StreamCancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    "stream_attempt_failed",
                    extra={
                        "candidate": candidate,
                        "emitted_chars": output_length,
                        "error": str(e)[:200],
                    },
                )
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

        raise ExhaustedFallbackError(
            f"All models in fallback chain failed. Last error: {last_error}",
            attempted=attempted,
        ) from last_error

    # --- Cost Tracking ---

    async def _count_tokens(self, provider: LLMProvider, messages: list[LLMMessage]) -> int:
        if not self._config.count_tokens:
            return 0
        return await provider.count_tokens(messages)

    async def _track_cost(
        self,
        provider_name: str,
        provider: LLMProvider,
        model_name: str,
        messages: list[LLMMessage],
        output_length: int,
    ) -> None:
        cost = provider.estimate_cost(messages, model_name)

        entry = ModelCost(
            input_tokens=await self._count_tokens(provider, messages),
            output_tokens=math.ceil(output_length / CHARS_PER_TOKEN),
            input_cost=cost * 0.5,  # approximate split
            output_cost=cost * 0.5,
            total_cost=cost,
            provider=provider_name,
            model=model_name,
        )

        self._cost_history.append(entry)
        self._total_cost += cost

    def get_total_cost(self) -> float:
        return self._total_cost

    def get_cost_history(self) -> list[ModelCost]:
        return list(self._cost_history)

    def reset_cost_tracking(self) -> None:
        self._cost_history.clear()
        self._total_cost = 0.0

    def get_cost_summary(self) -> CostSummary:
        """
        Totals over the retained history.

        by_provider attributes every retained entry to the provider that
        is current at call time, not the one that served each entry.
        """
        key = self._current_provider or "unknown"
        by_provider: dict[str, float] = {}
        for cost in self._cost_history:
            by_provider[key] = by_provider.get(key, 0.0) + cost.total_cost

        count = len(self._cost_history)
        return CostSummary(
            total=self._total_cost,
            count=count,
            average=self._total_cost / count if count > 0 else 0.0,
            by_provider=by_provider,
        )

    # --- Catalog ---

    def get_registered_providers(self) -> list[str]:
        return list(self._providers.keys())

    def get_provider(self, name: str) -> Optional[LLMProvider]:
        return self._providers.get(name)

    def get_all_models(self) -> list[ModelInfo]:
        models: list[ModelInfo] = []
        for provider in self._providers.values():
            models.extend(provider.get_models())
        return models

    def get_provider_models(self, provider_name: str) -> list[ModelInfo]:
        provider = self._providers.get(provider_name)
        return provider.get_models() if provider is not None else []


async def create_model_manager(
    config: ModelConfig,
    *,
    factory: Optional[Callable[[ProviderConfig], LLMProvider]] = None,
) -> ModelManager:
    """Create a ModelManager and initialize its provider registry."""
    manager = ModelManager(config, factory=factory)
    await manager.initialize()
    return manager
