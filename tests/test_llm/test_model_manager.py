"""
Tests for ModelManager: provider registry, fallback selection,
fallback streaming, and cost tracking.

All providers are in-memory fakes — no network calls.
"""

from __future__ import annotations

import math
from typing import AsyncIterator, Optional

import pytest

from modelmesh.config.schema import ModelConfig, ModelInfo, ProviderConfig
from modelmesh.exceptions import (
    ConfigurationError,
    ExhaustedFallbackError,
    ModelNotSelectedError,
    ProviderRuntimeError,
    StreamCancelledError,
)
from modelmesh.llm.cancellation import CancellationToken, check_cancelled
from modelmesh.llm.factory import ProviderFactory
from modelmesh.llm.model_manager import (
    MAX_COST_HISTORY,
    ModelManager,
    create_model_manager,
    parse_model_id,
)
from modelmesh.llm.providers.base import LLMProvider
from modelmesh.llm.providers.host import HostResponse
from modelmesh.llm.types import LLMMessage, LLMOptions, MessageRole, StreamChunk


# ===========================================================================
# Fakes
# ===========================================================================

class FakeProvider(LLMProvider):
    """Scriptable provider: yields `chunks`, optionally failing after `fail_after`."""

    name = "fake"

    def __init__(
        self,
        *,
        models: Optional[list[str]] = None,
        chunks: Optional[list[str]] = None,
        fail_after: Optional[int] = None,
        available: bool = True,
        cost: float = 0.0,
        send_done: bool = True,
    ):
        super().__init__([ModelInfo(id=m, name=m) for m in (models or ["default"])])
        self.chunks = chunks if chunks is not None else ["Hello", " world"]
        self.fail_after = fail_after
        self.available = available
        self.cost = cost
        self.send_done = send_done
        self.stream_calls: list[Optional[str]] = []
        self.availability_checks = 0

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    def estimate_cost(self, messages, model_id):
        return self.cost if messages else 0.0

    async def stream_completion(
        self,
        messages,
        options: Optional[LLMOptions] = None,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamChunk]:
        self.stream_calls.append(options.model if options else None)
        for i, text in enumerate(self.chunks):
            check_cancelled(cancel_token)
            if self.fail_after is not None and i >= self.fail_after:
                raise ProviderRuntimeError(f"backend died after {i} chunks")
            yield StreamChunk(text=text)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise ProviderRuntimeError("backend died before completion")
        if self.send_done:
            yield StreamChunk(text="", done=True)


def _factory(providers: dict[str, LLMProvider]):
    """Factory that hands out pre-built fakes by config name."""

    def build(config: ProviderConfig) -> LLMProvider:
        if config.name not in providers:
            raise ConfigurationError(f"Unknown provider: {config.name}")
        return providers[config.name]

    return build


def _config(
    names: list[str],
    fallback: list[str],
    *,
    track_costs: bool = True,
    disabled: tuple[str, ...] = (),
) -> ModelConfig:
    return ModelConfig(
        default_model=fallback[0] if fallback else "none/none",
        fallback_models=fallback,
        providers=[
            ProviderConfig(name=n, enabled=n not in disabled) for n in names
        ],
        track_costs=track_costs,
    )


async def _manager(
    providers: dict[str, LLMProvider],
    fallback: list[str],
    **kwargs,
) -> ModelManager:
    config = _config(list(providers.keys()), fallback, **kwargs)
    return await create_model_manager(config, factory=_factory(providers))


async def _collect(stream) -> list[str]:
    return [text async for text in stream]


USER_MESSAGES = [LLMMessage(role=MessageRole.USER, content="hi")]


# ===========================================================================
# Test: parse_model_id
# ===========================================================================

class TestParseModelId:

    def test_provider_and_model(self):
        assert parse_model_id("anthropic/claude-3-5-sonnet-20241022") == (
            "anthropic",
            "claude-3-5-sonnet-20241022",
        )

    def test_only_first_slash_is_structural(self):
        assert parse_model_id("host/org/model-x") == ("host", "org/model-x")

    def test_no_slash(self):
        assert parse_model_id("bare") == ("bare", "")


# ===========================================================================
# Test: initialization
# ===========================================================================

class TestInitialization:

    @pytest.mark.asyncio
    async def test_available_providers_registered(self):
        manager = await _manager(
            {"host": FakeProvider(), "mock": FakeProvider()}, ["host/default"]
        )
        assert manager.get_registered_providers() == ["host", "mock"]

    @pytest.mark.asyncio
    async def test_disabled_provider_never_registered(self):
        disabled = FakeProvider()
        manager = await _manager(
            {"host": FakeProvider(), "cloud": disabled},
            ["host/default"],
            disabled=("cloud",),
        )
        assert "cloud" not in manager.get_registered_providers()
        assert disabled.availability_checks == 0

    @pytest.mark.asyncio
    async def test_unavailable_provider_omitted(self, caplog):
        manager = await _manager(
            {"cloud": FakeProvider(available=False), "host": FakeProvider()},
            ["host/default"],
        )
        assert manager.get_registered_providers() == ["host"]
        assert any(r.getMessage() == "provider_unavailable" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_construction_error_does_not_block_others(self):
        config = ModelConfig(
            default_model="mock/mock-stream",
            fallback_models=["mock/mock-stream"],
            providers=[
                ProviderConfig(name="anthropic"),   # no API key
                ProviderConfig(name="nonsense"),    # unknown
                ProviderConfig(name="mock"),
            ],
        )
        manager = await create_model_manager(config)
        assert manager.get_registered_providers() == ["mock"]

    @pytest.mark.asyncio
    async def test_availability_exception_treated_as_unavailable(self):
        class Exploding(FakeProvider):
            async def is_available(self):
                raise RuntimeError("probe crashed")

        manager = await _manager(
            {"bad": Exploding(), "host": FakeProvider()}, ["host/default"]
        )
        assert manager.get_registered_providers() == ["host"]


# ===========================================================================
# Test: select_model
# ===========================================================================

class TestSelectModel:

    @pytest.mark.asyncio
    async def test_single_free_host_provider(self):
        """One always-available free provider: zero-cost probe selection."""

        async def bridge(request):
            return HostResponse(content="ok", tokens_used=1)

        config = ModelConfig(
            default_model="host/default",
            fallback_models=["host/default"],
            providers=[ProviderConfig(name="host")],
        )
        manager = await create_model_manager(
            config, factory=ProviderFactory(host_bridge=bridge)
        )

        selection = await manager.select_model()

        assert selection.provider == "host"
        assert selection.model == "default"
        assert selection.estimated_cost == 0
        assert selection.estimated_tokens == 0
        assert manager.current_provider == "host"
        assert manager.current_model == "default"

    @pytest.mark.asyncio
    async def test_skips_provider_without_credentials(self):
        """cloud/x has no API key, so host/default is committed."""

        async def bridge(request):
            return HostResponse(content="ok")

        config = ModelConfig(
            default_model="cloud/x",
            fallback_models=["cloud/x", "host/default"],
            providers=[
                ProviderConfig(name="anthropic"),
                ProviderConfig(name="host"),
            ],
        )
        manager = await create_model_manager(
            config, factory=ProviderFactory(host_bridge=bridge)
        )

        selection = await manager.select_model()
        assert (selection.provider, selection.model) == ("host", "default")

    @pytest.mark.asyncio
    async def test_explicit_model_bypasses_fallback_list(self):
        manager = await _manager(
            {"a": FakeProvider(models=["m1"]), "b": FakeProvider(models=["m2"])},
            ["a/m1"],
        )
        selection = await manager.select_model("b/m2")
        assert selection.model_id == "b/m2"

    @pytest.mark.asyncio
    async def test_explicit_model_failure_does_not_use_fallbacks(self):
        manager = await _manager({"a": FakeProvider(models=["m1"])}, ["a/m1"])
        with pytest.raises(ExhaustedFallbackError) as exc_info:
            await manager.select_model("a/missing")
        assert exc_info.value.attempted == ["a/missing"]
        assert manager.current_model is None

    @pytest.mark.asyncio
    async def test_empty_provider_list_exhausts(self):
        config = ModelConfig(
            default_model="a/m1", fallback_models=["a/m1", "b/m2"], providers=[]
        )
        manager = await create_model_manager(config)
        with pytest.raises(ExhaustedFallbackError, match="No available model"):
            await manager.select_model()

    @pytest.mark.asyncio
    async def test_availability_rechecked_at_selection(self):
        flaky = FakeProvider(models=["m1"])
        backup = FakeProvider(models=["m2"])
        manager = await _manager({"a": flaky, "b": backup}, ["a/m1", "b/m2"])

        flaky.available = False
        selection = await manager.select_model()
        assert selection.model_id == "b/m2"

    @pytest.mark.asyncio
    async def test_catalog_miss_skipped(self):
        manager = await _manager(
            {"a": FakeProvider(models=["m1"]), "b": FakeProvider(models=["m2"])},
            ["a/unknown", "b/m2"],
        )
        selection = await manager.select_model()
        assert selection.model_id == "b/m2"

    @pytest.mark.asyncio
    async def test_model_ids_with_slashes(self):
        manager = await _manager(
            {"host": FakeProvider(models=["org/model-x"])}, ["host/org/model-x"]
        )
        selection = await manager.select_model()
        assert selection.provider == "host"
        assert selection.model == "org/model-x"

    @pytest.mark.asyncio
    async def test_failed_selection_keeps_previous_current(self):
        manager = await _manager({"a": FakeProvider(models=["m1"])}, ["a/m1"])
        await manager.select_model()
        with pytest.raises(ExhaustedFallbackError):
            await manager.select_model("zzz/none")
        assert manager.current_model_id == "a/m1"


# ===========================================================================
# Test: stream_completion
# ===========================================================================

class TestStreamCompletion:

    @pytest.mark.asyncio
    async def test_requires_selection(self):
        manager = await _manager({"a": FakeProvider()}, ["a/default"])
        with pytest.raises(ModelNotSelectedError):
            await _collect(manager.stream_completion(USER_MESSAGES))

    @pytest.mark.asyncio
    async def test_streams_text_deltas(self):
        provider = FakeProvider(chunks=["Hel", "lo", "!"])
        manager = await _manager({"a": provider}, ["a/default"])
        await manager.select_model()

        texts = await _collect(manager.stream_completion(USER_MESSAGES))

        assert texts == ["Hel", "lo", "!"]
        assert provider.stream_calls == ["default"]

    @pytest.mark.asyncio
    async def test_accepts_plain_dict_messages(self):
        manager = await _manager({"a": FakeProvider(chunks=["x"])}, ["a/default"])
        await manager.select_model()
        texts = await _collect(
            manager.stream_completion([{"role": "user", "content": "hi"}])
        )
        assert texts == ["x"]

    @pytest.mark.asyncio
    async def test_partial_output_not_retracted_before_fallback(self):
        """k chunks from a failing attempt reach the caller before the fallback's."""
        primary = FakeProvider(models=["m1"], chunks=["a", "b", "c", "d"], fail_after=2)
        backup = FakeProvider(models=["m2"], chunks=["X", "Y"])
        manager = await _manager({"p": primary, "b": backup}, ["p/m1", "b/m2"])
        await manager.select_model()

        received: list[str] = []
        async for text in manager.stream_completion(USER_MESSAGES):
            received.append(text)

        assert received == ["a", "b", "a", "b", "X", "Y"]

    @pytest.mark.asyncio
    async def test_current_model_retried_as_first_fallback(self):
        """Attempt order is [current, *fallbacks]; current appears twice here."""
        primary = FakeProvider(models=["m1"], chunks=["a"], fail_after=0)
        backup = FakeProvider(models=["m2"], chunks=["ok"])
        manager = await _manager({"p": primary, "b": backup}, ["p/m1", "b/m2"])
        await manager.select_model()

        texts = await _collect(manager.stream_completion(USER_MESSAGES))

        assert texts == ["ok"]
        assert primary.stream_calls == ["m1", "m1"]
        assert backup.stream_calls == ["m2"]

    @pytest.mark.asyncio
    async def test_all_attempts_fail_names_last_error(self):
        first = FakeProvider(models=["m1"], chunks=["a"], fail_after=0)
        second = FakeProvider(models=["m2"], chunks=["b"], fail_after=0)
        manager = await _manager({"p": first, "q": second}, ["p/m1", "q/m2"])
        await manager.select_model()

        second_error = "backend died after 0 chunks"
        with pytest.raises(ExhaustedFallbackError) as exc_info:
            await _collect(manager.stream_completion(USER_MESSAGES))

        err = exc_info.value
        assert "All models in fallback chain failed" in str(err)
        assert second_error in str(err)
        assert err.attempted == ["p/m1", "p/m1", "q/m2"]
        assert isinstance(err.__cause__, ProviderRuntimeError)

    @pytest.mark.asyncio
    async def test_unregistered_fallbacks_skipped(self):
        primary = FakeProvider(models=["m1"], chunks=["a"], fail_after=0)
        manager = await _manager({"p": primary}, ["p/m1", "ghost/m9"])
        await manager.select_model()

        with pytest.raises(ExhaustedFallbackError) as exc_info:
            await _collect(manager.stream_completion(USER_MESSAGES))
        assert "ghost/m9" not in exc_info.value.attempted

    @pytest.mark.asyncio
    async def test_stream_without_done_counts_as_failure(self):
        silent = FakeProvider(models=["m1"], chunks=["half"], send_done=False)
        backup = FakeProvider(models=["m2"], chunks=["full"])
        manager = await _manager({"s": silent, "b": backup}, ["s/m1", "b/m2"])
        await manager.select_model()

        texts = await _collect(manager.stream_completion(USER_MESSAGES))
        assert texts == ["half", "half", "full"]

    @pytest.mark.asyncio
    async def test_options_model_substituted(self):
        provider = FakeProvider(models=["m1"])
        manager = await _manager({"a": provider}, ["a/m1"])
        await manager.select_model()

        await _collect(manager.stream_completion(
            USER_MESSAGES, LLMOptions(model="ignored", temperature=0.2)
        ))
        assert provider.stream_calls == ["m1"]

    @pytest.mark.asyncio
    async def test_cancellation_stops_without_fallback(self):
        primary = FakeProvider(models=["m1"], chunks=["a", "b", "c"])
        backup = FakeProvider(models=["m2"], chunks=["X"])
        manager = await _manager({"p": primary, "b": backup}, ["p/m1", "b/m2"])
        await manager.select_model()

        token = CancellationToken()
        received = []
        with pytest.raises(StreamCancelledError):
            async for text in manager.stream_completion(USER_MESSAGES, cancel_token=token):
                received.append(text)
                token.cancel("enough")

        assert received == ["a"]
        assert backup.stream_calls == []

    @pytest.mark.asyncio
    async def test_early_break_closes_provider_stream(self):
        closed = []

        class Tracking(FakeProvider):
            async def stream_completion(self, messages, options=None, *, cancel_token=None):
                try:
                    for text in ["a", "b", "c"]:
                        yield StreamChunk(text=text)
                    yield StreamChunk(text="", done=True)
                finally:
                    closed.append(True)

        manager = await _manager({"t": Tracking()}, ["t/default"])
        await manager.select_model()

        stream = manager.stream_completion(USER_MESSAGES)
        async for _ in stream:
            break
        await stream.aclose()

        assert closed == [True]


# ===========================================================================
# Test: cost tracking
# ===========================================================================

class TestCostTracking:

    @pytest.mark.asyncio
    async def test_three_completions_tracked(self):
        provider = FakeProvider(chunks=["x" * 40], cost=0.25)
        manager = await _manager({"a": provider}, ["a/default"])
        await manager.select_model()

        for _ in range(3):
            await _collect(manager.stream_completion(USER_MESSAGES))

        history = manager.get_cost_history()
        assert len(history) == 3
        assert manager.get_total_cost() == pytest.approx(0.75)
        for entry in history:
            assert entry.output_tokens == 10
            assert entry.input_tokens == math.ceil(len("hi") / 4)
            assert entry.input_cost == pytest.approx(0.125)
            assert entry.output_cost == pytest.approx(0.125)
            assert entry.provider == "a"
            assert entry.model == "default"

    @pytest.mark.asyncio
    async def test_history_capped_total_keeps_everything(self):
        provider = FakeProvider(chunks=["x"], cost=0.01)
        manager = await _manager({"a": provider}, ["a/default"])
        await manager.select_model()

        n = MAX_COST_HISTORY + 20
        for _ in range(n):
            await _collect(manager.stream_completion(USER_MESSAGES))

        assert len(manager.get_cost_history()) == MAX_COST_HISTORY
        assert manager.get_total_cost() == pytest.approx(0.01 * n)
        assert manager.get_total_cost() >= sum(
            c.total_cost for c in manager.get_cost_history()
        )

    @pytest.mark.asyncio
    async def test_tracking_disabled(self):
        provider = FakeProvider(cost=1.0)
        manager = await _manager({"a": provider}, ["a/default"], track_costs=False)
        await manager.select_model()
        await _collect(manager.stream_completion(USER_MESSAGES))

        assert manager.get_cost_history() == []
        assert manager.get_total_cost() == 0.0

    @pytest.mark.asyncio
    async def test_failed_stream_not_tracked(self):
        provider = FakeProvider(chunks=["a"], fail_after=0, cost=1.0)
        manager = await _manager({"a": provider}, ["a/default"])
        await manager.select_model()

        with pytest.raises(ExhaustedFallbackError):
            await _collect(manager.stream_completion(USER_MESSAGES))
        assert manager.get_cost_history() == []

    @pytest.mark.asyncio
    async def test_history_is_a_copy(self):
        manager = await _manager({"a": FakeProvider(cost=0.1)}, ["a/default"])
        await manager.select_model()
        await _collect(manager.stream_completion(USER_MESSAGES))

        history = manager.get_cost_history()
        history.clear()
        assert len(manager.get_cost_history()) == 1

    @pytest.mark.asyncio
    async def test_summary_average(self):
        manager = await _manager({"a": FakeProvider(cost=0.2)}, ["a/default"])
        await manager.select_model()
        for _ in range(4):
            await _collect(manager.stream_completion(USER_MESSAGES))

        summary = manager.get_cost_summary()
        assert summary.count == 4
        assert summary.total == pytest.approx(0.8)
        assert summary.average == pytest.approx(summary.total / summary.count)

    @pytest.mark.asyncio
    async def test_summary_empty(self):
        manager = await _manager({"a": FakeProvider()}, ["a/default"])
        summary = manager.get_cost_summary()
        assert summary.count == 0
        assert summary.average == 0
        assert summary.by_provider == {}

    @pytest.mark.asyncio
    async def test_summary_attributes_to_current_provider(self):
        """All retained entries are keyed by whichever provider is current now."""
        a = FakeProvider(models=["m1"], cost=0.1)
        b = FakeProvider(models=["m2"], cost=0.3)
        manager = await _manager({"a": a, "b": b}, ["a/m1", "b/m2"])

        await manager.select_model("a/m1")
        await _collect(manager.stream_completion(USER_MESSAGES))
        await manager.select_model("b/m2")
        await _collect(manager.stream_completion(USER_MESSAGES))

        summary = manager.get_cost_summary()
        assert summary.by_provider == {"b": pytest.approx(0.4)}

    @pytest.mark.asyncio
    async def test_reset(self):
        manager = await _manager({"a": FakeProvider(cost=0.5)}, ["a/default"])
        await manager.select_model()
        await _collect(manager.stream_completion(USER_MESSAGES))

        manager.reset_cost_tracking()
        assert manager.get_total_cost() == 0.0
        assert manager.get_cost_history() == []


# ===========================================================================
# Test: catalog accessors
# ===========================================================================

class TestCatalog:

    @pytest.mark.asyncio
    async def test_all_models_flattened(self):
        manager = await _manager(
            {"a": FakeProvider(models=["m1", "m2"]), "b": FakeProvider(models=["m3"])},
            ["a/m1"],
        )
        assert [m.id for m in manager.get_all_models()] == ["m1", "m2", "m3"]

    @pytest.mark.asyncio
    async def test_provider_models(self):
        manager = await _manager({"a": FakeProvider(models=["m1"])}, ["a/m1"])
        assert [m.id for m in manager.get_provider_models("a")] == ["m1"]
        assert manager.get_provider_models("missing") == []
