"""Tests for the summarization service: retries, fallback, batching and dedup."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from pr_summarizer.models.domain import (
    GenerationState,
    ProviderConfig,
    ProviderKind,
    PullRequestRef,
    RawModelResponse,
)
from pr_summarizer.services.llm_service import MAX_TRACKED_STATES, NO_PROVIDERS_REASON, SummarizationService
from pr_summarizer.services.providers import ProviderError, ProviderErrorKind
from pr_summarizer.services.summary_store import InMemorySummaryStore

MODEL_TEXT = """## Summary
Adds retries.

## Key Changes
- Add RetryPolicy

## Review Priority
High priority: touches delivery.
"""


class _FakeAdapter:
    """Scripted stand-in for ProviderAdapter.

    ``script`` maps a provider name to a list of outcomes consumed in order;
    an outcome is response text or an exception to raise. Once a script is
    exhausted the provider answers with MODEL_TEXT.
    """

    def __init__(self, script=None, configured=(ProviderKind.OPENAI,), slow_marker=None):
        self.script = {name: list(outcomes) for name, outcomes in (script or {}).items()}
        self.configured = list(configured)
        self.slow_marker = slow_marker
        self.calls = []
        self.models = []
        self.active = 0
        self.max_active = 0

    def configured_providers(self):
        return list(self.configured)

    async def invoke(self, prompt, config):
        self.calls.append(config.provider)
        self.models.append(config.model)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.02 if self.slow_marker and self.slow_marker in prompt else 0)
        finally:
            self.active -= 1

        outcomes = self.script.get(config.provider)
        outcome = outcomes.pop(0) if outcomes else MODEL_TEXT
        if isinstance(outcome, Exception):
            raise outcome
        return RawModelResponse(text=outcome, provider=config.provider, model=config.model)


def _make_pr(pr_id="1", **overrides):
    fields = dict(
        id=pr_id,
        number=int(pr_id),
        title=f"PR {pr_id}",
        body="Body",
        author="octocat",
        repository="acme/hooks",
        changed_files=8,
        additions=200,
        deletions=40,
    )
    fields.update(overrides)
    return PullRequestRef(**fields)


def _make_service(adapter, fallback_config=None, max_retries=2, batch_size=5, batch_delay=0, retry_base_delay=0):
    return SummarizationService(
        adapter,
        default_config=ProviderConfig(provider="openai", model="gpt-4", max_retries=max_retries),
        fallback_config=fallback_config,
        batch_size=batch_size,
        batch_delay=batch_delay,
        retry_base_delay=retry_base_delay,
    )


# ---------------------------------------------------------------------------
# generate_one
# ---------------------------------------------------------------------------


class TestGenerateOne:
    def test_success_uses_model_output(self):
        service = _make_service(_FakeAdapter())
        summary = asyncio.run(service.generate_one(_make_pr()))

        assert not summary.is_fallback
        assert summary.provider_used == "openai"
        assert summary.model_used == "gpt-4"
        assert summary.key_changes == ["Add RetryPolicy"]
        assert service.get_generation_state("1") == GenerationState.STORED

    def test_no_providers_gives_fallback(self):
        adapter = _FakeAdapter(configured=())
        service = _make_service(adapter)

        summary = asyncio.run(service.generate_one(_make_pr()))

        assert summary.is_fallback
        assert NO_PROVIDERS_REASON in summary.narrative_text
        assert adapter.calls == []
        assert service.get_generation_state("1") == GenerationState.FALLBACK_STORED

    def test_retryable_error_is_retried(self):
        adapter = _FakeAdapter({"openai": [ProviderError(ProviderErrorKind.RATE_LIMITED, "429")]})
        service = _make_service(adapter)

        summary = asyncio.run(service.generate_one(_make_pr()))

        assert not summary.is_fallback
        assert adapter.calls == ["openai", "openai"]

    def test_retries_exhausted_gives_fallback(self):
        error = ProviderError(ProviderErrorKind.TIMEOUT, "slow")
        adapter = _FakeAdapter({"openai": [error, error, error, error]})
        service = _make_service(adapter, max_retries=2)

        summary = asyncio.run(service.generate_one(_make_pr()))

        assert summary.is_fallback
        assert "slow" in summary.narrative_text
        assert len(adapter.calls) == 3
        assert service.get_generation_state("1") == GenerationState.FALLBACK_STORED

    def test_auth_failure_not_retried(self):
        adapter = _FakeAdapter({"openai": [ProviderError(ProviderErrorKind.AUTH_FAILURE, "bad key")]})
        service = _make_service(adapter)

        summary = asyncio.run(service.generate_one(_make_pr()))

        assert summary.is_fallback
        assert adapter.calls == ["openai"]

    def test_secondary_provider_used_after_primary_fails(self):
        adapter = _FakeAdapter(
            {"openai": [ProviderError(ProviderErrorKind.AUTH_FAILURE, "bad key")]},
            configured=(ProviderKind.OPENAI, ProviderKind.OLLAMA),
        )
        service = _make_service(adapter, fallback_config=ProviderConfig(provider="ollama", model="llama2"))

        summary = asyncio.run(service.generate_one(_make_pr()))

        assert not summary.is_fallback
        assert summary.provider_used == "ollama"
        assert adapter.calls == ["openai", "ollama"]

    def test_unexpected_exception_gives_fallback(self):
        adapter = _FakeAdapter({"openai": [RuntimeError("boom")]})
        service = _make_service(adapter)

        summary = asyncio.run(service.generate_one(_make_pr()))

        assert summary.is_fallback
        assert "boom" in summary.narrative_text

    def test_config_overrides_applied(self):
        adapter = _FakeAdapter(configured=(ProviderKind.OPENAI, ProviderKind.ANTHROPIC))
        service = _make_service(adapter)

        summary = asyncio.run(
            service.generate_one(_make_pr(), {"provider": "anthropic", "model": "claude-3-haiku-20240307"})
        )

        assert summary.provider_used == "anthropic"
        assert adapter.calls == ["anthropic"]


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------


class TestGenerateBatch:
    def test_one_summary_per_pr_in_input_order(self):
        adapter = _FakeAdapter(slow_marker="PR 1\n")
        service = _make_service(adapter, batch_size=3)
        prs = [_make_pr(str(i)) for i in range(1, 8)]

        summaries = asyncio.run(service.generate_batch(prs))

        assert [s.pr_id for s in summaries] == [pr.id for pr in prs]

    def test_concurrency_bounded_by_batch_size(self):
        adapter = _FakeAdapter()
        service = _make_service(adapter, batch_size=2)

        asyncio.run(service.generate_batch([_make_pr(str(i)) for i in range(1, 6)]))

        assert adapter.max_active == 2
        assert len(adapter.calls) == 5

    def test_failures_do_not_abort_batch(self):
        adapter = _FakeAdapter({"openai": [ProviderError(ProviderErrorKind.AUTH_FAILURE, "bad key")]})
        service = _make_service(adapter, batch_size=5)
        prs = [_make_pr(str(i)) for i in range(1, 4)]

        summaries = asyncio.run(service.generate_batch(prs))

        assert len(summaries) == 3
        assert sum(1 for s in summaries if s.is_fallback) == 1

    def test_empty_batch(self):
        service = _make_service(_FakeAdapter())
        assert asyncio.run(service.generate_batch([])) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            _make_service(_FakeAdapter(), batch_size=0)


# ---------------------------------------------------------------------------
# New-PR selection and storing
# ---------------------------------------------------------------------------


class TestGenerateForNewPrs:
    def test_skips_existing(self):
        service = _make_service(_FakeAdapter())
        prs = [_make_pr("1"), _make_pr("2"), _make_pr("3")]

        summaries = asyncio.run(service.generate_for_new_prs(prs, {"2"}))

        assert [s.pr_id for s in summaries] == ["1", "3"]

    def test_force_includes_existing(self):
        service = _make_service(_FakeAdapter())
        prs = [_make_pr("1"), _make_pr("2")]

        summaries = asyncio.run(service.generate_for_new_prs(prs, {"1", "2"}, force=True))

        assert [s.pr_id for s in summaries] == ["1", "2"]

    def test_max_count_caps_candidates(self):
        adapter = _FakeAdapter()
        service = _make_service(adapter)
        prs = [_make_pr(str(i)) for i in range(1, 10)]

        summaries = asyncio.run(service.generate_for_new_prs(prs, set(), max_count=4))

        assert len(summaries) == 4
        assert len(adapter.calls) == 4

    def test_nothing_new(self):
        adapter = _FakeAdapter()
        service = _make_service(adapter)

        assert asyncio.run(service.generate_for_new_prs([_make_pr("1")], {"1"})) == []
        assert adapter.calls == []


class TestRefreshSummaries:
    def test_stores_new_summaries(self):
        store = InMemorySummaryStore()
        service = _make_service(_FakeAdapter())

        report = asyncio.run(service.refresh_summaries(store, [_make_pr("1"), _make_pr("2")]))

        assert report.generated == 2
        assert report.skipped == 0
        assert report.total == 2
        assert store.existing_pr_ids() == {"1", "2"}

    def test_second_pass_skips_existing(self):
        store = InMemorySummaryStore()
        service = _make_service(_FakeAdapter())
        prs = [_make_pr("1"), _make_pr("2")]
        asyncio.run(service.refresh_summaries(store, prs))

        report = asyncio.run(service.refresh_summaries(store, prs))

        assert report.generated == 0
        assert report.skipped == 2
        assert report.total == 2

    def test_force_replaces_without_duplicating(self):
        store = InMemorySummaryStore()
        service = _make_service(_FakeAdapter())
        pr = _make_pr("1")
        first = asyncio.run(service.refresh_summaries(store, [pr])).summaries[0]
        store.toggle_reviewed(first.id)

        report = asyncio.run(service.refresh_summaries(store, [pr], force=True))

        assert report.generated == 1
        assert store.count() == 1
        assert store.get(first.id).is_reviewed is True

    def test_without_providers_stores_fallbacks(self):
        store = InMemorySummaryStore()
        service = _make_service(_FakeAdapter(configured=()))

        report = asyncio.run(service.refresh_summaries(store, [_make_pr("1")]))

        assert report.generated == 1
        assert report.summaries[0].is_fallback


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


class TestDiagnostics:
    def test_connection_test_success(self):
        service = _make_service(_FakeAdapter({"openai": ["AI Service is working!"]}))
        assert asyncio.run(service.test_connection()) is True

    def test_connection_test_unexpected_answer(self):
        service = _make_service(_FakeAdapter({"openai": ["Hello there"]}))
        assert asyncio.run(service.test_connection()) is False

    def test_connection_test_propagates_provider_error(self):
        adapter = _FakeAdapter({"openai": [ProviderError(ProviderErrorKind.AUTH_FAILURE, "bad key")]})
        service = _make_service(adapter)

        with pytest.raises(ProviderError):
            asyncio.run(service.test_connection())
        assert adapter.calls == ["openai"]

    def test_service_status(self):
        service = _make_service(
            _FakeAdapter(configured=(ProviderKind.OPENAI, ProviderKind.OLLAMA)),
            fallback_config=ProviderConfig(provider="ollama", model="llama2"),
        )
        status = service.get_service_status()

        assert status["available"] is True
        assert status["providers"] == ["openai", "ollama"]
        assert status["default_provider"] == "openai"
        assert status["fallback_provider"] == "ollama"


class TestFallbackCoverage:
    def test_no_credentials_every_pr_gets_fallback(self):
        service = _make_service(_FakeAdapter(configured=()))
        prs = [_make_pr("1"), _make_pr("2"), _make_pr("3")]

        summaries = asyncio.run(service.generate_batch(prs))

        assert len(summaries) == 3
        assert all(s.provider_used == "fallback" for s in summaries)


# ---------------------------------------------------------------------------
# Pacing and backoff
# ---------------------------------------------------------------------------


def _sleep_delays(sleep):
    # Zero-length sleeps come from the fake adapter yielding control
    return [call.args[0] for call in sleep.await_args_list if call.args[0] > 0]


class TestPacing:
    def test_delay_only_between_groups(self):
        service = _make_service(_FakeAdapter(), batch_size=5, batch_delay=1.5)
        prs = [_make_pr(str(i)) for i in range(1, 12)]

        with patch("pr_summarizer.services.llm_service.asyncio.sleep", new=AsyncMock()) as sleep:
            summaries = asyncio.run(service.generate_batch(prs))

        assert len(summaries) == 11
        assert _sleep_delays(sleep) == [1.5, 1.5]

    def test_single_group_has_no_delay(self):
        service = _make_service(_FakeAdapter(), batch_size=5, batch_delay=1.5)

        with patch("pr_summarizer.services.llm_service.asyncio.sleep", new=AsyncMock()) as sleep:
            asyncio.run(service.generate_batch([_make_pr(str(i)) for i in range(1, 6)]))

        assert _sleep_delays(sleep) == []

    def test_retry_backoff_doubles(self):
        error = ProviderError(ProviderErrorKind.RATE_LIMITED, "429")
        adapter = _FakeAdapter({"openai": [error, error]})
        service = _make_service(adapter, max_retries=2, retry_base_delay=0.5)

        with patch("pr_summarizer.services.llm_service.asyncio.sleep", new=AsyncMock()) as sleep:
            summary = asyncio.run(service.generate_one(_make_pr()))

        assert not summary.is_fallback
        assert _sleep_delays(sleep) == [0.5, 1.0]
        assert len(adapter.calls) == 3


# ---------------------------------------------------------------------------
# State tracking and connection tests per provider
# ---------------------------------------------------------------------------


class TestGenerationStates:
    def test_tracked_states_are_bounded(self):
        service = _make_service(_FakeAdapter(configured=()))
        prs = [_make_pr(str(i)) for i in range(1, MAX_TRACKED_STATES + 11)]

        asyncio.run(service.generate_batch(prs))

        assert service.get_generation_state("1") is None
        assert service.get_generation_state(str(MAX_TRACKED_STATES + 10)) == GenerationState.FALLBACK_STORED


class TestConnectionProviderOverride:
    def test_other_provider_uses_its_own_default_model(self):
        adapter = _FakeAdapter(
            {"ollama": ["AI Service is working!"]},
            configured=(ProviderKind.OPENAI, ProviderKind.OLLAMA),
        )
        service = _make_service(adapter)

        assert asyncio.run(service.test_connection("ollama")) is True
        assert adapter.calls == ["ollama"]
        assert adapter.models == [""]

    def test_secondary_provider_uses_configured_model(self):
        adapter = _FakeAdapter(
            {"ollama": ["AI Service is working!"]},
            configured=(ProviderKind.OPENAI, ProviderKind.OLLAMA),
        )
        service = _make_service(adapter, fallback_config=ProviderConfig(provider="ollama", model="mistral"))

        asyncio.run(service.test_connection("ollama"))

        assert adapter.models == ["mistral"]

    def test_primary_provider_keeps_model(self):
        adapter = _FakeAdapter({"openai": ["AI Service is working!"]})
        service = _make_service(adapter)

        asyncio.run(service.test_connection("openai"))

        assert adapter.models == ["gpt-4"]
