"""
LLM summarization service for pull requests.

Generation per pull request:

    pending -> prompting -> calling -> parsing -> stored
                               \\-> failed -> fallback_stored

Provider errors never escape this service: every requested pull request
yields exactly one Summary, either model-generated or the deterministic
fallback.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from pr_summarizer.config import get_default_provider_config, get_fallback_provider_config
from pr_summarizer.models.domain import (
    GenerationState,
    ProviderConfig,
    ProviderKind,
    PullRequestRef,
    RawModelResponse,
    Summary,
)
from pr_summarizer.services.prompt_builder import build_connection_test_prompt, build_pr_summary_prompt
from pr_summarizer.services.providers import ProviderAdapter, ProviderError
from pr_summarizer.services.response_parser import create_fallback_summary, parse_summary_response
from pr_summarizer.services.summary_store import BaseSummaryStore

logger = logging.getLogger(__name__)

NO_PROVIDERS_REASON = "No LLM providers configured"
MAX_TRACKED_STATES = 1000


@dataclass
class GenerationReport:
    """Outcome of a generate-and-store pass."""
    generated: int
    skipped: int
    total: int
    summaries: List[Summary] = field(default_factory=list)


class SummarizationService:
    """Orchestrates prompt building, provider calls, parsing and fallback."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        default_config: ProviderConfig,
        fallback_config: Optional[ProviderConfig] = None,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        retry_base_delay: float = 1.0,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.adapter = adapter
        self.default_config = default_config
        self.fallback_config = fallback_config
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.retry_base_delay = retry_base_delay
        self._states: "OrderedDict[str, GenerationState]" = OrderedDict()

    @classmethod
    def from_settings(cls, settings, adapter: Optional[ProviderAdapter] = None) -> "SummarizationService":
        return cls(
            adapter=adapter or ProviderAdapter.from_settings(settings),
            default_config=get_default_provider_config(settings),
            fallback_config=get_fallback_provider_config(settings),
            batch_size=settings.SUMMARY_BATCH_SIZE,
            batch_delay=settings.SUMMARY_BATCH_DELAY,
            retry_base_delay=settings.LLM_RETRY_BASE_DELAY,
        )

    def is_available(self) -> bool:
        """True when at least one provider has credentials configured."""
        return bool(self.adapter.configured_providers())

    def list_available_providers(self) -> List[str]:
        return [kind.value for kind in self.adapter.configured_providers()]

    def get_generation_state(self, pr_id: str) -> Optional[GenerationState]:
        return self._states.get(pr_id)

    def _set_state(self, pr: PullRequestRef, state: GenerationState) -> None:
        self._states[pr.id] = state
        self._states.move_to_end(pr.id)
        while len(self._states) > MAX_TRACKED_STATES:
            self._states.popitem(last=False)
        logger.debug(f"PR #{pr.number} in {pr.repository}: {state.value}")

    def _resolve_config(self, config_overrides: Optional[Dict[str, Any]]) -> ProviderConfig:
        if not config_overrides:
            return self.default_config
        return self.default_config.with_overrides(**config_overrides)

    def _candidate_configs(self, primary: ProviderConfig) -> List[ProviderConfig]:
        configs = [primary]
        if self.fallback_config is not None and self.fallback_config != primary:
            configs.append(self.fallback_config)
        return configs

    def _config_for_provider(self, provider: str) -> ProviderConfig:
        """Default config retargeted at ``provider``, using a model that provider serves."""
        try:
            kind = ProviderKind.parse(provider)
        except ValueError:
            # Left for the adapter to reject as unsupported
            return self.default_config.with_overrides(provider=provider)

        for config in self._candidate_configs(self.default_config):
            try:
                if ProviderKind.parse(config.provider) == kind:
                    return config
            except ValueError:
                continue

        # A blank model makes the provider pick its own default
        return replace(self.default_config, provider=kind.value, model="")

    async def _invoke_with_retry(self, prompt: str, config: ProviderConfig) -> RawModelResponse:
        """
        Call one provider, retrying transient failures with exponential backoff.

        Raises:
            ProviderError: The last error once retries are exhausted or the
                error is not retryable
        """
        attempts = max(config.max_retries, 0) + 1
        for attempt in range(attempts):
            try:
                return await self.adapter.invoke(prompt, config)
            except ProviderError as e:
                if not e.retryable or attempt == attempts - 1:
                    logger.error(
                        f"{config.provider} call failed after {attempt + 1} attempt(s): "
                        f"{e.kind.value}: {e.message}"
                    )
                    raise
                delay = self.retry_base_delay * 2 ** attempt
                logger.warning(
                    f"{config.provider} error (attempt {attempt + 1}/{attempts}): {e.message}. "
                    f"Retrying in {delay}s..."
                )
                if delay > 0:
                    await asyncio.sleep(delay)

    async def generate_one(
        self,
        pr: PullRequestRef,
        config_overrides: Optional[Dict[str, Any]] = None
    ) -> Summary:
        """
        Generate a summary for a single pull request.

        Args:
            pr: Pull request to summarize
            config_overrides: ProviderConfig fields overriding the default config

        Returns:
            Summary: Model-generated summary, or the fallback summary on failure
        """
        self._set_state(pr, GenerationState.PENDING)

        if not self.is_available():
            logger.warning(f"{NO_PROVIDERS_REASON}; using fallback summary for PR #{pr.number}")
            self._set_state(pr, GenerationState.FAILED)
            summary = create_fallback_summary(pr, NO_PROVIDERS_REASON)
            self._set_state(pr, GenerationState.FALLBACK_STORED)
            return summary

        logger.info(f"Generating summary for PR #{pr.number} in {pr.repository}")
        self._set_state(pr, GenerationState.PROMPTING)
        prompt = build_pr_summary_prompt(pr)

        failure_reason = "unknown error"
        try:
            primary = self._resolve_config(config_overrides)
            for config in self._candidate_configs(primary):
                self._set_state(pr, GenerationState.CALLING)
                try:
                    response = await self._invoke_with_retry(prompt, config)
                except ProviderError as e:
                    failure_reason = e.message
                    continue

                self._set_state(pr, GenerationState.PARSING)
                summary = parse_summary_response(
                    response.text,
                    pr,
                    provider_used=response.provider,
                    model_used=response.model,
                    token_usage=response.usage,
                )
                self._set_state(pr, GenerationState.STORED)
                return summary
        except Exception as e:
            logger.exception(f"Unexpected error generating summary for PR #{pr.number}: {e}")
            failure_reason = str(e) or e.__class__.__name__

        logger.error(f"Failed to generate summary for PR #{pr.number}: {failure_reason}")
        self._set_state(pr, GenerationState.FAILED)
        summary = create_fallback_summary(pr, failure_reason)
        self._set_state(pr, GenerationState.FALLBACK_STORED)
        return summary

    async def generate_batch(
        self,
        prs: List[PullRequestRef],
        config_overrides: Optional[Dict[str, Any]] = None
    ) -> List[Summary]:
        """
        Generate summaries in fixed-size concurrent groups.

        Groups are processed one after another with a pacing delay between
        them. The result order matches the input order.
        """
        logger.info(f"Generating summaries for {len(prs)} pull requests")

        summaries: List[Summary] = []
        total_batches = (len(prs) + self.batch_size - 1) // self.batch_size

        for start in range(0, len(prs), self.batch_size):
            batch = prs[start:start + self.batch_size]
            logger.info(f"Processing batch {start // self.batch_size + 1}/{total_batches}")

            results = await asyncio.gather(*(self.generate_one(pr, config_overrides) for pr in batch))
            summaries.extend(results)

            if start + self.batch_size < len(prs) and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        fallbacks = sum(1 for summary in summaries if summary.is_fallback)
        logger.info(f"Generated {len(summaries)} summaries ({fallbacks} fallback)")
        return summaries

    async def generate_for_new_prs(
        self,
        prs: List[PullRequestRef],
        existing_summary_ids: Iterable[str],
        force: bool = False,
        max_count: int = 10,
        config_overrides: Optional[Dict[str, Any]] = None
    ) -> List[Summary]:
        """
        Generate summaries for pull requests not summarized yet.

        Args:
            prs: Candidate pull requests
            existing_summary_ids: PR identifiers that already have a summary
            force: Regenerate even when a summary exists
            max_count: Maximum number of summaries to generate

        Returns:
            List[Summary]: New summaries; replacing prior records is up to the caller
        """
        existing = set(existing_summary_ids)
        if force:
            candidates = list(prs)
        else:
            candidates = [pr for pr in prs if pr.id not in existing]
        candidates = candidates[:max(max_count, 0)]

        if not candidates:
            logger.info("No new PRs to summarize")
            return []

        return await self.generate_batch(candidates, config_overrides)

    async def refresh_summaries(
        self,
        store: BaseSummaryStore,
        prs: List[PullRequestRef],
        force: bool = False,
        max_count: int = 10,
        config_overrides: Optional[Dict[str, Any]] = None
    ) -> GenerationReport:
        """
        Generate missing (or, with force, all) summaries and store them.

        Prior records are replaced only after their replacement exists, so a
        pull request is never left without a summary.
        """
        if not self.is_available():
            logger.warning(f"{NO_PROVIDERS_REASON}. Will generate fallback summaries.")

        summaries = await self.generate_for_new_prs(
            prs,
            store.existing_pr_ids(),
            force=force,
            max_count=max_count,
            config_overrides=config_overrides,
        )
        stored = [store.upsert(summary) for summary in summaries]

        return GenerationReport(
            generated=len(stored),
            skipped=len(prs) - len(stored),
            total=store.count(),
            summaries=stored,
        )

    async def test_connection(self, provider: Optional[str] = None) -> bool:
        """
        Send a trivial prompt to a provider.

        Diagnostic: provider errors propagate to the caller.
        """
        config = self._config_for_provider(provider) if provider else self.default_config
        config = config.with_overrides(max_tokens=100, max_retries=0)
        logger.info(f"Testing AI service with provider: {config.provider}")
        response = await self.adapter.invoke(build_connection_test_prompt(), config)
        return "working" in response.text.lower()

    def get_service_status(self) -> Dict[str, Any]:
        """
        Get the current status of the summarization service.

        Returns:
            Dict containing service status information
        """
        return {
            "available": self.is_available(),
            "providers": self.list_available_providers(),
            "default_provider": self.default_config.provider,
            "default_model": self.default_config.model,
            "fallback_provider": self.fallback_config.provider if self.fallback_config else None,
            "batch_size": self.batch_size,
        }
