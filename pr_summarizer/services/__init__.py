"""
Services package for external API integrations and business logic.
"""

from .github_service import GitHubAPIError, GitHubService
from .llm_service import GenerationReport, SummarizationService
from .providers import ProviderAdapter, ProviderError, ProviderErrorKind
from .summary_store import (
    BaseSummaryStore,
    InMemorySummaryStore,
    SqlSummaryStore,
    SummaryNotFoundError,
    create_summary_store,
)
from .sync_service import SyncInProgressError, SyncService

__all__ = [
    "BaseSummaryStore",
    "GenerationReport",
    "GitHubAPIError",
    "GitHubService",
    "InMemorySummaryStore",
    "ProviderAdapter",
    "ProviderError",
    "ProviderErrorKind",
    "SqlSummaryStore",
    "SummarizationService",
    "SummaryNotFoundError",
    "SyncInProgressError",
    "SyncService",
    "create_summary_store",
]
