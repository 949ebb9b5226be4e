"""
Synchronization of starred repositories' pull requests into summaries.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from fastapi import status

from pr_summarizer.models.domain import utcnow
from pr_summarizer.services.github_service import GitHubAPIError, GitHubService
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.summary_store import BaseSummaryStore

logger = logging.getLogger(__name__)

SYNC_HISTORY_SIZE = 10


class SyncInProgressError(Exception):
    """Raised when a sync is requested while another one is running."""

    def __init__(self):
        self.message = "A synchronization process is already running. Please wait for it to complete."
        self.status_code = status.HTTP_409_CONFLICT
        super().__init__(self.message)


@dataclass
class SyncProgress:
    repositories_checked: int = 0
    pull_requests_found: int = 0
    summaries_generated: int = 0
    current_repository: Optional[str] = None
    total_repositories: Optional[int] = None


@dataclass
class SyncStatus:
    is_running: bool = False
    started_at: Optional[datetime] = None
    progress: SyncProgress = field(default_factory=SyncProgress)


@dataclass
class SyncResult:
    repositories_checked: int
    new_prs_found: int
    summaries_generated: int
    errors: List[str]
    duration_ms: int
    started_at: datetime
    completed_at: datetime


class SyncService:
    """Fetches pull requests from starred repositories and summarizes them."""

    def __init__(
        self,
        github_service: GitHubService,
        summarizer: SummarizationService,
        store: BaseSummaryStore,
        max_repos: int = 20,
        max_prs_per_repo: int = 5,
    ):
        self.github_service = github_service
        self.summarizer = summarizer
        self.store = store
        self.max_repos = max_repos
        self.max_prs_per_repo = max_prs_per_repo
        self.status = SyncStatus()
        self.history: Deque[SyncResult] = deque(maxlen=SYNC_HISTORY_SIZE)

    @property
    def is_running(self) -> bool:
        return self.status.is_running

    def begin(self) -> None:
        """Mark a sync as started; raises SyncInProgressError if one is running."""
        if self.status.is_running:
            raise SyncInProgressError()
        self.status = SyncStatus(is_running=True, started_at=utcnow())

    async def run_sync(
        self,
        generate_summaries: bool = True,
        force: bool = False,
        max_summaries: int = 10,
        already_started: bool = False
    ) -> SyncResult:
        """
        Run one synchronization pass.

        Args:
            generate_summaries: Summarize newly found pull requests
            force: Regenerate summaries that already exist
            max_summaries: Upper bound on summaries generated in this pass
            already_started: begin() was called by the caller

        Returns:
            SyncResult: Counts, errors and timing of the pass
        """
        if not already_started:
            self.begin()
        started_at = self.status.started_at or utcnow()
        progress = self.status.progress
        errors: List[str] = []

        try:
            logger.info("Starting GitHub synchronization")
            pull_requests, repositories, repo_errors = await self.github_service.get_all_pull_requests_from_starred_repos(
                max_repos=self.max_repos,
                max_prs_per_repo=self.max_prs_per_repo,
                include_details=True,
            )
            errors.extend(repo_errors)
            progress.total_repositories = len(repositories) + len(repo_errors)
            progress.repositories_checked = progress.total_repositories
            progress.pull_requests_found = len(pull_requests)

            if generate_summaries and pull_requests:
                report = await self.summarizer.refresh_summaries(
                    self.store, pull_requests, force=force, max_count=max_summaries
                )
                progress.summaries_generated = report.generated

            completed_at = utcnow()
            result = SyncResult(
                repositories_checked=progress.repositories_checked,
                new_prs_found=progress.pull_requests_found,
                summaries_generated=progress.summaries_generated,
                errors=errors,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                started_at=started_at,
                completed_at=completed_at,
            )
            self.history.appendleft(result)

            logger.info(
                f"GitHub synchronization completed: {result.repositories_checked} repositories, "
                f"{result.new_prs_found} PRs, {result.summaries_generated} summaries, "
                f"{len(result.errors)} errors in {result.duration_ms}ms"
            )
            return result
        except GitHubAPIError as e:
            logger.error(f"GitHub synchronization failed: {e.message}")
            raise
        finally:
            self.status.is_running = False
            self.status.started_at = None

    def stats(self) -> Dict[str, Any]:
        """Aggregate statistics over the retained sync history."""
        total_syncs = len(self.history)
        successful = sum(1 for result in self.history if not result.errors)
        average_duration = (
            sum(result.duration_ms for result in self.history) / total_syncs if total_syncs else 0
        )
        return {
            "total_syncs": total_syncs,
            "successful_syncs": successful,
            "failed_syncs": total_syncs - successful,
            "success_rate": successful / total_syncs * 100 if total_syncs else 0.0,
            "total_repositories_checked": sum(r.repositories_checked for r in self.history),
            "total_prs_found": sum(r.new_prs_found for r in self.history),
            "total_summaries_generated": sum(r.summaries_generated for r in self.history),
            "average_duration_ms": round(average_duration),
            "last_sync": self.history[0] if self.history else None,
            "is_currently_running": self.status.is_running,
        }
