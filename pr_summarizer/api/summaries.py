"""
Pull request summary API endpoints.
"""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from pr_summarizer.api.deps import get_github_service, get_summarizer, get_summary_store
from pr_summarizer.models.domain import ImpactLevel
from pr_summarizer.models.models import (
    GenerateSummariesRequest,
    GenerateSummariesResponse,
    SummaryListResponse,
    SummaryResponse,
    SummaryStatsResponse,
)
from pr_summarizer.services.github_service import GitHubAPIError, GitHubService
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.summary_store import BaseSummaryStore, SummaryFilters, SummaryNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()

# Number of summaries echoed back by the generate endpoint
GENERATE_PREVIEW_SIZE = 5


@router.get("/summaries", response_model=SummaryListResponse)
async def list_summaries(
    page: int = 1,
    per_page: int = 20,
    pr_id: Optional[str] = None,
    repository: Optional[str] = None,
    author: Optional[str] = None,
    impact: Optional[ImpactLevel] = None,
    is_reviewed: Optional[bool] = None,
    is_important: Optional[bool] = None,
    store: BaseSummaryStore = Depends(get_summary_store)
):
    """
    List summaries, newest first, with optional filters.

    Args:
        page: Page number (1-based)
        per_page: Number of summaries per page (max 100)
        pr_id: Only the summary of this pull request
        repository: Repository full name ("owner/repo")
        author: Pull request author login
        impact: Impact level
        is_reviewed: Reviewed flag
        is_important: Important flag

    Returns:
        SummaryListResponse: Page of summaries with pagination info
    """
    try:
        # Validate pagination parameters
        if page < 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Page number must be >= 1"
            )

        if per_page < 1 or per_page > 100:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Per page must be between 1 and 100"
            )

        filters = SummaryFilters(
            pr_id=pr_id,
            repository=repository,
            author=author,
            impact=impact,
            is_reviewed=is_reviewed,
            is_important=is_important,
        )
        result = store.query(filters, page=page, page_size=per_page)

        return SummaryListResponse(
            summaries=[SummaryResponse.model_validate(summary) for summary in result.items],
            total=result.total,
            page=result.page,
            per_page=result.page_size,
            has_next=result.has_next
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error listing summaries: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve summaries"
        )


@router.get("/summaries/stats", response_model=SummaryStatsResponse)
async def get_summary_stats(
    store: BaseSummaryStore = Depends(get_summary_store),
    summarizer: SummarizationService = Depends(get_summarizer)
):
    """Get summary statistics."""
    try:
        stats = store.stats()
        return SummaryStatsResponse(
            total=stats.total,
            reviewed_count=stats.reviewed_count,
            important_count=stats.important_count,
            reviewed_percentage=stats.reviewed_percentage,
            impact_histogram=stats.impact_histogram,
            provider_distribution=stats.provider_distribution,
            average_confidence=stats.average_confidence,
            total_cost=stats.total_cost,
            available_providers=summarizer.list_available_providers(),
            ai_service_available=summarizer.is_available()
        )
    except Exception as e:
        logger.error(f"Failed to get summary stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get summary stats"
        )


@router.get("/summaries/{summary_id}", response_model=SummaryResponse)
async def get_summary(summary_id: str, store: BaseSummaryStore = Depends(get_summary_store)):
    """Get a single summary."""
    try:
        return SummaryResponse.model_validate(store.get(summary_id))
    except SummaryNotFoundError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/summaries/{summary_id}/reviewed", response_model=SummaryResponse)
async def toggle_summary_reviewed(summary_id: str, store: BaseSummaryStore = Depends(get_summary_store)):
    """Flip the reviewed flag of a summary."""
    try:
        summary = store.toggle_reviewed(summary_id)
        logger.info(f"Summary {summary_id} marked as {'reviewed' if summary.is_reviewed else 'not reviewed'}")
        return SummaryResponse.model_validate(summary)
    except SummaryNotFoundError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/summaries/{summary_id}/important", response_model=SummaryResponse)
async def toggle_summary_important(summary_id: str, store: BaseSummaryStore = Depends(get_summary_store)):
    """Flip the important flag of a summary."""
    try:
        summary = store.toggle_important(summary_id)
        logger.info(f"Summary {summary_id} marked as {'important' if summary.is_important else 'not important'}")
        return SummaryResponse.model_validate(summary)
    except SummaryNotFoundError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/summaries/generate", response_model=GenerateSummariesResponse)
async def generate_summaries(
    request: GenerateSummariesRequest,
    store: BaseSummaryStore = Depends(get_summary_store),
    summarizer: SummarizationService = Depends(get_summarizer),
    github_service: GitHubService = Depends(get_github_service)
):
    """
    Generate summaries for recent pull requests of starred repositories.

    Args:
        request: Force flag and maximum number of pull requests

    Returns:
        GenerateSummariesResponse: Generation counts and the first new summaries
    """
    try:
        logger.info(f"Generating summaries for up to {request.max_prs} recent PRs (force: {request.force})")

        pull_requests, _, _ = await github_service.get_all_pull_requests_from_starred_repos(
            max_repos=10,
            max_prs_per_repo=math.ceil(request.max_prs / 10),
            include_details=True
        )

        report = await summarizer.refresh_summaries(
            store, pull_requests, force=request.force, max_count=request.max_prs
        )

        message = (
            f"Generated {report.generated} new summaries"
            if report.generated else "No new PRs to summarize"
        )
        return GenerateSummariesResponse(
            message=message,
            generated=report.generated,
            skipped=report.skipped,
            total=report.total,
            summaries=[
                SummaryResponse.model_validate(summary)
                for summary in report.summaries[:GENERATE_PREVIEW_SIZE]
            ]
        )

    except GitHubAPIError as e:
        logger.error(f"GitHub API error while generating summaries: {e.message}")
        raise HTTPException(
            status_code=e.status_code,
            detail=f"GitHub API error: {e.message}"
        )
    except Exception as e:
        logger.error(f"Failed to generate summaries: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate summaries"
        )
