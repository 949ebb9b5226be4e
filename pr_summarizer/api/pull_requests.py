"""
Pull request API endpoints across starred repositories.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from pr_summarizer.api.deps import get_github_service
from pr_summarizer.api.repositories import VALID_PR_STATES, _validate_paging
from pr_summarizer.models.models import PullRequestListResponse, PullRequestResponse
from pr_summarizer.services.github_service import GitHubAPIError, GitHubService

logger = logging.getLogger(__name__)

router = APIRouter()

# Fan-out limits for listings that span every starred repository
LISTING_MAX_REPOS = 10
LISTING_MAX_PRS_PER_REPO = 5
LOOKUP_MAX_REPOS = 20
LOOKUP_MAX_PRS_PER_REPO = 10


@router.get("/pull-requests", response_model=PullRequestListResponse)
async def list_pull_requests(
    repository: Optional[str] = None,
    state: str = "open",
    author: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
    github_service: GitHubService = Depends(get_github_service)
):
    """
    List pull requests of one repository or of all starred repositories.

    Args:
        repository: Restrict to one repository ("owner/repo")
        state: "open", "closed" or "all"
        author: Only pull requests opened by this login
        page: Page number (1-based)
        per_page: Pull requests per page (max 100)

    Returns:
        PullRequestListResponse: Page of pull requests
    """
    try:
        _validate_paging(page, per_page)
        if state not in VALID_PR_STATES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"State must be one of: {', '.join(VALID_PR_STATES)}"
            )

        if repository:
            parts = repository.split("/")
            if len(parts) != 2 or not all(parts):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Repository must be in 'owner/repo' format"
                )
            owner, repo = parts

            pull_requests, has_next = await github_service.list_pull_requests(
                owner, repo, state=state, page=page, per_page=per_page
            )
            if author:
                pull_requests = [pr for pr in pull_requests if pr.author == author]

            return PullRequestListResponse(
                pull_requests=[PullRequestResponse.model_validate(pr) for pr in pull_requests],
                page=page,
                per_page=per_page,
                has_next=has_next and len(pull_requests) == per_page,
                total=len(pull_requests)
            )

        pull_requests, _, _ = await github_service.get_all_pull_requests_from_starred_repos(
            max_repos=LISTING_MAX_REPOS,
            max_prs_per_repo=LISTING_MAX_PRS_PER_REPO,
            state=state
        )
        if author:
            pull_requests = [pr for pr in pull_requests if pr.author == author]

        start = (page - 1) * per_page
        end = start + per_page
        return PullRequestListResponse(
            pull_requests=[PullRequestResponse.model_validate(pr) for pr in pull_requests[start:end]],
            page=page,
            per_page=per_page,
            has_next=end < len(pull_requests),
            total=len(pull_requests)
        )

    except HTTPException:
        raise
    except GitHubAPIError as e:
        logger.error(f"GitHub API error listing pull requests: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")
    except Exception as e:
        logger.error(f"Error listing pull requests: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve pull requests"
        )


@router.get("/pull-requests/{pr_id}", response_model=PullRequestResponse)
async def get_pull_request(
    pr_id: str,
    github_service: GitHubService = Depends(get_github_service)
):
    """
    Find a pull request among the starred repositories by its identifier.

    Size statistics are fetched when GitHub allows it; otherwise the
    listing data is returned.
    """
    try:
        pull_requests, _, _ = await github_service.get_all_pull_requests_from_starred_repos(
            max_repos=LOOKUP_MAX_REPOS,
            max_prs_per_repo=LOOKUP_MAX_PRS_PER_REPO
        )
        pull_request = next((pr for pr in pull_requests if pr.id == pr_id), None)
        if pull_request is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Pull request not found"
            )

        owner, repo = pull_request.repository.split("/", 1)
        try:
            pull_request = await github_service.get_pull_request(owner, repo, pull_request.number)
        except GitHubAPIError as e:
            logger.warning(f"Could not fetch details for PR {pr_id}: {e.message}")

        return PullRequestResponse.model_validate(pull_request)

    except HTTPException:
        raise
    except GitHubAPIError as e:
        logger.error(f"GitHub API error fetching pull request {pr_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")
    except Exception as e:
        logger.error(f"Error fetching pull request {pr_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve pull request"
        )
