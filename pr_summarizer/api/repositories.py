"""
GitHub repository and pull request API endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from pr_summarizer.api.deps import get_github_service
from pr_summarizer.models.models import (
    PullRequestListResponse,
    PullRequestResponse,
    RateLimitResponse,
    RepositoryListResponse,
    RepositoryResponse,
    UserResponse,
)
from pr_summarizer.services.github_service import GitHubAPIError, GitHubService

logger = logging.getLogger(__name__)

router = APIRouter()

VALID_PR_STATES = ("open", "closed", "all")


def _validate_paging(page: int, per_page: int) -> None:
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


@router.get("/repositories/starred", response_model=RepositoryListResponse)
async def list_starred_repositories(
    page: int = 1,
    per_page: int = 30,
    github_service: GitHubService = Depends(get_github_service)
):
    """
    List the authenticated user's starred repositories.

    Args:
        page: Page number (1-based)
        per_page: Number of repositories per page (max 100)

    Returns:
        RepositoryListResponse: Page of starred repositories
    """
    try:
        _validate_paging(page, per_page)

        repositories, has_next = await github_service.list_starred_repositories(page=page, per_page=per_page)

        return RepositoryListResponse(
            repositories=[RepositoryResponse.model_validate(repo) for repo in repositories],
            page=page,
            per_page=per_page,
            has_next=has_next
        )

    except HTTPException:
        raise
    except GitHubAPIError as e:
        logger.error(f"GitHub API error listing starred repositories: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")
    except Exception as e:
        logger.error(f"Error listing starred repositories: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve starred repositories"
        )


@router.get("/repositories/user", response_model=UserResponse)
async def get_authenticated_user(github_service: GitHubService = Depends(get_github_service)):
    """Get the GitHub user the configured token belongs to."""
    try:
        user = await github_service.get_authenticated_user()
        return UserResponse(
            login=user["login"],
            id=user["id"],
            avatar_url=user.get("avatar_url"),
            url=user.get("html_url")
        )
    except GitHubAPIError as e:
        logger.error(f"Failed to fetch authenticated user: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")


@router.get("/repositories/{owner}/{repo}/pull-requests", response_model=PullRequestListResponse)
async def list_repository_pull_requests(
    owner: str,
    repo: str,
    state: str = "open",
    page: int = 1,
    per_page: int = 30,
    github_service: GitHubService = Depends(get_github_service)
):
    """List pull requests of a repository."""
    try:
        _validate_paging(page, per_page)
        if state not in VALID_PR_STATES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"State must be one of: {', '.join(VALID_PR_STATES)}"
            )

        pull_requests, has_next = await github_service.list_pull_requests(
            owner, repo, state=state, page=page, per_page=per_page
        )

        return PullRequestListResponse(
            pull_requests=[PullRequestResponse.model_validate(pr) for pr in pull_requests],
            page=page,
            per_page=per_page,
            has_next=has_next
        )

    except HTTPException:
        raise
    except GitHubAPIError as e:
        logger.error(f"GitHub API error listing pull requests for {owner}/{repo}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")
    except Exception as e:
        logger.error(f"Error listing pull requests for {owner}/{repo}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve pull requests"
        )


@router.get("/rate-limit", response_model=RateLimitResponse)
async def get_rate_limit(github_service: GitHubService = Depends(get_github_service)):
    """Get the current GitHub API rate limit status."""
    try:
        return RateLimitResponse.model_validate(await github_service.get_rate_limit_status())
    except GitHubAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")
