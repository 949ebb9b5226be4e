"""
GitHub API integration service for fetching starred repositories and pull requests.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
from fastapi import status

from pr_summarizer.models.domain import PullRequestRef

logger = logging.getLogger(__name__)

GITHUB_MAX_PER_PAGE = 100


@dataclass
class GitHubRepositoryData:
    """Data class for GitHub repository information."""
    github_id: int
    name: str
    full_name: str
    owner_login: str
    description: Optional[str]
    url: str
    language: Optional[str]
    stars_count: int
    is_private: bool
    updated_at: Optional[datetime]


@dataclass
class RateLimitStatus:
    """Core API rate limit snapshot."""
    remaining: int
    limit: int
    reset_at: datetime
    used: int = 0


class GitHubAPIError(Exception):
    """Custom exception for GitHub API errors."""

    def __init__(self, message: str, status_code: int = 500, github_error: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.github_error = github_error
        super().__init__(self.message)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubService:
    """Service for interacting with GitHub API."""

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = settings.GITHUB_API_URL.rstrip("/")
        self.token = settings.GITHUB_TOKEN
        self.timeout = settings.TIMEOUT_SECONDS
        self.rate_limit_threshold = settings.RATE_LIMIT_THRESHOLD
        self.max_repos_per_sync = settings.MAX_REPOS_PER_SYNC
        self.max_prs_per_repo = settings.MAX_PRS_PER_REPO
        self.repo_delay = settings.SYNC_REPO_DELAY
        self.transport = transport

        # Setup headers for GitHub API
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": f"{settings.APP_NAME}/{settings.APP_VERSION}",
        }

        if self.token:
            self.headers["Authorization"] = f"token {self.token}"
        else:
            logger.warning("GitHub token not configured - API rate limits will be lower")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _get(self, path: str, context: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        Issue a GET request and translate failures into GitHubAPIError.

        Args:
            path: API path relative to the GitHub API URL
            context: Human readable description used in error messages
            params: Query parameters

        Returns:
            httpx.Response: Successful (200) response
        """
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
        except httpx.TimeoutException:
            logger.error(f"Timeout fetching {context}")
            raise GitHubAPIError(
                "GitHub API request timed out",
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                github_error="timeout"
            )
        except httpx.RequestError as e:
            logger.error(f"Network error fetching {context}: {e}")
            raise GitHubAPIError(
                "Failed to connect to GitHub API",
                status_code=status.HTTP_502_BAD_GATEWAY,
                github_error="network_error"
            )

        if response.status_code == 200:
            return response

        error_message = f"HTTP {response.status_code}"
        if response.content:
            try:
                error_data = response.json()
            except ValueError:
                error_data = None
            if isinstance(error_data, dict) and error_data.get("message"):
                error_message = error_data["message"]

        if response.status_code == 401:
            raise GitHubAPIError(
                "GitHub authentication failed. Please check your token.",
                status_code=status.HTTP_401_UNAUTHORIZED,
                github_error="authentication_failed"
            )
        elif response.status_code == 404:
            raise GitHubAPIError(
                f"{context} not found or not accessible",
                status_code=status.HTTP_404_NOT_FOUND,
                github_error="not_found"
            )
        elif response.status_code in (403, 429):
            remaining = response.headers.get("X-RateLimit-Remaining")
            if response.status_code == 429 or remaining == "0" or "rate limit" in error_message.lower():
                reset_time = response.headers.get("X-RateLimit-Reset", "unknown")
                logger.warning(
                    f"GitHub API rate limit exceeded. "
                    f"Remaining: {remaining}, Reset: {reset_time}"
                )
                raise GitHubAPIError(
                    "GitHub API rate limit exceeded. Please try again later.",
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    github_error="rate_limit_exceeded"
                )
            raise GitHubAPIError(
                f"Access forbidden to {context}",
                status_code=status.HTTP_403_FORBIDDEN,
                github_error="access_forbidden"
            )

        logger.error(f"GitHub API error for {context}: {error_message}")
        raise GitHubAPIError(
            f"GitHub API error: {error_message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            github_error="api_error"
        )

    async def get_rate_limit_status(self) -> RateLimitStatus:
        """
        Get current GitHub API rate limit information.

        Returns:
            RateLimitStatus: Remaining calls, limit and reset time
        """
        response = await self._get("/rate_limit", "rate limit status")
        rate = response.json().get("rate", {})
        return RateLimitStatus(
            remaining=rate.get("remaining", 0),
            limit=rate.get("limit", 0),
            reset_at=datetime.fromtimestamp(rate.get("reset", 0), tz=timezone.utc),
            used=rate.get("used", 0),
        )

    async def wait_for_rate_limit(self) -> None:
        """Pause until the rate limit resets when few calls remain."""
        try:
            rate = await self.get_rate_limit_status()
        except GitHubAPIError as e:
            logger.error(f"Failed to check rate limit: {e.message}")
            return

        logger.info(f"GitHub rate limit: {rate.remaining} requests remaining")

        if rate.remaining < self.rate_limit_threshold:
            wait_seconds = (rate.reset_at - datetime.now(timezone.utc)).total_seconds()
            if wait_seconds > 0:
                logger.warning(f"Rate limit low, waiting {int(wait_seconds) + 1} seconds")
                await asyncio.sleep(wait_seconds)

    def _parse_repository_data(self, data: Dict[str, Any]) -> GitHubRepositoryData:
        """
        Parse GitHub API response data into GitHubRepositoryData object.

        Args:
            data: Raw GitHub API response data

        Returns:
            GitHubRepositoryData: Parsed repository data
        """
        try:
            owner = data.get("owner") or {}
            return GitHubRepositoryData(
                github_id=data["id"],
                name=data["name"],
                full_name=data["full_name"],
                owner_login=owner.get("login", data["full_name"].split("/")[0]),
                description=data.get("description"),
                url=data.get("html_url", ""),
                language=data.get("language"),
                stars_count=data.get("stargazers_count", 0),
                is_private=data.get("private", False),
                updated_at=_parse_datetime(data.get("updated_at")),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Error parsing GitHub repository data: {e}")
            raise GitHubAPIError(
                "Failed to parse GitHub repository data",
                status_code=status.HTTP_502_BAD_GATEWAY,
                github_error="parse_error"
            )

    def _parse_pull_request_data(self, data: Dict[str, Any], repository: str) -> PullRequestRef:
        """
        Parse GitHub API pull request data into a PullRequestRef.

        The list endpoint omits size statistics; they default to zero and are
        filled in by get_pull_request.
        """
        try:
            user = data.get("user") or {}
            return PullRequestRef(
                id=str(data["id"]),
                number=data["number"],
                title=data.get("title") or "",
                body=data.get("body") or "",
                author=user.get("login", "unknown"),
                repository=repository,
                changed_files=data.get("changed_files") or 0,
                additions=data.get("additions") or 0,
                deletions=data.get("deletions") or 0,
                labels=tuple(label.get("name", "") for label in data.get("labels") or []),
                html_url=data.get("html_url"),
                state="merged" if data.get("merged_at") else data.get("state", "open"),
                created_at=_parse_datetime(data.get("created_at")),
                updated_at=_parse_datetime(data.get("updated_at")),
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Error parsing GitHub pull request data: {e}")
            raise GitHubAPIError(
                "Failed to parse GitHub pull request data",
                status_code=status.HTTP_502_BAD_GATEWAY,
                github_error="parse_error"
            )

    async def list_starred_repositories(
        self,
        page: int = 1,
        per_page: int = 30,
        sort: str = "updated",
        direction: str = "desc"
    ) -> Tuple[List[GitHubRepositoryData], bool]:
        """
        Fetch the authenticated user's starred repositories.

        Args:
            page: Page number (1-based)
            per_page: Repositories per page (capped at 100)
            sort: "created" or "updated"
            direction: "asc" or "desc"

        Returns:
            Tuple of repositories and whether another page exists
        """
        await self.wait_for_rate_limit()

        per_page = min(per_page, GITHUB_MAX_PER_PAGE)
        logger.info("Fetching starred repositories from GitHub")
        response = await self._get(
            "/user/starred",
            "starred repositories",
            params={"page": page, "per_page": per_page, "sort": sort, "direction": direction},
        )

        repositories = [self._parse_repository_data(repo) for repo in response.json()]
        logger.info(f"Fetched {len(repositories)} starred repositories")
        return repositories, len(repositories) == per_page

    async def list_pull_requests(
        self,
        owner: str,
        repo: str,
        state: str = "open",
        page: int = 1,
        per_page: int = 30
    ) -> Tuple[List[PullRequestRef], bool]:
        """
        Fetch pull requests for a repository.

        Args:
            owner: Repository owner username
            repo: Repository name
            state: "open", "closed" or "all"
            page: Page number (1-based)
            per_page: Pull requests per page (capped at 100)

        Returns:
            Tuple of pull requests and whether another page exists
        """
        await self.wait_for_rate_limit()

        per_page = min(per_page, GITHUB_MAX_PER_PAGE)
        full_name = f"{owner}/{repo}"
        logger.info(f"Fetching pull requests for {full_name}")
        response = await self._get(
            f"/repos/{owner}/{repo}/pulls",
            f"repository {full_name}",
            params={"state": state, "page": page, "per_page": per_page, "sort": "updated", "direction": "desc"},
        )

        pull_requests = [self._parse_pull_request_data(pr, full_name) for pr in response.json()]
        logger.info(f"Fetched {len(pull_requests)} pull requests for {full_name}")
        return pull_requests, len(pull_requests) == per_page

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequestRef:
        """Fetch a single pull request including its size statistics."""
        await self.wait_for_rate_limit()

        full_name = f"{owner}/{repo}"
        response = await self._get(f"/repos/{owner}/{repo}/pulls/{number}", f"pull request #{number} in {full_name}")
        return self._parse_pull_request_data(response.json(), full_name)

    async def get_all_pull_requests_from_starred_repos(
        self,
        max_repos: Optional[int] = None,
        max_prs_per_repo: Optional[int] = None,
        state: str = "open",
        include_details: bool = False
    ) -> Tuple[List[PullRequestRef], List[GitHubRepositoryData], List[str]]:
        """
        Collect pull requests across starred repositories.

        Repositories that fail are skipped and reported in the error list.

        Returns:
            Tuple of pull requests, processed repositories and error messages
        """
        max_repos = max_repos or self.max_repos_per_sync
        max_prs_per_repo = max_prs_per_repo or self.max_prs_per_repo

        repositories, _ = await self.list_starred_repositories(per_page=max_repos)
        logger.info(f"Processing {len(repositories)} repositories for pull requests")

        all_pull_requests: List[PullRequestRef] = []
        processed: List[GitHubRepositoryData] = []
        errors: List[str] = []

        for index, repository in enumerate(repositories[:max_repos]):
            try:
                pull_requests, _ = await self.list_pull_requests(
                    repository.owner_login, repository.name, state=state, per_page=max_prs_per_repo
                )
                if include_details:
                    pull_requests = [
                        await self.get_pull_request(repository.owner_login, repository.name, pr.number)
                        for pr in pull_requests
                    ]
                all_pull_requests.extend(pull_requests)
                processed.append(repository)
                logger.info(f"Found {len(pull_requests)} PRs in {repository.full_name}")
            except GitHubAPIError as e:
                message = f"Failed to sync {repository.full_name}: {e.message}"
                logger.warning(message)
                errors.append(message)

            if self.repo_delay and index < len(repositories) - 1:
                await asyncio.sleep(self.repo_delay)

        logger.info(
            f"Total: {len(all_pull_requests)} pull requests from {len(processed)} repositories"
        )
        return all_pull_requests, processed, errors

    async def get_authenticated_user(self) -> Dict[str, Any]:
        """Fetch the user the configured token belongs to."""
        response = await self._get("/user", "authenticated user")
        return response.json()

    async def validate_token(self) -> bool:
        """Check if the GitHub token is valid."""
        if not self.token:
            return False
        try:
            await self.get_authenticated_user()
            return True
        except GitHubAPIError as e:
            logger.warning(f"GitHub token validation failed: {e.message}")
            return False
