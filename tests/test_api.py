"""Tests for the HTTP API, with GitHub and the LLM providers stubbed out."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from pr_summarizer.config import Settings
from pr_summarizer.main import create_app
from pr_summarizer.models.domain import (
    ImpactLevel,
    ProviderConfig,
    ProviderKind,
    PullRequestRef,
    RawModelResponse,
    ReviewPriority,
    Summary,
)
from pr_summarizer.services.github_service import GitHubAPIError, GitHubRepositoryData, RateLimitStatus
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.providers import BaseProvider, ProviderAdapter, ProviderError, ProviderErrorKind
from pr_summarizer.services.summary_store import InMemorySummaryStore

MODEL_TEXT = """## Summary
Adds retries.

## Key Changes
- Add RetryPolicy
"""

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _StubProvider(BaseProvider):
    kind = ProviderKind.OPENAI

    def __init__(self, error=None):
        self.error = error

    @property
    def is_configured(self) -> bool:
        return True

    async def _call_api(self, prompt, config):
        if self.error is not None:
            raise self.error
        text = "AI Service is working!" if prompt.startswith("Say") else MODEL_TEXT
        return RawModelResponse(text=text, provider="openai", model=config.model)


def _make_pr(pr_id="1"):
    return PullRequestRef(
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


def _make_summary(pr_id="1", minutes=0, **overrides):
    fields = dict(
        id=f"summary-{pr_id}",
        pr_id=pr_id,
        pr_number=int(pr_id),
        pr_title=f"PR {pr_id}",
        repository="acme/hooks",
        author="octocat",
        narrative_text="## Summary\nText",
        key_changes=["Add RetryPolicy"],
        impact=ImpactLevel.MEDIUM,
        review_priority=ReviewPriority.MEDIUM,
        confidence=0.8,
        provider_used="openai",
        model_used="gpt-4",
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    fields.update(overrides)
    return Summary(**fields)


def _make_github(prs=None):
    github = MagicMock()
    github.get_all_pull_requests_from_starred_repos = AsyncMock(return_value=(prs or [], [], []))
    github.validate_token = AsyncMock(return_value=True)
    github.get_pull_request = AsyncMock(return_value=_make_pr("7"))
    github.list_starred_repositories = AsyncMock(return_value=([
        GitHubRepositoryData(
            github_id=1,
            name="hooks",
            full_name="acme/hooks",
            owner_login="acme",
            description=None,
            url="https://github.com/acme/hooks",
            language="Python",
            stars_count=42,
            is_private=False,
            updated_at=BASE_TIME,
        )
    ], False))
    github.list_pull_requests = AsyncMock(return_value=([_make_pr("1"), _make_pr("2")], False))
    github.get_rate_limit_status = AsyncMock(
        return_value=RateLimitStatus(remaining=4000, limit=5000, reset_at=BASE_TIME, used=1000)
    )
    github.get_authenticated_user = AsyncMock(return_value={
        "login": "octocat",
        "id": 583231,
        "avatar_url": "https://avatars.githubusercontent.com/u/583231",
        "html_url": "https://github.com/octocat",
    })
    return github


def _make_client(providers=None, github=None, store=None):
    if providers is None:
        providers = {ProviderKind.OPENAI: _StubProvider()}
    summarizer = SummarizationService(
        ProviderAdapter(providers),
        default_config=ProviderConfig(provider="openai", model="gpt-4", max_retries=0),
        batch_delay=0,
        retry_base_delay=0,
    )
    app = create_app(
        settings=Settings(GITHUB_TOKEN="ghp_test", SUMMARY_STORE_BACKEND="memory"),
        github_service=github or _make_github(),
        summarizer=summarizer,
        summary_store=store or InMemorySummaryStore(),
    )
    return TestClient(app)


@pytest.fixture
def store():
    return InMemorySummaryStore()


@pytest.fixture
def client(store):
    with _make_client(store=store) as client:
        yield client


# ---------------------------------------------------------------------------
# Health and info
# ---------------------------------------------------------------------------


class TestHealth:
    def test_live(self, client):
        response = client.get("/api/v1/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_reports_components(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"]["summary_store"]["details"]["backend"] == "memory"
        assert body["services"]["llm"]["details"]["providers"] == ["openai"]
        assert "ollama" not in body["services"]

    def test_degraded_without_providers(self):
        with _make_client(providers={}) as client:
            body = client.get("/api/v1/health").json()
        assert body["status"] == "degraded"
        assert body["services"]["llm"]["status"] == "unavailable"

    def test_ready(self, client):
        response = client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_info(self, client):
        body = client.get("/info").json()
        assert body["summary_store"] == "memory"
        assert body["llm_providers"] == ["openai"]


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


class TestListSummaries:
    def test_empty(self, client):
        body = client.get("/api/v1/summaries").json()
        assert body == {"summaries": [], "total": 0, "page": 1, "per_page": 20, "has_next": False}

    def test_pagination(self, client, store):
        for i in range(1, 24):
            store.upsert(_make_summary(str(i), minutes=i))

        body = client.get("/api/v1/summaries", params={"page": 3, "per_page": 10}).json()

        assert body["total"] == 23
        assert len(body["summaries"]) == 3
        assert body["has_next"] is False

    def test_newest_first(self, client, store):
        store.upsert(_make_summary("1", minutes=1))
        store.upsert(_make_summary("2", minutes=2))

        body = client.get("/api/v1/summaries").json()

        assert [s["pr_id"] for s in body["summaries"]] == ["2", "1"]

    def test_filters(self, client, store):
        store.upsert(_make_summary("1", impact=ImpactLevel.HIGH))
        store.upsert(_make_summary("2", impact=ImpactLevel.LOW, author="alice"))

        high = client.get("/api/v1/summaries", params={"impact": "high"}).json()
        alice = client.get("/api/v1/summaries", params={"author": "alice"}).json()

        assert [s["pr_id"] for s in high["summaries"]] == ["1"]
        assert [s["pr_id"] for s in alice["summaries"]] == ["2"]

    def test_invalid_page(self, client):
        assert client.get("/api/v1/summaries", params={"page": 0}).status_code == 400

    def test_invalid_per_page(self, client):
        assert client.get("/api/v1/summaries", params={"per_page": 101}).status_code == 400

    def test_invalid_impact(self, client):
        assert client.get("/api/v1/summaries", params={"impact": "huge"}).status_code == 422


class TestSingleSummary:
    def test_get(self, client, store):
        store.upsert(_make_summary("1"))

        body = client.get("/api/v1/summaries/summary-1").json()

        assert body["pr_id"] == "1"
        assert body["impact"] == "medium"
        assert body["key_changes"] == ["Add RetryPolicy"]

    def test_missing(self, client):
        response = client.get("/api/v1/summaries/summary-404")
        assert response.status_code == 404

    def test_toggle_reviewed_round_trip(self, client, store):
        store.upsert(_make_summary("1"))

        first = client.patch("/api/v1/summaries/summary-1/reviewed").json()
        second = client.patch("/api/v1/summaries/summary-1/reviewed").json()

        assert first["is_reviewed"] is True
        assert second["is_reviewed"] is False

    def test_toggle_important(self, client, store):
        store.upsert(_make_summary("1"))

        body = client.patch("/api/v1/summaries/summary-1/important").json()

        assert body["is_important"] is True
        assert store.get("summary-1").is_important is True

    def test_toggle_missing(self, client):
        assert client.patch("/api/v1/summaries/summary-404/important").status_code == 404


class TestSummaryStats:
    def test_stats(self, client, store):
        store.upsert(_make_summary("1", impact=ImpactLevel.HIGH))
        store.upsert(_make_summary("2"))
        store.toggle_reviewed("summary-1")

        body = client.get("/api/v1/summaries/stats").json()

        assert body["total"] == 2
        assert body["reviewed_count"] == 1
        assert body["reviewed_percentage"] == 50.0
        assert body["impact_histogram"] == {"low": 0, "medium": 1, "high": 1}
        assert body["available_providers"] == ["openai"]
        assert body["ai_service_available"] is True


class TestGenerateSummaries:
    def test_generates_for_new_prs(self, store):
        github = _make_github(prs=[_make_pr("1"), _make_pr("2")])
        with _make_client(github=github, store=store) as client:
            body = client.post("/api/v1/summaries/generate", json={"max_prs": 10}).json()

        assert body["generated"] == 2
        assert body["skipped"] == 0
        assert body["total"] == 2
        assert [s["pr_id"] for s in body["summaries"]] == ["1", "2"]
        assert store.count() == 2

    def test_nothing_new(self, store):
        store.upsert(_make_summary("1"))
        github = _make_github(prs=[_make_pr("1")])
        with _make_client(github=github, store=store) as client:
            body = client.post("/api/v1/summaries/generate", json={}).json()

        assert body["generated"] == 0
        assert body["skipped"] == 1
        assert body["message"] == "No new PRs to summarize"

    def test_force_regenerates_without_duplicates(self, store):
        store.upsert(_make_summary("1", provider_used="fallback", model_used="none"))
        github = _make_github(prs=[_make_pr("1")])
        with _make_client(github=github, store=store) as client:
            body = client.post("/api/v1/summaries/generate", json={"force": True}).json()

        assert body["generated"] == 1
        assert store.count() == 1
        assert store.get("summary-1").provider_used == "openai"

    def test_invalid_max_prs(self, client):
        assert client.post("/api/v1/summaries/generate", json={"max_prs": 0}).status_code == 422

    def test_github_error_status_surfaced(self):
        github = _make_github()
        github.get_all_pull_requests_from_starred_repos.side_effect = GitHubAPIError(
            "rate limited", status_code=429, github_error="rate_limit_exceeded"
        )
        with _make_client(github=github) as client:
            response = client.post("/api/v1/summaries/generate", json={})
        assert response.status_code == 429


# ---------------------------------------------------------------------------
# AI diagnostics
# ---------------------------------------------------------------------------


class TestAi:
    def test_status(self, client):
        body = client.get("/api/v1/ai/status").json()
        assert body["available"] is True
        assert body["default_provider"] == "openai"

    def test_providers(self, client):
        body = client.get("/api/v1/ai/providers").json()
        assert body["providers"] == ["openai"]

    def test_connection_test(self, client):
        response = client.post("/api/v1/ai/test")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_connection_test_unavailable(self):
        with _make_client(providers={}) as client:
            assert client.post("/api/v1/ai/test").status_code == 503

    def test_connection_test_surfaces_provider_error(self):
        error = ProviderError(ProviderErrorKind.AUTH_FAILURE, "invalid key", provider="openai")
        with _make_client(providers={ProviderKind.OPENAI: _StubProvider(error=error)}) as client:
            response = client.post("/api/v1/ai/test")
        assert response.status_code == 401
        assert "invalid key" in response.json()["detail"]

    def test_unsupported_provider(self, client):
        response = client.post("/api/v1/ai/test", json={"provider": "gemini"})
        assert response.status_code == 400

    def test_summarize_sample(self, client, store):
        response = client.post("/api/v1/ai/summarize-sample", json={"repository": "acme/hooks", "pr_number": 7})

        assert response.status_code == 200
        assert response.json()["pr_number"] == 7
        assert store.count() == 0

    def test_summarize_sample_bad_repository(self, client):
        response = client.post("/api/v1/ai/summarize-sample", json={"repository": "hooks", "pr_number": 7})
        assert response.status_code == 400

    def test_summarize_sample_defaults_to_recent_starred_pr(self, store):
        github = _make_github(prs=[_make_pr("3"), _make_pr("4")])
        with _make_client(github=github, store=store) as client:
            response = client.post("/api/v1/ai/summarize-sample")

        assert response.status_code == 200
        assert response.json()["pr_number"] == 3
        github.get_pull_request.assert_not_awaited()
        github.get_all_pull_requests_from_starred_repos.assert_awaited_once_with(
            max_repos=5, max_prs_per_repo=2, include_details=True
        )
        assert store.count() == 0

    def test_summarize_sample_without_starred_prs(self, client):
        response = client.post("/api/v1/ai/summarize-sample", json={})
        assert response.status_code == 404

    def test_setup_guide(self, client):
        body = client.get("/api/v1/ai/setup-guide").json()

        assert body["current_status"] == {"available": True, "providers": ["openai"]}
        assert [option["provider"] for option in body["options"]] == [
            "OpenAI", "Claude (Anthropic)", "Ollama (Local)", "Fallback Mode"
        ]


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class TestRepositories:
    def test_starred(self, client):
        body = client.get("/api/v1/repositories/starred").json()
        assert body["repositories"][0]["full_name"] == "acme/hooks"
        assert body["has_next"] is False

    def test_pull_requests(self, client):
        body = client.get("/api/v1/repositories/acme/hooks/pull-requests").json()
        assert [pr["number"] for pr in body["pull_requests"]] == [1, 2]

    def test_pull_requests_invalid_state(self, client):
        response = client.get("/api/v1/repositories/acme/hooks/pull-requests", params={"state": "draft"})
        assert response.status_code == 400

    def test_github_not_found(self):
        github = _make_github()
        github.list_pull_requests.side_effect = GitHubAPIError("missing", status_code=404, github_error="not_found")
        with _make_client(github=github) as client:
            response = client.get("/api/v1/repositories/acme/nope/pull-requests")
        assert response.status_code == 404

    def test_rate_limit(self, client):
        body = client.get("/api/v1/rate-limit").json()
        assert body["remaining"] == 4000
        assert body["limit"] == 5000

    def test_authenticated_user(self, client):
        body = client.get("/api/v1/repositories/user").json()

        assert body["login"] == "octocat"
        assert body["id"] == 583231
        assert body["url"] == "https://github.com/octocat"

    def test_authenticated_user_bad_token(self):
        github = _make_github()
        github.get_authenticated_user.side_effect = GitHubAPIError(
            "Bad credentials", status_code=401, github_error="authentication_failed"
        )
        with _make_client(github=github) as client:
            response = client.get("/api/v1/repositories/user")
        assert response.status_code == 401


# ---------------------------------------------------------------------------
# Pull requests
# ---------------------------------------------------------------------------


class TestPullRequests:
    def test_across_starred_repositories(self):
        prs = [_make_pr(str(i)) for i in range(1, 6)]
        github = _make_github(prs=prs)
        with _make_client(github=github) as client:
            body = client.get("/api/v1/pull-requests", params={"per_page": 2, "page": 2}).json()

        assert [pr["id"] for pr in body["pull_requests"]] == ["3", "4"]
        assert body["total"] == 5
        assert body["has_next"] is True
        github.get_all_pull_requests_from_starred_repos.assert_awaited_once_with(
            max_repos=10, max_prs_per_repo=5, state="open"
        )

    def test_author_filter(self):
        prs = [_make_pr("1"), replace(_make_pr("2"), author="hubot"), _make_pr("3")]
        with _make_client(github=_make_github(prs=prs)) as client:
            body = client.get("/api/v1/pull-requests", params={"author": "hubot"}).json()

        assert [pr["id"] for pr in body["pull_requests"]] == ["2"]
        assert body["total"] == 1
        assert body["has_next"] is False

    def test_single_repository(self):
        github = _make_github()
        with _make_client(github=github) as client:
            body = client.get(
                "/api/v1/pull-requests", params={"repository": "acme/hooks", "state": "closed"}
            ).json()

        assert [pr["number"] for pr in body["pull_requests"]] == [1, 2]
        github.list_pull_requests.assert_awaited_once_with("acme", "hooks", state="closed", page=1, per_page=20)
        github.get_all_pull_requests_from_starred_repos.assert_not_awaited()

    def test_invalid_repository(self, client):
        response = client.get("/api/v1/pull-requests", params={"repository": "hooks"})
        assert response.status_code == 400

    def test_invalid_state(self, client):
        response = client.get("/api/v1/pull-requests", params={"state": "draft"})
        assert response.status_code == 400

    def test_get_by_id_with_details(self):
        github = _make_github(prs=[_make_pr("1"), _make_pr("7")])
        github.get_pull_request = AsyncMock(return_value=replace(_make_pr("7"), changed_files=30))
        with _make_client(github=github) as client:
            body = client.get("/api/v1/pull-requests/7").json()

        assert body["id"] == "7"
        assert body["changed_files"] == 30
        github.get_pull_request.assert_awaited_once_with("acme", "hooks", 7)

    def test_get_by_id_falls_back_to_listing(self):
        github = _make_github(prs=[_make_pr("7")])
        github.get_pull_request.side_effect = GitHubAPIError("forbidden", status_code=403)
        with _make_client(github=github) as client:
            response = client.get("/api/v1/pull-requests/7")

        assert response.status_code == 200
        assert response.json()["changed_files"] == 8

    def test_get_missing(self, client):
        assert client.get("/api/v1/pull-requests/999").status_code == 404


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class TestSync:
    def test_start_runs_in_background(self, store):
        github = _make_github(prs=[_make_pr("1")])
        with _make_client(github=github, store=store) as client:
            response = client.post("/api/v1/sync")
            history = client.get("/api/v1/sync/history").json()["history"]
            status = client.get("/api/v1/sync/status").json()

        assert response.status_code == 202
        assert len(history) == 1
        assert history[0]["summaries_generated"] == 1
        assert status["is_running"] is False
        assert store.count() == 1

    def test_invalid_token(self):
        github = _make_github()
        github.validate_token.return_value = False
        with _make_client(github=github) as client:
            assert client.post("/api/v1/sync").status_code == 401

    def test_conflict_while_running(self, client):
        client.app.state.sync_service.begin()
        assert client.post("/api/v1/sync").status_code == 409

    def test_stats(self, client):
        client.post("/api/v1/sync")
        body = client.get("/api/v1/sync/stats").json()
        assert body["total_syncs"] == 1
        assert body["last_sync"]["repositories_checked"] == 0
