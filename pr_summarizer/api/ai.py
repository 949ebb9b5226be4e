"""
AI service diagnostic endpoints.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from pr_summarizer.api.deps import get_github_service, get_summarizer
from pr_summarizer.models.models import SummaryResponse
from pr_summarizer.services.github_service import GitHubAPIError, GitHubService
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.providers import DEFAULT_CLAUDE_MODEL, ProviderError

logger = logging.getLogger(__name__)

router = APIRouter()

# Starred-repository scan used when no sample pull request is named
SAMPLE_MAX_REPOS = 5
SAMPLE_MAX_PRS_PER_REPO = 2


class ConnectionTestRequest(BaseModel):
    """Schema for a provider connection test."""
    provider: Optional[str] = None


class SampleSummaryRequest(BaseModel):
    """Schema for summarizing a single pull request on demand."""
    repository: Optional[str] = None
    pr_number: Optional[int] = None


@router.get("/ai/status")
async def get_ai_status(summarizer: SummarizationService = Depends(get_summarizer)):
    """Get the current status of the summarization service."""
    try:
        return summarizer.get_service_status()
    except Exception as e:
        logger.error(f"Failed to get AI status: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get AI status"
        )


@router.get("/ai/providers")
async def list_ai_providers(summarizer: SummarizationService = Depends(get_summarizer)):
    """List providers with credentials configured."""
    providers = summarizer.list_available_providers()
    return {
        "providers": providers,
        "default_provider": summarizer.default_config.provider,
        "available": bool(providers)
    }


@router.post("/ai/test")
async def test_ai_connection(
    request: Optional[ConnectionTestRequest] = None,
    summarizer: SummarizationService = Depends(get_summarizer)
):
    """
    Send a trivial prompt to a provider and report whether it answered.

    Provider failures are returned with their own status code.
    """
    if not summarizer.is_available():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI service is not available. Please check your API keys."
        )

    provider = request.provider if request else None
    try:
        success = await summarizer.test_connection(provider)
        return {
            "success": success,
            "provider": provider or summarizer.default_config.provider,
            "message": "AI service is working correctly" if success else "AI service test failed"
        }
    except ProviderError as e:
        logger.error(f"AI connection test failed: {e.kind.value}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=f"AI service test failed: {e.message}")
    except Exception as e:
        logger.error(f"AI connection test failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="AI service test failed"
        )


@router.post("/ai/summarize-sample", response_model=SummaryResponse)
async def summarize_sample(
    request: Optional[SampleSummaryRequest] = None,
    summarizer: SummarizationService = Depends(get_summarizer),
    github_service: GitHubService = Depends(get_github_service)
):
    """
    Generate a summary for one pull request without storing it.

    Args:
        request: Repository full name ("owner/repo") and pull request number.
            When omitted, the first recent pull request from the starred
            repositories is used.

    Returns:
        SummaryResponse: Generated (or fallback) summary
    """
    request = request or SampleSummaryRequest()
    try:
        if request.repository and request.pr_number:
            parts = request.repository.split("/")
            if len(parts) != 2 or not all(parts):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Repository must be in 'owner/repo' format"
                )
            owner, repo = parts
            pr = await github_service.get_pull_request(owner, repo, request.pr_number)
        else:
            pull_requests, _, _ = await github_service.get_all_pull_requests_from_starred_repos(
                max_repos=SAMPLE_MAX_REPOS,
                max_prs_per_repo=SAMPLE_MAX_PRS_PER_REPO,
                include_details=True
            )
            if not pull_requests:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="No pull requests available from starred repositories"
                )
            pr = pull_requests[0]

        logger.info(f"Generating sample summary for PR #{pr.number} in {pr.repository}")
        summary = await summarizer.generate_one(pr)
        return SummaryResponse.model_validate(summary)

    except HTTPException:
        raise
    except GitHubAPIError as e:
        raise HTTPException(status_code=e.status_code, detail=f"GitHub API error: {e.message}")
    except Exception as e:
        logger.error(f"Failed to summarize sample PR: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate sample summary"
        )


@router.get("/ai/setup-guide")
async def get_setup_guide(summarizer: SummarizationService = Depends(get_summarizer)):
    """Setup instructions for each supported provider, with the current status."""
    return {
        "title": "AI Service Setup Guide",
        "current_status": {
            "available": summarizer.is_available(),
            "providers": summarizer.list_available_providers()
        },
        "options": [
            {
                "provider": "OpenAI",
                "recommended": True,
                "description": "High-quality summaries with GPT-4",
                "steps": [
                    "1. Get an API key from https://platform.openai.com/api-keys",
                    "2. Add to .env: LLM_PRIMARY_PROVIDER=openai",
                    "3. Add to .env: LLM_PRIMARY_MODEL=gpt-4",
                    "4. Add to .env: OPENAI_API_KEY=your_openai_key",
                    "5. Restart the server"
                ],
                "estimated_cost": "$0.01-0.05 per summary",
                "quality": "Excellent"
            },
            {
                "provider": "Claude (Anthropic)",
                "recommended": True,
                "description": "Detailed analysis with Claude 3",
                "steps": [
                    "1. Get an API key from https://console.anthropic.com/",
                    "2. Add to .env: LLM_PRIMARY_PROVIDER=anthropic",
                    f"3. Add to .env: LLM_PRIMARY_MODEL={DEFAULT_CLAUDE_MODEL}",
                    "4. Add to .env: ANTHROPIC_API_KEY=your_claude_key",
                    "5. Restart the server"
                ],
                "estimated_cost": "$0.005-0.02 per summary",
                "quality": "Excellent"
            },
            {
                "provider": "Ollama (Local)",
                "recommended": False,
                "description": "Free local LLM (requires setup)",
                "steps": [
                    "1. Install Ollama from https://ollama.ai/",
                    "2. Run: ollama pull llama2",
                    "3. Add to .env: OLLAMA_ENABLED=true",
                    "4. Add to .env: LLM_PRIMARY_PROVIDER=ollama",
                    "5. Add to .env: LLM_PRIMARY_MODEL=llama2",
                    "6. Restart the server"
                ],
                "estimated_cost": "Free (uses local compute)",
                "quality": "Good (varies by model)"
            },
            {
                "provider": "Fallback Mode",
                "recommended": False,
                "description": "Basic summaries without AI",
                "steps": [
                    "No setup required: summaries are built from pull request metadata",
                    "Limited functionality but works without API keys"
                ],
                "estimated_cost": "Free",
                "quality": "Basic"
            }
        ],
        "test_endpoints": [
            "GET /ai/status",
            "POST /ai/test",
            "POST /ai/summarize-sample"
        ]
    }
