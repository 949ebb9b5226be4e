"""
Main FastAPI application module.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pr_summarizer.api.ai import router as ai_router
from pr_summarizer.api.health import router as health_router
from pr_summarizer.api.pull_requests import router as pull_requests_router
from pr_summarizer.api.repositories import router as repositories_router
from pr_summarizer.api.summaries import router as summaries_router
from pr_summarizer.api.sync import router as sync_router
from pr_summarizer.config import Settings, get_cors_origins, is_development, settings as default_settings
from pr_summarizer.database import DatabaseManager
from pr_summarizer.services.github_service import GitHubService
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.summary_store import BaseSummaryStore, SqlSummaryStore, create_summary_store
from pr_summarizer.services.sync_service import SyncService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = app.state.settings

    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    providers = app.state.summarizer.list_available_providers()
    logger.info(f"LLM providers available: {', '.join(providers) or 'none'}")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    app.state.summary_store.close()
    logger.info("Summary store closed")


def create_app(
    settings: Optional[Settings] = None,
    github_service: Optional[GitHubService] = None,
    summarizer: Optional[SummarizationService] = None,
    summary_store: Optional[BaseSummaryStore] = None,
    sync_service: Optional[SyncService] = None
) -> FastAPI:
    """
    Build the application and the services it serves.

    Services not passed in are created from settings and attached to
    ``app.state``, where the route dependencies look them up.
    """
    settings = settings or default_settings
    configure_logging(settings)

    summary_store = summary_store or create_summary_store(settings)
    summarizer = summarizer or SummarizationService.from_settings(settings)
    github_service = github_service or GitHubService(settings)
    sync_service = sync_service or SyncService(
        github_service,
        summarizer,
        summary_store,
        max_repos=settings.MAX_REPOS_PER_SYNC,
        max_prs_per_repo=settings.MAX_PRS_PER_REPO
    )

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Summaries of pull requests in starred GitHub repositories, generated by LLMs",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.summary_store = summary_store
    app.state.summarizer = summarizer
    app.state.github_service = github_service
    app.state.sync_service = sync_service
    app.state.db_manager = (
        DatabaseManager(summary_store.engine) if isinstance(summary_store, SqlSummaryStore) else None
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router, prefix=settings.API_V1_STR, tags=["health"])
    app.include_router(summaries_router, prefix=settings.API_V1_STR, tags=["summaries"])
    app.include_router(ai_router, prefix=settings.API_V1_STR, tags=["ai"])
    app.include_router(repositories_router, prefix=settings.API_V1_STR, tags=["repositories"])
    app.include_router(pull_requests_router, prefix=settings.API_V1_STR, tags=["pull-requests"])
    app.include_router(sync_router, prefix=settings.API_V1_STR, tags=["sync"])

    @app.get("/info")
    async def get_app_info():
        """Get application information."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "debug": settings.DEBUG,
            "environment": "development" if is_development(settings) else "production",
            "summary_store": settings.SUMMARY_STORE_BACKEND,
            "llm_providers": summarizer.list_available_providers()
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "pr_summarizer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.DEBUG,
        log_level=default_settings.LOG_LEVEL.lower()
    )
