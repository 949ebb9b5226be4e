"""
FastAPI dependencies resolving the services attached to the application.
"""

from fastapi import Request

from pr_summarizer.config import Settings
from pr_summarizer.database import DatabaseManager
from pr_summarizer.services.github_service import GitHubService
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.summary_store import BaseSummaryStore
from pr_summarizer.services.sync_service import SyncService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_summary_store(request: Request) -> BaseSummaryStore:
    return request.app.state.summary_store


def get_summarizer(request: Request) -> SummarizationService:
    return request.app.state.summarizer


def get_github_service(request: Request) -> GitHubService:
    return request.app.state.github_service


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_db_manager(request: Request) -> DatabaseManager:
    return request.app.state.db_manager
