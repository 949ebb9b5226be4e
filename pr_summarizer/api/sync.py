"""
Synchronization API endpoints.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from pr_summarizer.api.deps import get_github_service, get_sync_service
from pr_summarizer.services.github_service import GitHubService
from pr_summarizer.services.sync_service import SyncInProgressError, SyncService

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncRequest(BaseModel):
    """Schema for starting a synchronization."""
    generate_summaries: bool = True
    force: bool = False
    max_summaries: int = Field(default=10, ge=1, le=100)


async def run_sync_in_background(sync_service: SyncService, request: SyncRequest):
    """Run a sync that was already marked as started."""
    try:
        await sync_service.run_sync(
            generate_summaries=request.generate_summaries,
            force=request.force,
            max_summaries=request.max_summaries,
            already_started=True
        )
    except Exception as e:
        logger.error(f"Background sync failed: {e}")


@router.post("/sync", status_code=status.HTTP_202_ACCEPTED)
async def start_sync(
    background_tasks: BackgroundTasks,
    request: Optional[SyncRequest] = None,
    sync_service: SyncService = Depends(get_sync_service),
    github_service: GitHubService = Depends(get_github_service)
):
    """
    Start a synchronization of starred repositories in the background.

    Returns 409 while another sync is running and 401 when the GitHub
    token is missing or invalid.
    """
    if sync_service.is_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A synchronization process is already running. Please wait for it to complete."
        )

    if not await github_service.validate_token():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid GitHub token. Please check your GITHUB_TOKEN configuration."
        )

    try:
        sync_service.begin()
    except SyncInProgressError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    background_tasks.add_task(run_sync_in_background, sync_service, request or SyncRequest())
    logger.info("Synchronization started in background")

    return {
        "message": "Synchronization started",
        "started_at": sync_service.status.started_at
    }


@router.get("/sync/status")
async def get_sync_status(sync_service: SyncService = Depends(get_sync_service)):
    """Get the status of the current synchronization."""
    return asdict(sync_service.status)


@router.get("/sync/history")
async def get_sync_history(limit: int = 10, sync_service: SyncService = Depends(get_sync_service)):
    """Get the most recent synchronization results, newest first."""
    if limit < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Limit must be >= 1"
        )
    return {"history": [asdict(result) for result in list(sync_service.history)[:limit]]}


@router.get("/sync/stats")
async def get_sync_stats(sync_service: SyncService = Depends(get_sync_service)):
    """Get aggregate statistics over recent synchronizations."""
    try:
        stats = sync_service.stats()
        if stats["last_sync"] is not None:
            stats["last_sync"] = asdict(stats["last_sync"])
        return stats
    except Exception as e:
        logger.error(f"Failed to get sync stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get sync stats"
        )
