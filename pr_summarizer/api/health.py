"""
Health check API endpoints.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from pr_summarizer.api.deps import get_db_manager, get_settings, get_summarizer, get_summary_store
from pr_summarizer.config import Settings
from pr_summarizer.database import DatabaseManager
from pr_summarizer.models.domain import utcnow
from pr_summarizer.services.llm_service import SummarizationService
from pr_summarizer.services.summary_store import BaseSummaryStore

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    version: str
    uptime: float
    services: Dict[str, Any]


class ServiceStatus(BaseModel):
    """Individual service status model."""
    status: str
    response_time: float
    details: Dict[str, Any] = {}


# Store application start time for uptime calculation
app_start_time = time.time()


async def check_summary_store(store: BaseSummaryStore, db_manager: Optional[DatabaseManager]) -> ServiceStatus:
    """Check the summary store, including the database when one backs it."""
    start_time = time.time()
    try:
        if db_manager is None:
            return ServiceStatus(
                status="healthy",
                response_time=(time.time() - start_time) * 1000,
                details={"backend": "memory", "summaries": store.count()}
            )

        is_healthy = await db_manager.health_check()
        response_time = (time.time() - start_time) * 1000  # Convert to milliseconds

        if is_healthy:
            connection_info = db_manager.get_connection_info()
            return ServiceStatus(
                status="healthy",
                response_time=response_time,
                details={"backend": "database", **connection_info}
            )
        return ServiceStatus(
            status="unhealthy",
            response_time=response_time,
            details={"error": "Database health check failed"}
        )
    except Exception as e:
        response_time = (time.time() - start_time) * 1000
        logger.error(f"Summary store health check error: {e}")
        return ServiceStatus(
            status="unhealthy",
            response_time=response_time,
            details={"error": str(e)}
        )


async def check_llm_providers(summarizer: SummarizationService) -> ServiceStatus:
    """Report which LLM providers have credentials configured."""
    start_time = time.time()
    providers = summarizer.list_available_providers()
    return ServiceStatus(
        status="healthy" if providers else "unavailable",
        response_time=(time.time() - start_time) * 1000,
        details={
            "providers": providers,
            "default_provider": summarizer.default_config.provider,
            "default_model": summarizer.default_config.model
        }
    )


async def check_ollama(settings: Settings) -> ServiceStatus:
    """Check Ollama service connectivity and health."""
    start_time = time.time()
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(f"{settings.OLLAMA_URL}/api/tags")
            response_time = (time.time() - start_time) * 1000

            if response.status_code == 200:
                data = response.json()
                models = data.get("models", [])
                return ServiceStatus(
                    status="healthy",
                    response_time=response_time,
                    details={
                        "url": settings.OLLAMA_URL,
                        "available_models": len(models),
                        "models": [model.get("name", "unknown") for model in models[:5]]  # Show first 5
                    }
                )
            return ServiceStatus(
                status="unhealthy",
                response_time=response_time,
                details={"error": f"HTTP {response.status_code}"}
            )
    except Exception as e:
        response_time = (time.time() - start_time) * 1000
        logger.error(f"Ollama health check error: {e}")
        return ServiceStatus(
            status="unhealthy",
            response_time=response_time,
            details={"error": str(e)}
        )


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings),
    store: BaseSummaryStore = Depends(get_summary_store),
    summarizer: SummarizationService = Depends(get_summarizer),
    db_manager: Optional[DatabaseManager] = Depends(get_db_manager)
):
    """
    Comprehensive health check endpoint.

    Returns the health status of the application and its dependencies.
    The Ollama endpoint is only probed when it is enabled.
    """
    try:
        uptime = time.time() - app_start_time

        checks = {
            "summary_store": check_summary_store(store, db_manager),
            "llm": check_llm_providers(summarizer),
        }
        if settings.OLLAMA_ENABLED:
            checks["ollama"] = check_ollama(settings)

        results = await asyncio.gather(*checks.values(), return_exceptions=True)

        services = {}
        for name, result in zip(checks.keys(), results):
            if isinstance(result, Exception):
                services[name] = ServiceStatus(
                    status="error",
                    response_time=0,
                    details={"error": str(result)}
                )
            else:
                services[name] = result

        all_healthy = all(service.status == "healthy" for service in services.values())
        overall_status = "healthy" if all_healthy else "degraded"

        return HealthResponse(
            status=overall_status,
            timestamp=utcnow(),
            version=settings.APP_VERSION,
            uptime=uptime,
            services=services
        )

    except Exception as e:
        logger.error(f"Health check error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Health check failed: {str(e)}"
        )


@router.get("/health/live")
async def liveness_probe():
    """
    Kubernetes liveness probe endpoint.

    Returns a simple OK response to indicate the application is running.
    """
    return {"status": "ok", "timestamp": utcnow()}


@router.get("/health/ready")
async def readiness_probe(
    store: BaseSummaryStore = Depends(get_summary_store),
    db_manager: Optional[DatabaseManager] = Depends(get_db_manager)
):
    """
    Kubernetes readiness probe endpoint.

    Ready once the summary store answers.
    """
    store_status = await check_summary_store(store, db_manager)

    if store_status.status != "healthy":
        logger.error(f"Readiness check failed: {store_status.details}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application not ready - summary store unavailable"
        )

    return {
        "status": "ready",
        "timestamp": utcnow(),
        "summary_store": store_status.model_dump()
    }
