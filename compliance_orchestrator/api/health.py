"""
Health check endpoints for the Compliance Orchestrator.
"""
import time
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from compliance_orchestrator.core.dependencies import OrchestratorContainer, get_container
from compliance_orchestrator.core.logging import get_logger
from compliance_orchestrator.models.case import utc_now

router = APIRouter()
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str


class DetailedHealthResponse(HealthResponse):
    """Health plus repository, channel and scheduler diagnostics."""

    checks: Dict[str, Any]
    channels: Dict[str, Any]
    schedulers: List[Dict[str, Any]]


def _uptime(request: Request) -> float:
    start_time = getattr(request.app.state, "start_time", time.time())
    return time.time() - start_time


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    container: OrchestratorContainer = Depends(get_container),
):
    """Basic liveness probe."""
    settings = container.settings
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        uptime_seconds=_uptime(request),
        timestamp=utc_now(),
        service_name=settings.service_name,
    )


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    request: Request,
    container: OrchestratorContainer = Depends(get_container),
):
    """
    Detailed health check.

    The service reports ``degraded`` when neither delivery channel is
    available, since lock directives cannot leave the building.
    """
    settings = container.settings

    repository_healthy = await container.cases.health_check()
    channels = container.channel_status()
    any_channel = channels["push"]["available"] or channels["management"]["available"]

    checks = {
        "repository": "healthy" if repository_healthy else "unhealthy",
        "delivery_channels": "healthy" if any_channel else "unavailable",
    }

    if not repository_healthy:
        overall = "unhealthy"
    elif not any_channel:
        overall = "degraded"
    else:
        overall = "healthy"

    response = DetailedHealthResponse(
        status=overall,
        version=settings.service_version,
        uptime_seconds=_uptime(request),
        timestamp=utc_now(),
        service_name=settings.service_name,
        checks=checks,
        channels=channels,
        schedulers=container.scheduler_status(),
    )

    logger.info(
        "Detailed health check completed",
        status=response.status,
        checks=checks,
    )
    return response
