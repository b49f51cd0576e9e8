"""
Scheduler status and manual trigger endpoints.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
import structlog

from compliance_orchestrator.core.dependencies import OrchestratorContainer, get_container
from compliance_orchestrator.core.exceptions import NotFoundError
from compliance_orchestrator.schemas.common import ApiResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get("/status", response_model=ApiResponse[List[Dict[str, Any]]])
async def scheduler_status(container: OrchestratorContainer = Depends(get_container)):
    return ApiResponse(data=container.scheduler_status())


@router.post("/scan", response_model=ApiResponse[Dict[str, Any]])
async def trigger_scan(container: OrchestratorContainer = Depends(get_container)):
    """
    Run the delinquency scan now.

    Joins the in-flight run instead of starting a second one.
    """
    return await _run(container, "delinquency_scan")


@router.post("/{job_name}/run", response_model=ApiResponse[Dict[str, Any]])
async def trigger_job(job_name: str, container: OrchestratorContainer = Depends(get_container)):
    return await _run(container, job_name)


async def _run(container: OrchestratorContainer, job_name: str) -> ApiResponse:
    scheduler = container.schedulers.get(job_name)
    if scheduler is None:
        raise NotFoundError("Scheduler", job_name)

    logger.info("Manual job run requested", scheduler=job_name)
    await scheduler.run_now()
    status = scheduler.get_status()
    return ApiResponse(
        success=status["last_error"] is None,
        data=status,
        message=f"{job_name} run completed",
    )
