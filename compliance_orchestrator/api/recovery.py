"""
Recovery escalation, assignment and directory endpoints.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
import structlog

from compliance_orchestrator.core.dependencies import (
    OrchestratorContainer,
    get_container,
    get_escalation_engine,
)
from compliance_orchestrator.models.assignment import Assignment, RecoveryAgent, RecoveryHead
from compliance_orchestrator.schemas.common import ApiResponse
from compliance_orchestrator.schemas.recovery import CloseAssignmentRequest, ReassignRequest
from compliance_orchestrator.services.recovery_escalation import RecoveryEscalationEngine

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["recovery"])


@router.post("/escalations/run", response_model=ApiResponse[Dict[str, Any]])
async def run_escalation(
    engine: RecoveryEscalationEngine = Depends(get_escalation_engine),
):
    """Run one escalation pass now instead of waiting for the scheduler."""
    report = await engine.escalate()
    return ApiResponse(data=report.to_dict(), message="Escalation pass completed")


@router.post("/assignments/{assignment_id}/close", response_model=ApiResponse[Assignment])
async def close_assignment(
    assignment_id: str,
    request: Optional[CloseAssignmentRequest] = None,
    engine: RecoveryEscalationEngine = Depends(get_escalation_engine),
):
    assignment = await engine.close_assignment(assignment_id, request.reason if request else None)
    return ApiResponse(data=assignment, message="Assignment closed")


@router.post("/cases/{case_id}/reassign", response_model=ApiResponse[Assignment])
async def reassign_case(
    case_id: str,
    request: Optional[ReassignRequest] = None,
    engine: RecoveryEscalationEngine = Depends(get_escalation_engine),
):
    request = request or ReassignRequest()
    assignment = await engine.reassign(case_id, agent_id=request.agent_id, reason=request.reason)
    return ApiResponse(data=assignment, message="Case reassigned")


@router.get("/cases/{case_id}/assignments", response_model=ApiResponse[List[Assignment]])
async def list_case_assignments(
    case_id: str,
    container: OrchestratorContainer = Depends(get_container),
):
    await container.cases.get_or_raise(case_id)
    return ApiResponse(data=await container.assignments.list_for_case(case_id))


@router.post(
    "/recovery/heads",
    response_model=ApiResponse[RecoveryHead],
    status_code=status.HTTP_201_CREATED,
)
async def add_recovery_head(
    head: RecoveryHead,
    container: OrchestratorContainer = Depends(get_container),
):
    stored = await container.directory.add_head(head)
    logger.info("Recovery head registered", head_id=head.id, postal_codes=head.postal_codes)
    return ApiResponse(data=stored, message="Recovery head registered")


@router.post(
    "/recovery/agents",
    response_model=ApiResponse[RecoveryAgent],
    status_code=status.HTTP_201_CREATED,
)
async def add_recovery_agent(
    agent: RecoveryAgent,
    container: OrchestratorContainer = Depends(get_container),
):
    stored = await container.directory.add_agent(agent)
    logger.info("Recovery agent registered", agent_id=agent.id, head_id=agent.head_id)
    return ApiResponse(data=stored, message="Recovery agent registered")
