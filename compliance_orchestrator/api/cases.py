"""
Case administration and manual lock control endpoints.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
import structlog

from compliance_orchestrator.core.dependencies import get_case_repository, get_dispatcher
from compliance_orchestrator.core.exceptions import ConflictError, StaleCaseError
from compliance_orchestrator.models.case import Case
from compliance_orchestrator.schemas.cases import (
    CaseCreateRequest,
    CaseSummary,
    InstallmentPaymentRequest,
    LockToggleRequest,
)
from compliance_orchestrator.schemas.common import ApiResponse
from compliance_orchestrator.services.command_dispatcher import CommandDispatcher
from compliance_orchestrator.services.repository import CaseRepository

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/cases", tags=["cases"])


@router.post("", response_model=ApiResponse[Case], status_code=status.HTTP_201_CREATED)
async def create_case(
    request: CaseCreateRequest,
    cases: CaseRepository = Depends(get_case_repository),
):
    case = await cases.create_case(request.to_case())
    return ApiResponse(data=case, message="Case created")


@router.get("", response_model=ApiResponse[List[CaseSummary]])
async def list_cases(
    active_only: bool = Query(True),
    cases: CaseRepository = Depends(get_case_repository),
):
    found = await cases.list_cases(active_only=active_only)
    return ApiResponse(data=[CaseSummary.from_case(c) for c in found])


@router.get("/{case_id}", response_model=ApiResponse[Case])
async def get_case(
    case_id: str,
    cases: CaseRepository = Depends(get_case_repository),
):
    return ApiResponse(data=await cases.get_or_raise(case_id))


@router.put("/{case_id}/lock", response_model=ApiResponse[Dict[str, Any]])
async def set_lock_state(
    case_id: str,
    request: LockToggleRequest,
    cases: CaseRepository = Depends(get_case_repository),
    dispatcher: CommandDispatcher = Depends(get_dispatcher),
):
    """
    Manually lock or unlock a device.

    Only the intent changes here; the confirmed state follows once the
    device reports back.
    """
    case = await cases.get_or_raise(case_id)
    logger.info(
        "Manual lock toggle requested",
        case_id=case_id,
        state=request.state.value,
        force_secondary=request.force_secondary,
    )

    try:
        result = await dispatcher.dispatch(case, request.state, force_secondary=request.force_secondary)
    except StaleCaseError as e:
        raise ConflictError(
            "Case changed while the request was processed, retry",
            rule_name="case_version",
            entity_id=case_id,
            expected_version=e.expected_version,
            actual_version=e.actual_version,
        )

    message = "Lock directive dispatched" if result.success else "Lock directive could not be delivered"
    return ApiResponse(success=result.success, data=result.to_dict(), message=message)


@router.post(
    "/{case_id}/installments/{sequence}/pay",
    response_model=ApiResponse[CaseSummary],
)
async def pay_installment(
    case_id: str,
    sequence: int = Path(..., ge=1),
    request: Optional[InstallmentPaymentRequest] = None,
    cases: CaseRepository = Depends(get_case_repository),
):
    """
    Mark an installment paid.

    A locked device is unlocked by the next scan once nothing lock-eligible
    remains outstanding.
    """
    paid_date = request.paid_date if request else None
    case = await cases.mark_installment_paid(case_id, sequence, paid_date)
    return ApiResponse(data=CaseSummary.from_case(case), message=f"Installment {sequence} marked as paid")
