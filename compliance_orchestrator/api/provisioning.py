"""
Enrollment provisioning, device wipe and policy bootstrap endpoints.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
import structlog

from compliance_orchestrator.core.dependencies import get_provisioner
from compliance_orchestrator.schemas.cases import CaseSummary
from compliance_orchestrator.schemas.common import ApiResponse
from compliance_orchestrator.schemas.provisioning import (
    PolicyRequest,
    PolicyUpdateRequest,
    ProvisioningRequest,
    WipeRequest,
)
from compliance_orchestrator.services.enrollment_provisioner import EnrollmentProvisioner

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/provisioning", tags=["provisioning"])


@router.post("/{case_id}/qr", response_model=ApiResponse[Dict[str, Any]])
async def generate_provisioning_qr(
    case_id: str,
    request: Optional[ProvisioningRequest] = None,
    provisioner: EnrollmentProvisioner = Depends(get_provisioner),
):
    """
    Issue a single-use enrollment token and its QR code.

    Fails with ALREADY_ENROLLED while the case's device is enrolled and
    has not been wiped.
    """
    request = request or ProvisioningRequest()
    bundle = await provisioner.issue_token(
        case_id, policy_id=request.policy_id, ttl_seconds=request.ttl_seconds
    )
    return ApiResponse(data=bundle.to_dict(), message="Provisioning QR code generated")


@router.post("/{case_id}/wipe", response_model=ApiResponse[CaseSummary])
async def wipe_device(
    case_id: str,
    request: Optional[WipeRequest] = None,
    provisioner: EnrollmentProvisioner = Depends(get_provisioner),
):
    reason = request.reason if request else None
    case = await provisioner.wipe_device(case_id, reason)
    return ApiResponse(data=CaseSummary.from_case(case), message="Device wipe requested")


@router.put("/policies/{policy_id}", response_model=ApiResponse[Dict[str, Any]])
async def put_policy(
    policy_id: str,
    request: Optional[PolicyRequest] = None,
    provisioner: EnrollmentProvisioner = Depends(get_provisioner),
):
    """Create or overwrite a policy. An empty body applies the default template."""
    policy = await provisioner.ensure_policy(policy_id, request.policy if request else None)
    return ApiResponse(data=policy, message="Policy saved")


@router.patch("/policies/{policy_id}", response_model=ApiResponse[Dict[str, Any]])
async def patch_policy(
    policy_id: str,
    request: PolicyUpdateRequest,
    provisioner: EnrollmentProvisioner = Depends(get_provisioner),
):
    policy = await provisioner.update_policy(policy_id, request.updates)
    return ApiResponse(data=policy, message="Policy updated")


@router.get("/policies/{policy_id}", response_model=ApiResponse[Dict[str, Any]])
async def get_policy(
    policy_id: str,
    provisioner: EnrollmentProvisioner = Depends(get_provisioner),
):
    return ApiResponse(data=await provisioner.get_policy(policy_id))
