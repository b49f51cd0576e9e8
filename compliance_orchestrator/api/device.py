"""
Callbacks made by the on-device agent.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Path
import structlog

from compliance_orchestrator.core.dependencies import (
    get_case_repository,
    get_reconciler,
)
from compliance_orchestrator.core.exceptions import NotFoundError
from compliance_orchestrator.schemas.common import ApiResponse
from compliance_orchestrator.schemas.device import (
    DeviceLocation,
    DeviceRegistrationResponse,
    DeviceStatus,
    FcmTokenRequest,
    LocationUpdateRequest,
    LockResponseRequest,
    LockResponseResult,
)
from compliance_orchestrator.services.event_reconciler import EventReconciler
from compliance_orchestrator.services.repository import CaseRepository

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/customer/device", tags=["device"])

Imei = Annotated[str, Path(pattern=r"^\d{15}$", description="Primary hardware serial")]


async def _register(request: FcmTokenRequest, reconciler: EventReconciler):
    case = await reconciler.register_push_token(
        request.imei1,
        request.fcm_token,
        device_pin=request.device_pin,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    return ApiResponse(
        data=DeviceRegistrationResponse.from_case(case),
        message="Device registered successfully",
    )


@router.post("/fcm-token", response_model=ApiResponse[DeviceRegistrationResponse])
async def register_device(
    request: FcmTokenRequest,
    reconciler: EventReconciler = Depends(get_reconciler),
):
    """First registration from a freshly installed agent."""
    return await _register(request, reconciler)


@router.put("/fcm-token", response_model=ApiResponse[DeviceRegistrationResponse])
async def refresh_push_token(
    request: FcmTokenRequest,
    reconciler: EventReconciler = Depends(get_reconciler),
):
    """Token rotation from an already registered agent."""
    return await _register(request, reconciler)


@router.post("/lock-response", response_model=ApiResponse[LockResponseResult])
async def lock_response(
    request: LockResponseRequest,
    reconciler: EventReconciler = Depends(get_reconciler),
):
    """
    Agent's report after attempting a lock or unlock.

    Only a successful report moves the confirmed state.
    """
    case = await reconciler.acknowledge_lock(request.to_acknowledgement())
    return ApiResponse(
        data=LockResponseResult.from_case(case),
        message="Lock response received",
    )


@router.post("/location", response_model=ApiResponse[DeviceLocation])
async def update_location(
    request: LocationUpdateRequest,
    reconciler: EventReconciler = Depends(get_reconciler),
):
    case = await reconciler.record_location(request.imei1, request.latitude, request.longitude)
    return ApiResponse(data=DeviceLocation.from_case(case), message="Location updated successfully")


@router.get("/location/{imei1}", response_model=ApiResponse[DeviceLocation])
async def get_location(
    imei1: Imei,
    cases: CaseRepository = Depends(get_case_repository),
):
    case = await cases.find_by_serial(imei1)
    if case is None:
        raise NotFoundError("Case", imei1, detail="No case registered for this device")
    if case.liveness.latitude is None or case.liveness.longitude is None:
        raise NotFoundError("Location", imei1, error_code="LOCATION_NOT_FOUND")
    return ApiResponse(data=DeviceLocation.from_case(case))


@router.get("/status/{imei1}", response_model=ApiResponse[DeviceStatus])
async def get_status(
    imei1: Imei,
    cases: CaseRepository = Depends(get_case_repository),
):
    """Current lock intent, polled by the agent."""
    case = await cases.find_by_serial(imei1)
    if case is None:
        raise NotFoundError("Case", imei1, detail="No case registered for this device")
    return ApiResponse(data=DeviceStatus.from_case(case))
