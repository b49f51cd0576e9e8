"""
Schemas for callbacks made by the on-device agent.

The agent posts camelCase bodies; snake_case names are accepted as well.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from compliance_orchestrator.models.case import Case, LockState, utc_now
from compliance_orchestrator.models.events import DeviceAction, LockAcknowledgement

IMEI_PATTERN = r"^\d{15}$"


class _AgentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FcmTokenRequest(_AgentRequest):
    """Push token registration, optionally carrying PIN and location."""
    fcm_token: str = Field(..., alias="fcmToken", min_length=1)
    imei1: str = Field(..., pattern=IMEI_PATTERN)
    device_pin: Optional[str] = Field(None, alias="devicePin", pattern=r"^\d{4,6}$")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def validate_location_pair(self) -> "FcmTokenRequest":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be sent together")
        return self


class LockResponseRequest(_AgentRequest):
    imei1: str = Field(..., pattern=IMEI_PATTERN)
    lock_success: bool = Field(..., alias="lockSuccess")
    action: DeviceAction
    error_message: Optional[str] = Field(None, alias="errorMessage")

    def to_acknowledgement(self) -> LockAcknowledgement:
        return LockAcknowledgement(
            imei1=self.imei1,
            action=self.action,
            success=self.lock_success,
            error_message=self.error_message,
        )


class LocationUpdateRequest(_AgentRequest):
    imei1: str = Field(..., pattern=IMEI_PATTERN)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class DeviceRegistrationResponse(BaseModel):
    case_id: str
    customer_name: Optional[str] = None
    lock_intent: LockState
    push_token_registered: bool
    updated_at: datetime

    @classmethod
    def from_case(cls, case: Case) -> "DeviceRegistrationResponse":
        return cls(
            case_id=case.id,
            customer_name=case.customer_name,
            lock_intent=case.lock_intent,
            push_token_registered=bool(case.push_token),
            updated_at=case.updated_at,
        )


class LockResponseResult(BaseModel):
    case_id: str
    customer_name: Optional[str] = None
    lock_intent: LockState
    confirmed_state: Optional[LockState] = None
    converged: bool

    @classmethod
    def from_case(cls, case: Case) -> "LockResponseResult":
        return cls(
            case_id=case.id,
            customer_name=case.customer_name,
            lock_intent=case.lock_intent,
            confirmed_state=case.confirmed_state,
            converged=case.is_converged,
        )


class DeviceLocation(BaseModel):
    case_id: str
    customer_name: Optional[str] = None
    latitude: float
    longitude: float
    last_updated: Optional[datetime] = None

    @classmethod
    def from_case(cls, case: Case) -> "DeviceLocation":
        return cls(
            case_id=case.id,
            customer_name=case.customer_name,
            latitude=case.liveness.latitude,
            longitude=case.liveness.longitude,
            last_updated=case.liveness.last_seen_at,
        )


class DeviceStatus(BaseModel):
    """What the agent polls to learn whether it should be locked."""
    case_id: str
    customer_name: Optional[str] = None
    is_locked: bool
    lock_intent: LockState
    confirmed_state: Optional[LockState] = None
    has_pending_emis: bool
    pending_emi_count: int
    registered_at: datetime
    last_updated: datetime

    @classmethod
    def from_case(cls, case: Case, now: Optional[datetime] = None) -> "DeviceStatus":
        overdue = case.overdue_installments(now or utc_now())
        return cls(
            case_id=case.id,
            customer_name=case.customer_name,
            is_locked=case.lock_intent == LockState.LOCKED,
            lock_intent=case.lock_intent,
            confirmed_state=case.confirmed_state,
            has_pending_emis=bool(overdue),
            pending_emi_count=len(overdue),
            registered_at=case.created_at,
            last_updated=case.updated_at,
        )
