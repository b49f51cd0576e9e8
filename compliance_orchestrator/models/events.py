"""
Inbound device events.

Webhook notifications are parsed into a closed set of event variants.
Anything with an unrecognised notificationType becomes UnknownEvent so
the reconciler can log and drop it without failing the delivery.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from compliance_orchestrator.models.case import LockState


class NotificationType(str, Enum):
    ENROLLMENT = "ENROLLMENT"
    COMPLIANCE_REPORT = "COMPLIANCE_REPORT"
    STATUS_REPORT = "STATUS_REPORT"
    COMMAND = "COMMAND"


class _DeviceEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    device_name: Optional[str] = Field(None, alias="deviceName")


class EnrollmentEvent(_DeviceEvent):
    notification_type: Literal["ENROLLMENT"] = Field("ENROLLMENT", alias="notificationType")
    additional_data: Optional[str] = Field(None, alias="additionalData")


class ComplianceReportEvent(_DeviceEvent):
    notification_type: Literal["COMPLIANCE_REPORT"] = Field(
        "COMPLIANCE_REPORT", alias="notificationType"
    )
    compliance_state: Optional[str] = Field(None, alias="complianceState")


class StatusReportEvent(_DeviceEvent):
    notification_type: Literal["STATUS_REPORT"] = Field("STATUS_REPORT", alias="notificationType")
    status_report: Optional[Dict[str, Any]] = Field(None, alias="statusReport")


class CommandResultEvent(_DeviceEvent):
    notification_type: Literal["COMMAND"] = Field("COMMAND", alias="notificationType")
    command_type: Optional[str] = Field(None, alias="commandType")
    command_status: Optional[str] = Field(None, alias="commandStatus")

    @property
    def confirmed_state(self) -> Optional[LockState]:
        """Lock state this result proves, or None if it proves nothing."""
        if (self.command_status or "").upper() not in ("SUCCEEDED", "DONE", "SUCCESS"):
            return None
        command_type = (self.command_type or "").upper()
        if command_type == "LOCK":
            return LockState.LOCKED
        if command_type == "RESET_PASSWORD":
            return LockState.UNLOCKED
        return None


class UnknownEvent(BaseModel):
    notification_type: Optional[str] = None
    device_name: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[EnrollmentEvent, ComplianceReportEvent, StatusReportEvent, CommandResultEvent],
    Field(discriminator="notification_type"),
]

InboundEvent = Union[
    EnrollmentEvent, ComplianceReportEvent, StatusReportEvent, CommandResultEvent, UnknownEvent
]

_known_event_adapter = TypeAdapter(KnownEvent)


def parse_event(payload: Dict[str, Any]) -> InboundEvent:
    """
    Parse a webhook body into an event variant.

    Raises:
        pydantic.ValidationError: If a known notification type is malformed
    """
    notification_type = payload.get("notificationType")
    if notification_type not in {t.value for t in NotificationType}:
        device_name = payload.get("deviceName")
        return UnknownEvent(
            notification_type=str(notification_type) if notification_type is not None else None,
            device_name=device_name if isinstance(device_name, str) else None,
            raw=payload,
        )
    return _known_event_adapter.validate_python(payload)


class DeviceAction(str, Enum):
    """Action strings exchanged with the device agent."""
    LOCK_DEVICE = "LOCK_DEVICE"
    UNLOCK_DEVICE = "UNLOCK_DEVICE"

    @classmethod
    def for_state(cls, state: LockState) -> "DeviceAction":
        return cls.LOCK_DEVICE if state == LockState.LOCKED else cls.UNLOCK_DEVICE

    @property
    def lock_state(self) -> LockState:
        return LockState.LOCKED if self is DeviceAction.LOCK_DEVICE else LockState.UNLOCKED


class LockAcknowledgement(BaseModel):
    """Device agent's report of a lock/unlock attempt."""

    imei1: str = Field(..., pattern=r"^\d{15}$")
    action: DeviceAction
    success: bool
    error_message: Optional[str] = None
