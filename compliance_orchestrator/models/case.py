"""
Case domain model.

A Case is one financed device: the customer reference, the device
identifiers, the installment schedule and the lock/enrollment/liveness
state the orchestrator tracks for it.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LockState(str, Enum):
    """Lock state, used for both intent and device-confirmed state."""
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"


class DeliveryChannel(str, Enum):
    """Channel a directive was sent through."""
    PUSH = "PUSH"
    MANAGEMENT = "MANAGEMENT"


class Installment(BaseModel):
    """A single scheduled payment. Only paid/paid_date ever change."""

    sequence: int = Field(..., ge=1, description="1-based position in the schedule")
    due_date: datetime = Field(..., description="Payment due date")
    amount: float = Field(..., ge=0, description="Installment amount")
    paid: bool = Field(False, description="Whether the installment has been paid")
    paid_date: Optional[datetime] = Field(None, description="When it was paid")

    @field_validator("due_date", "paid_date")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_overdue(self, now: datetime) -> bool:
        return not self.paid and self.due_date < now

    def days_overdue(self, now: datetime) -> int:
        """Whole days past due, 0 when not overdue."""
        if not self.is_overdue(now):
            return 0
        return math.floor((now - self.due_date).total_seconds() / 86400)


class EnrollmentToken(BaseModel):
    """Single-use token handed to the device setup wizard."""

    value: str
    name: Optional[str] = None
    policy_id: str
    case_id: str
    expires_at: datetime
    issued_at: datetime = Field(default_factory=utc_now)
    consumed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class EnrollmentRecord(BaseModel):
    """Enterprise enrollment state of the device."""

    enrolled: bool = False
    device_name: Optional[str] = Field(None, description="Enterprise device resource name")
    enrolled_at: Optional[datetime] = None
    compliance_status: str = "UNKNOWN"
    last_sync_at: Optional[datetime] = None
    wiped: bool = False
    wiped_at: Optional[datetime] = None
    last_token: Optional[EnrollmentToken] = None

    @property
    def can_provision(self) -> bool:
        return not self.enrolled or self.wiped


class LivenessRecord(BaseModel):
    """Last time the device agent reported in."""

    last_seen_at: Optional[datetime] = None
    is_active: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class DispatchRecord(BaseModel):
    """Bookkeeping for the most recent lock/unlock directive."""

    last_dispatched_intent: Optional[LockState] = None
    last_dispatched_at: Optional[datetime] = None
    pending_since: Optional[datetime] = None
    attempts: int = 0
    last_channel: Optional[DeliveryChannel] = None
    secondary_attempted: bool = False
    last_error: Optional[str] = None


class Case(BaseModel):
    """A financed device and everything the orchestrator knows about it."""

    id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    customer_name: Optional[str] = None
    postal_code: str = Field(..., pattern=r"^\d{6}$", description="Routing key for recovery")
    imei1: str = Field(..., pattern=r"^\d{15}$", description="Primary hardware serial")
    imei2: Optional[str] = Field(None, pattern=r"^\d{15}$")
    push_token: Optional[str] = Field(None, description="Primary channel handle")
    device_pin: Optional[str] = Field(None, pattern=r"^\d{4,6}$")
    is_active: bool = Field(True, description="Loan still open")

    lock_intent: LockState = LockState.UNLOCKED
    confirmed_state: Optional[LockState] = None
    locked_since: Optional[datetime] = None

    enrollment: EnrollmentRecord = Field(default_factory=EnrollmentRecord)
    liveness: LivenessRecord = Field(default_factory=LivenessRecord)
    dispatch: DispatchRecord = Field(default_factory=DispatchRecord)
    installments: List[Installment] = Field(default_factory=list)

    version: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("installments")
    @classmethod
    def validate_contiguous_sequence(cls, v: List[Installment]) -> List[Installment]:
        ordered = sorted(v, key=lambda i: i.sequence)
        if [i.sequence for i in ordered] != list(range(1, len(ordered) + 1)):
            raise ValueError("Installment sequence numbers must be contiguous starting at 1")
        return ordered

    @model_validator(mode="after")
    def validate_distinct_serials(self) -> "Case":
        if self.imei2 and self.imei2 == self.imei1:
            raise ValueError("Secondary serial must differ from the primary serial")
        return self

    @property
    def is_converged(self) -> bool:
        return self.confirmed_state == self.lock_intent

    def pending_installments(self) -> List[Installment]:
        return [i for i in self.installments if not i.paid]

    def overdue_installments(self, now: datetime) -> List[Installment]:
        return [i for i in self.installments if i.is_overdue(now)]

    def lock_eligible_installments(self, now: datetime, grace_days: int) -> List[Installment]:
        return [i for i in self.overdue_installments(now) if i.days_overdue(now) >= grace_days]

    def max_days_overdue(self, now: datetime) -> int:
        overdue = self.overdue_installments(now)
        return max((i.days_overdue(now) for i in overdue), default=0)
