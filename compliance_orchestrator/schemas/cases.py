"""
Schemas for case administration and manual lock control.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from compliance_orchestrator.models.case import Case, Installment, LockState


class CaseCreateRequest(BaseModel):
    id: str = Field(..., min_length=1, description="Case identifier, usually the loan id")
    customer_id: str = Field(..., min_length=1)
    customer_name: Optional[str] = None
    postal_code: str = Field(..., pattern=r"^\d{6}$")
    imei1: str = Field(..., pattern=r"^\d{15}$")
    imei2: Optional[str] = Field(None, pattern=r"^\d{15}$")
    device_pin: Optional[str] = Field(None, pattern=r"^\d{4,6}$")
    installments: List[Installment] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_schedule(self) -> "CaseCreateRequest":
        sequences = sorted(i.sequence for i in self.installments)
        if sequences != list(range(1, len(sequences) + 1)):
            raise ValueError("Installment sequence numbers must be contiguous starting at 1")
        if self.imei2 and self.imei2 == self.imei1:
            raise ValueError("Secondary serial must differ from the primary serial")
        return self

    def to_case(self) -> Case:
        return Case(**self.model_dump())


class LockToggleRequest(BaseModel):
    """Manual lock/unlock by an operator."""
    state: LockState
    force_secondary: bool = Field(
        False, description="Skip push and go straight to the management API"
    )


class InstallmentPaymentRequest(BaseModel):
    paid_date: Optional[datetime] = None


class CaseSummary(BaseModel):
    id: str
    customer_id: str
    customer_name: Optional[str] = None
    postal_code: str
    imei1: str
    is_active: bool
    lock_intent: LockState
    confirmed_state: Optional[LockState] = None
    converged: bool
    locked_since: Optional[datetime] = None
    enrolled: bool
    device_active: bool
    pending_installments: int
    version: int

    @classmethod
    def from_case(cls, case: Case) -> "CaseSummary":
        return cls(
            id=case.id,
            customer_id=case.customer_id,
            customer_name=case.customer_name,
            postal_code=case.postal_code,
            imei1=case.imei1,
            is_active=case.is_active,
            lock_intent=case.lock_intent,
            confirmed_state=case.confirmed_state,
            converged=case.is_converged,
            locked_since=case.locked_since,
            enrolled=case.enrollment.enrolled,
            device_active=case.liveness.is_active,
            pending_installments=len(case.pending_installments()),
            version=case.version,
        )
