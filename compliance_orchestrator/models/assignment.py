"""
Recovery routing models: heads own postal codes, agents belong to heads,
and assignments bind a locked case to one agent.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from compliance_orchestrator.models.case import utc_now


class AssignmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RecoveryHeadStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RecoveryHead(BaseModel):
    """Routing owner responsible for a set of postal codes."""

    id: str
    name: str
    postal_codes: List[str] = Field(default_factory=list)
    status: RecoveryHeadStatus = RecoveryHeadStatus.ACTIVE

    @field_validator("postal_codes")
    @classmethod
    def validate_postal_codes(cls, v: List[str]) -> List[str]:
        for code in v:
            if not (len(code) == 6 and code.isdigit()):
                raise ValueError(f"Invalid postal code: {code}")
        return sorted(set(v))

    def covers(self, postal_code: str) -> bool:
        return self.status == RecoveryHeadStatus.ACTIVE and postal_code in self.postal_codes


class RecoveryAgent(BaseModel):
    """Field agent working under a recovery head."""

    id: str
    name: str
    head_id: str
    is_active: bool = True


class Assignment(BaseModel):
    """Binding of a case to a recovery agent."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    case_id: str
    head_id: str
    agent_id: str
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    assigned_at: datetime = Field(default_factory=utc_now)
    unassigned_at: Optional[datetime] = None
    reason: Optional[str] = None
