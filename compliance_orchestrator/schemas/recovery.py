"""
Schemas for recovery routing and assignment endpoints.
"""
from typing import Optional

from pydantic import BaseModel, Field


class ReassignRequest(BaseModel):
    agent_id: Optional[str] = Field(None, description="Omit to re-route by postal code")
    reason: Optional[str] = None


class CloseAssignmentRequest(BaseModel):
    reason: Optional[str] = None
