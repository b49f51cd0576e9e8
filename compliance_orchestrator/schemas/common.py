"""
Shared response envelope.
"""
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from compliance_orchestrator.models.case import utc_now

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Standard success envelope returned by every endpoint."""
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class ErrorResponse(BaseModel):
    """Body rendered for BaseAPIException subclasses."""
    success: bool = False
    error: str
    message: str
    correlation_id: Optional[str] = None
    context: dict = Field(default_factory=dict)
