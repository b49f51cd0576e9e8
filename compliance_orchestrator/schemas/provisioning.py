"""
Schemas for enrollment provisioning and policy management.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ProvisioningRequest(BaseModel):
    policy_id: Optional[str] = Field(None, description="Defaults to the configured policy")
    ttl_seconds: Optional[int] = Field(None, description="Token lifetime, 60s to 90 days")


class WipeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class PolicyRequest(BaseModel):
    """Raw policy body. Empty means the default template."""
    policy: Optional[Dict[str, Any]] = None


class PolicyUpdateRequest(BaseModel):
    updates: Dict[str, Any] = Field(..., description="Top-level policy fields to patch")
