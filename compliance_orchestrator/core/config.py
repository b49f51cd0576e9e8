"""Application configuration and settings."""

from functools import lru_cache
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # Service Configuration
    service_name: str = Field(default="compliance-orchestrator")
    service_version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    api_prefix: str = Field(default="/api")

    # Scheduler Configuration
    scheduler_enabled: bool = Field(default=True)
    scan_interval_seconds: int = Field(default=12 * 60 * 60)
    scan_on_startup: bool = Field(default=True)
    liveness_interval_seconds: int = Field(default=60)
    escalation_interval_seconds: int = Field(default=300)

    # Compliance Policy
    lock_grace_days: int = Field(default=5)
    escalation_window_minutes: int = Field(default=15)
    redispatch_timeout_minutes: int = Field(default=30)
    max_dispatch_attempts: int = Field(default=3)
    liveness_timeout_minutes: int = Field(default=15)

    # Primary Channel (Firebase Cloud Messaging HTTP v1)
    push_enabled: bool = Field(default=True)
    fcm_project_id: Optional[str] = Field(default=None)
    fcm_base_url: str = Field(default="https://fcm.googleapis.com")
    fcm_timeout_seconds: float = Field(default=10.0)

    # Secondary Channel (Android Management API)
    management_enabled: bool = Field(default=True)
    amapi_base_url: str = Field(default="https://androidmanagement.googleapis.com/v1")
    enterprise_id: Optional[str] = Field(default=None)
    default_policy_id: str = Field(default="policy_emi_default")
    amapi_timeout_seconds: float = Field(default=15.0)

    # Google service account used by both channels
    google_credentials_file: Optional[str] = Field(default=None)

    # Provisioning
    enrollment_token_ttl_seconds: int = Field(default=3600)
    backend_url: str = Field(default="http://localhost:8000")
    agent_package_name: str = Field(default="com.androidmanager")
    device_admin_component: str = Field(
        default="com.androidmanager/.receiver.EMIDeviceAdminReceiver"
    )
    device_admin_signature_checksum: str = Field(default="")
    device_admin_package_url: str = Field(
        default="https://play.google.com/store/apps/details?id=com.androidmanager"
    )

    # Inbound webhook
    amapi_webhook_secret: Optional[str] = Field(default=None)

    # Circuit Breaker / Retry Configuration
    circuit_breaker_failure_threshold: int = Field(default=5)
    circuit_breaker_timeout_seconds: int = Field(default=60)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay_seconds: float = Field(default=1.0)

    # CORS
    enable_cors: bool = Field(default=False)
    cors_origins: List[str] = Field(default=["http://localhost:3000"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    @field_validator(
        "scan_interval_seconds",
        "liveness_interval_seconds",
        "escalation_interval_seconds",
        "max_dispatch_attempts",
        "liveness_timeout_minutes",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Interval and attempt settings must be positive")
        return v

    @field_validator("lock_grace_days", "escalation_window_minutes", "redispatch_timeout_minutes")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Policy windows cannot be negative")
        return v

    @field_validator("enrollment_token_ttl_seconds")
    @classmethod
    def validate_token_ttl(cls, v: int) -> int:
        if not 60 <= v <= 7_776_000:
            raise ValueError("Enrollment token TTL must be between 60 seconds and 90 days")
        return v

    @field_validator("enterprise_id")
    @classmethod
    def normalize_enterprise_id(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith("enterprises/"):
            return f"enterprises/{v}"
        return v

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
