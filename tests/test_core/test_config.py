"""
Tests for application settings.
"""
import pytest
from pydantic import ValidationError

from compliance_orchestrator.core.config import Settings


class TestSettings:
    """Test settings defaults and validation."""

    def test_policy_defaults(self):
        settings = Settings()
        assert settings.lock_grace_days == 5
        assert settings.escalation_window_minutes == 15
        assert settings.liveness_timeout_minutes == 15
        assert settings.scan_interval_seconds == 43200
        assert settings.enrollment_token_ttl_seconds == 3600

    def test_enterprise_id_is_normalized(self):
        assert Settings(enterprise_id="LC0abc").enterprise_id == "enterprises/LC0abc"
        assert Settings(enterprise_id="enterprises/LC0abc").enterprise_id == "enterprises/LC0abc"

    def test_cors_origins_from_comma_string(self):
        settings = Settings(cors_origins="https://a.example.com, https://b.example.com")
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]

    @pytest.mark.parametrize("field", ["scan_interval_seconds", "max_dispatch_attempts"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_rejects_negative_grace(self):
        with pytest.raises(ValidationError):
            Settings(lock_grace_days=-1)

    @pytest.mark.parametrize("ttl", [59, 7_776_001])
    def test_rejects_out_of_range_token_ttl(self, ttl):
        with pytest.raises(ValidationError):
            Settings(enrollment_token_ttl_seconds=ttl)
