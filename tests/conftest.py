"""
Pytest configuration and fixtures for the Compliance Orchestrator.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from compliance_orchestrator.core.config import Settings
from compliance_orchestrator.core.dependencies import OrchestratorContainer
from compliance_orchestrator.main import create_app
from compliance_orchestrator.models.case import Case, Installment
from compliance_orchestrator.services.repository import CaseRepository

WEBHOOK_SECRET = "test-webhook-secret"
ENTERPRISE_ID = "enterprises/LC0test"
DEVICE_NAME = f"{ENTERPRISE_ID}/devices/3f8a1c"


@pytest.fixture
def now() -> datetime:
    """Fixed reference time for schedule arithmetic."""
    return datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_installments(now) -> Callable[..., List[Installment]]:
    """Build an installment schedule from day offsets relative to ``now``."""

    def _make(*offsets_days: int, amount: float = 1500.0, paid: Optional[List[int]] = None):
        paid = paid or []
        return [
            Installment(
                sequence=i + 1,
                due_date=now + timedelta(days=offset),
                amount=amount,
                paid=(i + 1) in paid,
            )
            for i, offset in enumerate(offsets_days)
        ]

    return _make


@pytest.fixture
def make_case() -> Callable[..., Case]:
    """Factory for valid cases; keyword overrides are passed through."""

    def _make(
        case_id: str = "case-001",
        imei1: str = "356938035643809",
        postal_code: str = "560001",
        **overrides,
    ) -> Case:
        return Case(
            id=case_id,
            customer_id=f"cust-{case_id}",
            customer_name="Ravi Kumar",
            postal_code=postal_code,
            imei1=imei1,
            **overrides,
        )

    return _make


@pytest.fixture
def case_repository() -> CaseRepository:
    return CaseRepository()


@pytest.fixture
def mock_push_channel() -> MagicMock:
    """Push channel that accepts every message."""
    channel = MagicMock()
    channel.available = True
    channel.send_lock_directive = AsyncMock(return_value="projects/test/messages/1")
    channel.send_reminder = AsyncMock(return_value="projects/test/messages/2")
    channel.close = AsyncMock()
    channel.get_status.return_value = {"available": True}
    return channel


@pytest.fixture
def mock_management_channel() -> MagicMock:
    """Management channel that finds every device and accepts every command."""
    channel = MagicMock()
    channel.available = True
    channel.enterprise_id = ENTERPRISE_ID
    channel.default_policy_id = "policy_emi_default"
    channel.set_lock_state = AsyncMock(
        return_value={"device_name": DEVICE_NAME, "operation": {"name": f"{DEVICE_NAME}/operations/1"}}
    )
    channel.find_device_by_serial = AsyncMock(return_value={"name": DEVICE_NAME})
    channel.wipe_device = AsyncMock(return_value=None)
    channel.create_enrollment_token = AsyncMock(return_value={
        "name": f"{ENTERPRISE_ID}/enrollmentTokens/tok-1",
        "value": "ENROLLTOKEN123",
        "expirationTimestamp": "2026-10-17T13:00:00Z",
    })
    channel.create_policy = AsyncMock(return_value={"name": f"{ENTERPRISE_ID}/policies/policy_emi_default"})
    channel.update_policy = AsyncMock(return_value={"name": f"{ENTERPRISE_ID}/policies/policy_emi_default"})
    channel.get_policy = AsyncMock(return_value={"name": f"{ENTERPRISE_ID}/policies/policy_emi_default"})
    channel.close = AsyncMock()
    channel.get_status.return_value = {"available": True, "enterprise_id": ENTERPRISE_ID}
    return channel


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        scheduler_enabled=False,
        amapi_webhook_secret=WEBHOOK_SECRET,
        enterprise_id=ENTERPRISE_ID,
        fcm_project_id="test-project",
        backend_url="https://emi.example.com",
        device_admin_signature_checksum="c2lnbmF0dXJl",
    )


@pytest.fixture
def container(test_settings, mock_push_channel, mock_management_channel) -> OrchestratorContainer:
    return OrchestratorContainer(
        test_settings,
        push_channel=mock_push_channel,
        management_channel=mock_management_channel,
    )


@pytest.fixture
def client(test_settings, container) -> Generator[TestClient, None, None]:
    """
    Synchronous TestClient over an app wired to mocked channels.

    Schedulers are disabled so nothing runs in the background.
    """
    app = create_app(settings=test_settings, container=container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_headers() -> dict:
    return {
        "X-Correlation-ID": "test-correlation-123",
        "Content-Type": "application/json",
    }
