"""
Tests for enrollment token issue, policy management and wipe.
"""
import json
from datetime import datetime, timezone

import pytest

from compliance_orchestrator.core.exceptions import (
    AlreadyEnrolledError,
    NotFoundError,
    ValidationError,
)
from compliance_orchestrator.models.case import EnrollmentRecord
from compliance_orchestrator.services.enrollment_provisioner import (
    ADMIN_COMPONENT_KEY,
    ADMIN_EXTRAS_KEY,
    DOWNLOAD_LOCATION_KEY,
    LEAVE_SYSTEM_APPS_KEY,
    SIGNATURE_CHECKSUM_KEY,
    SKIP_ENCRYPTION_KEY,
    EnrollmentProvisioner,
)
from compliance_orchestrator.utils.qr_code import DATA_URL_PREFIX

ENROLLED = EnrollmentRecord(enrolled=True, device_name="enterprises/LC0test/devices/3f8a1c")


@pytest.fixture
def provisioner(case_repository, mock_management_channel):
    return EnrollmentProvisioner(
        case_repository,
        mock_management_channel,
        backend_url="https://emi.example.com",
        admin_component="com.androidmanager/.receiver.EMIDeviceAdminReceiver",
        signature_checksum="c2lnbmF0dXJl",
        package_download_url="https://downloads.example.com/agent.apk",
    )


class TestIssueToken:
    """Test token issue and the provisioning payload."""

    @pytest.mark.asyncio
    async def test_issue_token_builds_bundle(
        self, provisioner, case_repository, make_case, mock_management_channel
    ):
        await case_repository.create_case(make_case())

        bundle = await provisioner.issue_token("case-001")

        mock_management_channel.create_enrollment_token.assert_awaited_once_with(
            "policy_emi_default", 3600, additional_data="case-001"
        )
        assert bundle.token.value == "ENROLLTOKEN123"
        assert bundle.expires_at == datetime(2026, 10, 17, 13, 0, tzinfo=timezone.utc)
        assert bundle.qr_code.startswith(DATA_URL_PREFIX)

        stored = await case_repository.get("case-001")
        assert stored.enrollment.last_token.value == "ENROLLTOKEN123"

    @pytest.mark.asyncio
    async def test_payload_has_setup_wizard_keys(self, provisioner, case_repository, make_case):
        await case_repository.create_case(make_case())

        payload = (await provisioner.issue_token("case-001")).qr_payload

        assert payload[ADMIN_COMPONENT_KEY] == "com.androidmanager/.receiver.EMIDeviceAdminReceiver"
        assert payload[SIGNATURE_CHECKSUM_KEY] == "c2lnbmF0dXJl"
        assert payload[DOWNLOAD_LOCATION_KEY] == "https://downloads.example.com/agent.apk"
        assert payload[SKIP_ENCRYPTION_KEY] is False
        assert payload[LEAVE_SYSTEM_APPS_KEY] is True
        assert payload[ADMIN_EXTRAS_KEY] == {
            "backend_url": "https://emi.example.com",
            "enrollment_token": "ENROLLTOKEN123",
            "customer_id": "case-001",
            "enterprise_id": "enterprises/LC0test",
        }
        json.dumps(payload)

    @pytest.mark.asyncio
    async def test_enrolled_device_refused(
        self, provisioner, case_repository, make_case, mock_management_channel
    ):
        await case_repository.create_case(make_case(enrollment=ENROLLED))

        with pytest.raises(AlreadyEnrolledError):
            await provisioner.issue_token("case-001")
        mock_management_channel.create_enrollment_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wiped_device_can_be_reprovisioned(self, provisioner, case_repository, make_case):
        wiped = ENROLLED.model_copy(update={"wiped": True})
        await case_repository.create_case(make_case(enrollment=wiped))

        bundle = await provisioner.issue_token("case-001", policy_id="policy_strict", ttl_seconds=600)
        assert bundle.token.policy_id == "policy_strict"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [59, 90 * 24 * 60 * 60 + 1])
    async def test_ttl_out_of_range(self, provisioner, case_repository, make_case, ttl):
        await case_repository.create_case(make_case())
        with pytest.raises(ValidationError):
            await provisioner.issue_token("case-001", ttl_seconds=ttl)

    @pytest.mark.asyncio
    async def test_unknown_case(self, provisioner):
        with pytest.raises(NotFoundError):
            await provisioner.issue_token("missing")

    @pytest.mark.asyncio
    async def test_missing_expiry_falls_back_to_ttl(
        self, provisioner, case_repository, make_case, mock_management_channel
    ):
        await case_repository.create_case(make_case())
        mock_management_channel.create_enrollment_token.return_value = {"value": "T2"}

        bundle = await provisioner.issue_token("case-001", ttl_seconds=120)

        assert (bundle.expires_at - bundle.token.issued_at).total_seconds() == 120


class TestPoliciesAndWipe:
    @pytest.mark.asyncio
    async def test_update_policy_requires_fields(self, provisioner):
        with pytest.raises(ValidationError):
            await provisioner.update_policy("policy_emi_default", {})

    @pytest.mark.asyncio
    async def test_ensure_policy_delegates(self, provisioner, mock_management_channel):
        await provisioner.ensure_policy("policy_emi_default")
        mock_management_channel.create_policy.assert_awaited_once_with("policy_emi_default", None)

    @pytest.mark.asyncio
    async def test_wipe_marks_case_and_clears_token(
        self, provisioner, case_repository, make_case, mock_management_channel
    ):
        await case_repository.create_case(make_case(push_token="tok", enrollment=ENROLLED))

        updated = await provisioner.wipe_device("case-001", reason="Loan default")

        mock_management_channel.wipe_device.assert_awaited_once_with(
            "enterprises/LC0test/devices/3f8a1c", "Loan default"
        )
        mock_management_channel.find_device_by_serial.assert_not_awaited()
        assert updated.enrollment.wiped is True
        assert updated.enrollment.can_provision is True
        assert updated.push_token is None

    @pytest.mark.asyncio
    async def test_wipe_looks_up_device_by_serial(
        self, provisioner, case_repository, make_case, mock_management_channel
    ):
        await case_repository.create_case(make_case())

        await provisioner.wipe_device("case-001")

        mock_management_channel.find_device_by_serial.assert_awaited_once_with("356938035643809")
        mock_management_channel.wipe_device.assert_awaited_once_with(
            "enterprises/LC0test/devices/3f8a1c", None
        )
