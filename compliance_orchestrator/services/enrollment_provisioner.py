"""
Enrollment provisioner.

Issues single-use enterprise enrollment tokens and wraps them in the
provisioning payload the Android setup wizard reads from a QR code. The
case id rides along as the token's additional data so the ENROLLMENT
notification can be tied back to its case without a lookup table.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from compliance_orchestrator.core.exceptions import AlreadyEnrolledError, ValidationError
from compliance_orchestrator.core.logging import correlation_context, log_business_event
from compliance_orchestrator.models.case import Case, EnrollmentToken, utc_now
from compliance_orchestrator.services.management_channel import ManagementChannel
from compliance_orchestrator.services.repository import CaseRepository
from compliance_orchestrator.utils.qr_code import encode_payload, render_data_url

logger = structlog.get_logger(__name__)

MIN_TOKEN_TTL_SECONDS = 60
MAX_TOKEN_TTL_SECONDS = 90 * 24 * 60 * 60

EXTRA_PREFIX = "android.app.extra."
ADMIN_COMPONENT_KEY = EXTRA_PREFIX + "PROVISIONING_DEVICE_ADMIN_COMPONENT_NAME"
SIGNATURE_CHECKSUM_KEY = EXTRA_PREFIX + "PROVISIONING_DEVICE_ADMIN_SIGNATURE_CHECKSUM"
DOWNLOAD_LOCATION_KEY = EXTRA_PREFIX + "PROVISIONING_DEVICE_ADMIN_PACKAGE_DOWNLOAD_LOCATION"
SKIP_ENCRYPTION_KEY = EXTRA_PREFIX + "PROVISIONING_SKIP_ENCRYPTION"
LEAVE_SYSTEM_APPS_KEY = EXTRA_PREFIX + "PROVISIONING_LEAVE_ALL_SYSTEM_APPS_ENABLED"
ADMIN_EXTRAS_KEY = EXTRA_PREFIX + "PROVISIONING_ADMIN_EXTRAS_BUNDLE"

SETUP_INSTRUCTIONS = [
    "Factory reset the device, or start from a brand-new device.",
    "On the welcome screen, tap the same spot six times to open the QR setup.",
    "Connect to Wi-Fi when prompted.",
    "Scan this QR code.",
    "Wait for the device agent to install and finish setup.",
]

_timestamp_adapter = TypeAdapter(datetime)


@dataclass
class ProvisioningBundle:
    """Everything a technician needs to enroll one device."""
    case_id: str
    token: EnrollmentToken
    qr_payload: Dict[str, Any]
    qr_code: str

    @property
    def expires_at(self) -> datetime:
        return self.token.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "token": self.token.value,
            "policy_id": self.token.policy_id,
            "expires_at": self.expires_at.isoformat(),
            "qr_payload": self.qr_payload,
            "qr_code": self.qr_code,
            "instructions": list(SETUP_INSTRUCTIONS),
        }


class EnrollmentProvisioner:
    """Token issue, policy bootstrap and device wipe."""

    def __init__(
        self,
        cases: CaseRepository,
        management_channel: ManagementChannel,
        backend_url: str,
        admin_component: str,
        signature_checksum: str,
        package_download_url: str,
        default_ttl_seconds: int = 3600,
    ):
        self.cases = cases
        self.management_channel = management_channel
        self.backend_url = backend_url
        self.admin_component = admin_component
        self.signature_checksum = signature_checksum
        self.package_download_url = package_download_url
        self.default_ttl_seconds = default_ttl_seconds

    def build_payload(self, token: str, case_id: str) -> Dict[str, Any]:
        """Provisioning extras in the exact shape the setup wizard expects."""
        return {
            ADMIN_COMPONENT_KEY: self.admin_component,
            SIGNATURE_CHECKSUM_KEY: self.signature_checksum,
            DOWNLOAD_LOCATION_KEY: self.package_download_url,
            SKIP_ENCRYPTION_KEY: False,
            LEAVE_SYSTEM_APPS_KEY: True,
            ADMIN_EXTRAS_KEY: {
                "backend_url": self.backend_url,
                "enrollment_token": token,
                "customer_id": case_id,
                "enterprise_id": self.management_channel.enterprise_id,
            },
        }

    async def issue_token(
        self,
        case_id: str,
        policy_id: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> ProvisioningBundle:
        """
        Issue an enrollment token and QR payload for a case.

        Raises:
            ValidationError: If ttl_seconds is out of range
            NotFoundError: If the case does not exist
            AlreadyEnrolledError: If the device is enrolled and has not been wiped
            ExternalServiceError: If the management API call fails
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        if not MIN_TOKEN_TTL_SECONDS <= ttl <= MAX_TOKEN_TTL_SECONDS:
            raise ValidationError(
                f"must be between {MIN_TOKEN_TTL_SECONDS} and {MAX_TOKEN_TTL_SECONDS}",
                field="ttl_seconds",
                value=ttl,
            )

        policy = policy_id or self.management_channel.default_policy_id

        with correlation_context(case_id=case_id):
            case = await self.cases.get_or_raise(case_id)
            if not case.enrollment.can_provision:
                logger.warning("Provisioning refused, device already enrolled")
                raise AlreadyEnrolledError(case_id)

            issued_at = utc_now()
            created = await self.management_channel.create_enrollment_token(
                policy, ttl, additional_data=case.id
            )

            token = EnrollmentToken(
                value=created["value"],
                name=created.get("name"),
                policy_id=policy,
                case_id=case.id,
                expires_at=self._parse_expiry(created.get("expirationTimestamp"), issued_at, ttl),
                issued_at=issued_at,
            )

            def record_token(c: Case) -> None:
                c.enrollment.last_token = token

            await self.cases.update(case.id, record_token)

            payload = self.build_payload(token.value, case.id)
            bundle = ProvisioningBundle(
                case_id=case.id,
                token=token,
                qr_payload=payload,
                qr_code=render_data_url(encode_payload(payload)),
            )

            log_business_event(
                "enrollment_token_issued",
                case_id=case.id,
                policy_id=policy,
                expires_at=token.expires_at.isoformat(),
            )
            return bundle

    @staticmethod
    def _parse_expiry(raw: Optional[str], issued_at: datetime, ttl: int) -> datetime:
        if raw:
            try:
                return _timestamp_adapter.validate_python(raw)
            except PydanticValidationError:
                logger.warning("Unparseable token expiry, using requested TTL", raw=raw)
        return issued_at + timedelta(seconds=ttl)

    async def ensure_policy(
        self, policy_id: Optional[str] = None, policy: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Create or overwrite a policy, using the default template when none is given."""
        return await self.management_channel.create_policy(policy_id, policy)

    async def update_policy(self, policy_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if not updates:
            raise ValidationError("at least one field is required", field="updates")
        return await self.management_channel.update_policy(policy_id, updates)

    async def get_policy(self, policy_id: Optional[str] = None) -> Dict[str, Any]:
        return await self.management_channel.get_policy(policy_id)

    async def wipe_device(self, case_id: str, reason: Optional[str] = None) -> Case:
        """
        Factory reset the case's device through the management API.

        A wiped case may be provisioned again.
        """
        with correlation_context(case_id=case_id):
            case = await self.cases.get_or_raise(case_id)

            device_name = case.enrollment.device_name
            if not device_name:
                device = await self.management_channel.find_device_by_serial(case.imei1)
                device_name = device["name"]

            await self.management_channel.wipe_device(device_name, reason)

            def mark_wiped(c: Case) -> None:
                c.enrollment.wiped = True
                c.enrollment.wiped_at = utc_now()
                c.push_token = None

            updated = await self.cases.update(case_id, mark_wiped)
            log_business_event("device_wiped", case_id=case_id, device_name=device_name)
            return updated
