"""
Secondary channel: Android Management API (enterprise MDM).

Used as the lock/unlock fallback when the device agent cannot be reached
over push, and for provisioning (enrollment tokens, policies, wipe).
Calls are not retried here; a failed command is picked up again by the
next scan cycle.
"""
from typing import Any, Dict, List, Optional

import structlog

from compliance_orchestrator.core.circuit_breaker import ServiceClient
from compliance_orchestrator.core.exceptions import (
    ChannelUnavailableError,
    DeviceNotFoundError,
    ExternalServiceError,
)
from compliance_orchestrator.models.case import LockState

logger = structlog.get_logger(__name__)

LOCK_COMMAND = {"type": "LOCK", "duration": "0s"}
UNLOCK_COMMAND = {"type": "RESET_PASSWORD", "resetPasswordFlags": ["REQUIRE_ENTRY"]}
REBOOT_COMMAND = {"type": "REBOOT"}
WIPE_DATA_FLAGS = ["WIPE_EXTERNAL_STORAGE", "PRESERVE_RESET_PROTECTION_DATA"]


def default_policy(agent_package_name: str) -> Dict[str, Any]:
    """Baseline policy for financed devices: agent force-installed, full status reporting."""
    return {
        "applications": [
            {
                "packageName": agent_package_name,
                "installType": "FORCE_INSTALLED",
                "defaultPermissionPolicy": "GRANT",
                "lockTaskAllowed": True,
            }
        ],
        "locationMode": "LOCATION_USER_CHOICE",
        "minimumApiLevel": 21,
        "factoryResetDisabled": False,
        "statusReportingSettings": {
            "displayInfoEnabled": True,
            "deviceSettingsEnabled": True,
            "softwareInfoEnabled": True,
            "memoryInfoEnabled": True,
            "networkInfoEnabled": True,
            "hardwareStatusEnabled": True,
            "applicationReportsEnabled": True,
        },
        "systemUpdate": {"type": "WINDOWED", "startMinutes": 120, "endMinutes": 180},
        "kioskCustomLauncherEnabled": False,
        "complianceRules": [
            {
                "nonComplianceDetailCondition": {
                    "settingName": "LOCATION_MODE",
                    "nonComplianceReason": "LOCATION_MODE_DISABLED",
                }
            }
        ],
    }


def device_serials(device: Dict[str, Any]) -> List[str]:
    """Every hardware identifier a fleet device reports."""
    hardware = device.get("hardwareInfo", {})
    network = device.get("networkInfo", {})
    serials = [hardware.get("serialNumber"), hardware.get("imei"), network.get("imei"), network.get("meid")]
    serials.extend(t.get("imei") for t in network.get("telephonyInfos", []))
    return [s for s in serials if s]


class ManagementChannel:
    """Client for the Android Management API v1 REST surface."""

    service_name = "android_management"

    def __init__(
        self,
        enterprise_id: Optional[str],
        service_client: Optional[ServiceClient],
        default_policy_id: str = "policy_emi_default",
        agent_package_name: str = "com.androidmanager",
        enabled: bool = True,
    ):
        self.enterprise_id = enterprise_id
        self.service_client = service_client
        self.default_policy_id = default_policy_id
        self.agent_package_name = agent_package_name
        self.enabled = enabled

        logger.info(
            "Management channel initialized",
            enabled=self.available,
            enterprise_id=enterprise_id,
        )

    @property
    def available(self) -> bool:
        return bool(self.enabled and self.enterprise_id and self.service_client)

    def _require_available(self) -> ServiceClient:
        if not self.available:
            raise ChannelUnavailableError(
                self.service_name, "Android Management API is not initialized"
            )
        return self.service_client

    def policy_name(self, policy_id: Optional[str] = None) -> str:
        return f"{self.enterprise_id}/policies/{policy_id or self.default_policy_id}"

    # Devices

    async def list_devices(self) -> List[Dict[str, Any]]:
        client = self._require_available()
        devices: List[Dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            params = {"pageSize": 100}
            if page_token:
                params["pageToken"] = page_token
            page = await client.get(f"{self.enterprise_id}/devices", params=params)
            devices.extend(page.get("devices", []))
            page_token = page.get("nextPageToken")
            if not page_token:
                return devices

    async def find_device_by_serial(self, serial: str) -> Dict[str, Any]:
        """
        Locate a fleet device by hardware serial or IMEI.

        Raises:
            DeviceNotFoundError: If no device in the fleet reports the serial
        """
        for device in await self.list_devices():
            if serial in device_serials(device):
                logger.info("Fleet device located", serial=serial, device_name=device.get("name"))
                return device

        logger.warning("No fleet device matches serial", serial=serial)
        raise DeviceNotFoundError(self.service_name, serial)

    async def get_device(self, device_name: str) -> Dict[str, Any]:
        client = self._require_available()
        try:
            return await client.get(device_name)
        except ExternalServiceError as e:
            if e.status_code == 404:
                raise DeviceNotFoundError(self.service_name, device_name)
            raise

    async def issue_command(self, device_name: str, command: Dict[str, Any]) -> Dict[str, Any]:
        """Issue a device command; returns the long-running operation."""
        client = self._require_available()
        operation = await client.post(f"{device_name}:issueCommand", json=command)
        logger.info(
            "Management command issued",
            device_name=device_name,
            command_type=command["type"],
            operation=operation.get("name"),
        )
        return operation

    async def set_lock_state(self, serial: str, state: LockState) -> Dict[str, Any]:
        """
        Lock (LOCK) or unlock (RESET_PASSWORD) the device owning ``serial``.

        Returns:
            The device resource name and the command operation
        """
        device = await self.find_device_by_serial(serial)
        command = LOCK_COMMAND if state == LockState.LOCKED else UNLOCK_COMMAND
        operation = await self.issue_command(device["name"], dict(command))
        return {"device_name": device["name"], "operation": operation}

    async def reboot_device(self, device_name: str) -> Dict[str, Any]:
        return await self.issue_command(device_name, dict(REBOOT_COMMAND))

    async def wipe_device(self, device_name: str, reason: Optional[str] = None) -> None:
        """Factory reset the device and remove it from the fleet."""
        client = self._require_available()
        params: Dict[str, Any] = {"wipeDataFlags": WIPE_DATA_FLAGS}
        if reason:
            params["wipeReasonMessage"] = reason
        await client.delete(device_name, params=params)
        logger.warning("Device wipe requested", device_name=device_name)

    # Enrollment

    async def create_enrollment_token(
        self, policy_id: Optional[str], ttl_seconds: int, additional_data: str
    ) -> Dict[str, Any]:
        """
        Create a single-use enrollment token.

        ``additional_data`` comes back on the ENROLLMENT notification, which
        is how a newly enrolled device is tied to its case.
        """
        client = self._require_available()
        token = await client.post(
            f"{self.enterprise_id}/enrollmentTokens",
            json={
                "policyName": self.policy_name(policy_id),
                "duration": f"{ttl_seconds}s",
                "additionalData": additional_data,
                "oneTimeOnly": True,
            },
        )
        logger.info(
            "Enrollment token created",
            token_name=token.get("name"),
            expires_at=token.get("expirationTimestamp"),
        )
        return token

    # Policies

    async def create_policy(
        self, policy_id: Optional[str] = None, policy: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        client = self._require_available()
        body = policy or default_policy(self.agent_package_name)
        created = await client.patch(self.policy_name(policy_id), json=body)
        logger.info("Policy created", policy=self.policy_name(policy_id))
        return created

    async def update_policy(self, policy_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        client = self._require_available()
        updated = await client.patch(
            self.policy_name(policy_id),
            json=updates,
            params={"updateMask": ",".join(updates.keys())},
        )
        logger.info("Policy updated", policy=self.policy_name(policy_id), fields=list(updates))
        return updated

    async def get_policy(self, policy_id: Optional[str] = None) -> Dict[str, Any]:
        client = self._require_available()
        return await client.get(self.policy_name(policy_id))

    async def close(self) -> None:
        if self.service_client:
            await self.service_client.close()

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {"available": self.available, "enterprise_id": self.enterprise_id}
        if self.service_client:
            status["circuit"] = self.service_client.get_circuit_status()
        return status
