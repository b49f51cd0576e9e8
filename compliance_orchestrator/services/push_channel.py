"""
Primary channel: Firebase Cloud Messaging HTTP v1 data messages to the
device agent.

Delivery is fire-and-forget. A successful send means FCM accepted the
message, not that the device acted on it.
"""
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import structlog

from compliance_orchestrator.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    TokenProvider,
)
from compliance_orchestrator.core.exceptions import (
    ChannelUnavailableError,
    ExternalServiceError,
    ExternalServiceTimeoutError,
    InvalidPushTokenError,
    ServiceUnavailableError,
)
from compliance_orchestrator.core.retry import RetryConfig, create_async_retry_decorator
from compliance_orchestrator.models.case import LockState, utc_now
from compliance_orchestrator.models.events import DeviceAction

logger = structlog.get_logger(__name__)

LOCK_STATUS_MESSAGE_TYPE = "DEVICE_LOCK_STATUS"
REMINDER_MESSAGE_TYPE = "EMI_REMINDER"

# FCM error codes meaning the registration token will never work again
_DEAD_TOKEN_ERRORS = {"UNREGISTERED", "SENDER_ID_MISMATCH"}


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    moment = moment or utc_now()
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_lock_message(token: str, state: LockState, moment: Optional[datetime] = None) -> Dict[str, Any]:
    """FCM v1 message carrying a lock/unlock directive."""
    return {
        "message": {
            "token": token,
            "data": {
                "type": LOCK_STATUS_MESSAGE_TYPE,
                "action": DeviceAction.for_state(state).value,
                "timestamp": iso_timestamp(moment),
            },
            "android": {"priority": "high"},
        }
    }


def build_reminder_message(
    token: str, title: str, body: str, data: Dict[str, Any]
) -> Dict[str, Any]:
    """FCM v1 notification reminding the customer of pending installments."""
    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body},
            # FCM data payloads only carry string values
            "data": {"type": REMINDER_MESSAGE_TYPE, **{k: str(v) for k, v in data.items()}},
            "android": {"priority": "high"},
        }
    }


class PushChannel:
    """Client for the FCM HTTP v1 send endpoint."""

    service_name = "fcm"

    def __init__(
        self,
        project_id: Optional[str],
        token_provider: Optional[TokenProvider],
        base_url: str = "https://fcm.googleapis.com",
        timeout_seconds: float = 10.0,
        enabled: bool = True,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker_config: Optional[CircuitBreakerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.project_id = project_id
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.enabled = enabled
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.circuit_breaker = CircuitBreaker(self.service_name, circuit_breaker_config)
        self._post = create_async_retry_decorator(retry_config, self.service_name)(self._raw_post)

        logger.info(
            "Push channel initialized",
            enabled=self.available,
            project_id=project_id,
            timeout_seconds=timeout_seconds,
        )

    @property
    def available(self) -> bool:
        return bool(self.enabled and self.project_id and self.token_provider)

    @property
    def send_url(self) -> str:
        return f"{self.base_url}/v1/projects/{self.project_id}/messages:send"

    async def send_lock_directive(self, token: str, state: LockState) -> str:
        """
        Send a lock/unlock directive to the device agent.

        Returns:
            FCM message name

        Raises:
            ChannelUnavailableError: If the channel is not configured
            InvalidPushTokenError: If FCM reports the token as dead
            ExternalServiceError: For any other delivery failure
        """
        message_id = await self._send(build_lock_message(token, state))
        logger.info(
            "Lock directive sent via push",
            action=DeviceAction.for_state(state).value,
            message_id=message_id,
        )
        return message_id

    async def send_reminder(self, token: str, title: str, body: str, data: Dict[str, Any]) -> str:
        message_id = await self._send(build_reminder_message(token, title, body, data))
        logger.info("Payment reminder sent via push", message_id=message_id)
        return message_id

    async def _raw_post(self, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        return await self.client.post(
            self.send_url, json=payload, headers=headers, timeout=self.timeout_seconds
        )

    async def _send(self, payload: Dict[str, Any]) -> str:
        if not self.available:
            raise ChannelUnavailableError(self.service_name, "Push channel is not configured")

        headers = {
            "Authorization": f"Bearer {await self.token_provider()}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.circuit_breaker.call_async(self._post, payload, headers)
        except ServiceUnavailableError as e:
            raise ChannelUnavailableError(self.service_name, str(e.detail))
        except httpx.TimeoutException:
            raise ExternalServiceTimeoutError(self.service_name, self.timeout_seconds)
        except httpx.TransportError as e:
            raise ExternalServiceError(self.service_name, f"Request failed: {e}")

        if response.status_code >= 400:
            self._raise_for_error(response)

        return response.json().get("name", "")

    def _raise_for_error(self, response: httpx.Response) -> None:
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}

        error_codes = {
            detail.get("errorCode")
            for detail in error.get("details", [])
            if isinstance(detail, dict)
        }
        status = error.get("status", "")
        message = error.get("message", response.text)

        dead_token = bool(error_codes & _DEAD_TOKEN_ERRORS) or (
            status == "INVALID_ARGUMENT" and "registration token" in message.lower()
        )
        if dead_token:
            code = next(iter(error_codes & _DEAD_TOKEN_ERRORS), "INVALID_ARGUMENT")
            logger.warning("Push token rejected by FCM", error_code=code)
            raise InvalidPushTokenError(self.service_name, code)

        logger.error(
            "Push delivery failed",
            status_code=response.status_code,
            fcm_status=status,
            error=message,
        )
        raise ExternalServiceError(
            self.service_name,
            f"HTTP {response.status_code}: {message}",
            status_code=response.status_code,
        )

    async def close(self) -> None:
        await self.client.aclose()

    def get_status(self) -> Dict[str, Any]:
        return {"available": self.available, "circuit": self.circuit_breaker.get_status()}
