"""
Command dispatcher.

Sends a lock/unlock directive to a device over the push channel first and
falls back to the enterprise management channel. Dispatch records intent
and delivery bookkeeping only; the device-confirmed lock state is never
touched here and only changes when the event reconciler receives a
device-sourced confirmation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from compliance_orchestrator.core.exceptions import (
    ChannelUnavailableError,
    DeviceNotFoundError,
    ExternalServiceError,
    InvalidPushTokenError,
)
from compliance_orchestrator.core.logging import correlation_context, log_business_event
from compliance_orchestrator.models.case import Case, DeliveryChannel, LockState, utc_now
from compliance_orchestrator.services.management_channel import ManagementChannel
from compliance_orchestrator.services.push_channel import PushChannel
from compliance_orchestrator.services.repository import CaseRepository

logger = structlog.get_logger(__name__)


class DispatchErrorCode(str, Enum):
    CHANNEL_UNAVAILABLE = "CHANNEL_UNAVAILABLE"
    DEVICE_NOT_FOUND = "DEVICE_NOT_FOUND"
    REMOTE_REJECTED = "REMOTE_REJECTED"


@dataclass
class ChannelAttempt:
    """Outcome of one channel in a dispatch."""
    channel: DeliveryChannel
    success: bool
    error_code: Optional[DispatchErrorCode] = None
    message: Optional[str] = None
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "success": self.success,
            "error_code": self.error_code.value if self.error_code else None,
            "message": self.message,
            "reference": self.reference,
        }


@dataclass
class DispatchResult:
    """What happened when a directive was dispatched."""
    case_id: str
    desired: LockState
    attempts: List[ChannelAttempt] = field(default_factory=list)
    dispatched_at: datetime = field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return any(a.success for a in self.attempts)

    @property
    def channel(self) -> Optional[DeliveryChannel]:
        for attempt in self.attempts:
            if attempt.success:
                return attempt.channel
        return None

    @property
    def error_code(self) -> Optional[DispatchErrorCode]:
        if self.success or not self.attempts:
            return None
        return self.attempts[-1].error_code

    @property
    def error_message(self) -> Optional[str]:
        if self.success or not self.attempts:
            return None
        return self.attempts[-1].message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "desired": self.desired.value,
            "success": self.success,
            "channel": self.channel.value if self.channel else None,
            "error_code": self.error_code.value if self.error_code else None,
            "error_message": self.error_message,
            "attempts": [a.to_dict() for a in self.attempts],
            "dispatched_at": self.dispatched_at.isoformat(),
        }


class CommandDispatcher:
    """Dual-channel lock/unlock dispatch."""

    def __init__(
        self,
        cases: CaseRepository,
        push_channel: PushChannel,
        management_channel: ManagementChannel,
    ):
        self.cases = cases
        self.push_channel = push_channel
        self.management_channel = management_channel

    async def dispatch(
        self,
        case: Case,
        desired: LockState,
        force_secondary: bool = False,
    ) -> DispatchResult:
        """
        Dispatch ``desired`` to the device behind ``case``.

        ``case`` is the snapshot the caller decided on; if the stored case
        has moved on since, StaleCaseError is raised before anything is sent.

        Args:
            case: Snapshot of the case to act on
            desired: Lock state to request
            force_secondary: Skip push and go straight to the management API

        Returns:
            DispatchResult describing every channel tried
        """
        with correlation_context(case_id=case.id):
            now = utc_now()
            claimed = await self.cases.update(
                case.id,
                lambda c: self._claim_intent(c, desired, now),
                expected_version=case.version,
            )

            result = DispatchResult(case_id=case.id, desired=desired, dispatched_at=now)

            if not force_secondary:
                await self._try_push(claimed, result)

            if not result.success:
                await self._try_management(claimed, result)

            await self.cases.update(case.id, lambda c: self._record_outcome(c, result))

            log_business_event(
                "lock_directive_dispatched",
                case_id=case.id,
                desired=desired.value,
                success=result.success,
                channel=result.channel.value if result.channel else None,
                error_code=result.error_code.value if result.error_code else None,
                force_secondary=force_secondary,
            )
            return result

    @staticmethod
    def _claim_intent(case: Case, desired: LockState, now: datetime) -> None:
        record = case.dispatch
        repeat = record.last_dispatched_intent == desired and record.pending_since is not None
        case.lock_intent = desired
        record.attempts = record.attempts + 1 if repeat else 1
        record.last_dispatched_intent = desired
        record.last_dispatched_at = now
        if not repeat:
            record.pending_since = now
            record.secondary_attempted = False

    @staticmethod
    def _record_outcome(case: Case, result: DispatchResult) -> None:
        record = case.dispatch
        record.last_channel = result.channel
        record.last_error = result.error_code.value if result.error_code else None
        if not result.success:
            # Nothing reached the device, so nothing is awaiting confirmation
            record.pending_since = None
        if any(a.channel == DeliveryChannel.MANAGEMENT for a in result.attempts):
            record.secondary_attempted = True
        push_attempt = next(
            (a for a in result.attempts if a.channel == DeliveryChannel.PUSH), None
        )
        if push_attempt and push_attempt.reference == "INVALID_TOKEN":
            case.push_token = None

    async def _try_push(self, case: Case, result: DispatchResult) -> None:
        if not case.push_token:
            result.attempts.append(ChannelAttempt(
                channel=DeliveryChannel.PUSH,
                success=False,
                error_code=DispatchErrorCode.CHANNEL_UNAVAILABLE,
                message="No push token registered",
            ))
            return

        try:
            message_id = await self.push_channel.send_lock_directive(case.push_token, result.desired)
            result.attempts.append(ChannelAttempt(
                channel=DeliveryChannel.PUSH, success=True, reference=message_id
            ))
        except InvalidPushTokenError as e:
            logger.warning("Push token invalid, clearing handle", error_code=e.error_code)
            result.attempts.append(ChannelAttempt(
                channel=DeliveryChannel.PUSH,
                success=False,
                error_code=DispatchErrorCode.REMOTE_REJECTED,
                message=str(e),
                reference="INVALID_TOKEN",
            ))
        except ChannelUnavailableError as e:
            result.attempts.append(ChannelAttempt(
                channel=DeliveryChannel.PUSH,
                success=False,
                error_code=DispatchErrorCode.CHANNEL_UNAVAILABLE,
                message=str(e),
            ))
        except ExternalServiceError as e:
            logger.warning("Push delivery failed, falling back", error=str(e))
            result.attempts.append(ChannelAttempt(
                channel=DeliveryChannel.PUSH,
                success=False,
                error_code=DispatchErrorCode.REMOTE_REJECTED,
                message=str(e),
            ))
        except Exception as e:
            logger.exception("Unexpected push failure, falling back", error=str(e))
            result.attempts.append(ChannelAttempt(
                channel=DeliveryChannel.PUSH,
                success=False,
                error_code=DispatchErrorCode.REMOTE_REJECTED,
                message=str(e),
            ))

    async def _try_management(self, case: Case, result: DispatchResult) -> None:
        serials = [case.imei1] + ([case.imei2] if case.imei2 else [])

        for serial in serials:
            try:
                outcome = await self.management_channel.set_lock_state(serial, result.desired)
                result.attempts.append(ChannelAttempt(
                    channel=DeliveryChannel.MANAGEMENT,
                    success=True,
                    reference=outcome["operation"].get("name") or outcome["device_name"],
                ))
                return
            except DeviceNotFoundError as e:
                not_found = ChannelAttempt(
                    channel=DeliveryChannel.MANAGEMENT,
                    success=False,
                    error_code=DispatchErrorCode.DEVICE_NOT_FOUND,
                    message=str(e),
                )
            except ChannelUnavailableError as e:
                result.attempts.append(ChannelAttempt(
                    channel=DeliveryChannel.MANAGEMENT,
                    success=False,
                    error_code=DispatchErrorCode.CHANNEL_UNAVAILABLE,
                    message=str(e),
                ))
                return
            except ExternalServiceError as e:
                logger.error("Management command failed", serial=serial, error=str(e))
                result.attempts.append(ChannelAttempt(
                    channel=DeliveryChannel.MANAGEMENT,
                    success=False,
                    error_code=DispatchErrorCode.REMOTE_REJECTED,
                    message=str(e),
                ))
                return
            except Exception as e:
                logger.exception("Unexpected management failure", serial=serial, error=str(e))
                result.attempts.append(ChannelAttempt(
                    channel=DeliveryChannel.MANAGEMENT,
                    success=False,
                    error_code=DispatchErrorCode.REMOTE_REJECTED,
                    message=str(e),
                ))
                return

        result.attempts.append(not_found)
