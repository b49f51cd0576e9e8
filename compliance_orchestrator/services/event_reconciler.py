"""
Event reconciler.

Applies device-sourced events to case state. This is the only place the
confirmed lock state changes. Events arrive from two places: signed
management-API webhooks (already authenticated by the API boundary) and
the device agent's own callbacks.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import structlog

from compliance_orchestrator.core.exceptions import NotFoundError
from compliance_orchestrator.core.logging import correlation_context, log_business_event
from compliance_orchestrator.models.case import Case, LockState, utc_now
from compliance_orchestrator.models.events import (
    CommandResultEvent,
    ComplianceReportEvent,
    EnrollmentEvent,
    InboundEvent,
    LockAcknowledgement,
    StatusReportEvent,
    UnknownEvent,
)
from compliance_orchestrator.services.repository import CaseRepository

logger = structlog.get_logger(__name__)


@dataclass
class ReconcileOutcome:
    """Result of applying one event."""
    event_type: str
    applied: bool
    detail: str
    case_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "applied": self.applied,
            "detail": self.detail,
            "case_id": self.case_id,
        }


def apply_confirmation(case: Case, state: LockState, now: datetime) -> None:
    """Record a device-confirmed lock state on ``case``."""
    if state == LockState.LOCKED and case.confirmed_state != LockState.LOCKED:
        case.locked_since = now
    elif state == LockState.UNLOCKED:
        case.locked_since = None
    case.confirmed_state = state

    if state == case.lock_intent:
        case.dispatch.pending_since = None
        case.dispatch.last_error = None


class EventReconciler:
    """Applies inbound events to cases."""

    def __init__(self, cases: CaseRepository):
        self.cases = cases

    async def reconcile(self, event: InboundEvent, now: Optional[datetime] = None) -> ReconcileOutcome:
        """
        Apply one webhook event.

        Events that cannot be tied to a case, and unknown event types, are
        logged and dropped rather than raised.
        """
        now = now or utc_now()

        if isinstance(event, EnrollmentEvent):
            return await self._on_enrollment(event, now)
        if isinstance(event, ComplianceReportEvent):
            return await self._on_compliance_report(event, now)
        if isinstance(event, StatusReportEvent):
            return await self._on_status_report(event, now)
        if isinstance(event, CommandResultEvent):
            return await self._on_command_result(event, now)
        if isinstance(event, UnknownEvent):
            logger.info(
                "Unknown notification type dropped",
                notification_type=event.notification_type,
                device_name=event.device_name,
            )
            return ReconcileOutcome(
                event_type=event.notification_type or "UNKNOWN",
                applied=False,
                detail="unknown_event_type",
            )

        raise TypeError(f"Unhandled event variant: {type(event).__name__}")

    async def _on_enrollment(self, event: EnrollmentEvent, now: datetime) -> ReconcileOutcome:
        case_id = event.additional_data
        if not case_id or not event.device_name:
            logger.warning(
                "Enrollment event missing case reference or device name",
                device_name=event.device_name,
            )
            return ReconcileOutcome("ENROLLMENT", False, "missing_reference")

        with correlation_context(case_id=case_id):
            decision: Dict[str, Optional[str]] = {"detail": None, "enrolled_device": None}

            def enroll(c: Case) -> None:
                # Decided on the locked record so concurrent deliveries cannot both enroll
                enrollment = c.enrollment
                if enrollment.enrolled and not enrollment.wiped:
                    decision["enrolled_device"] = enrollment.device_name
                    if enrollment.device_name == event.device_name:
                        enrollment.last_sync_at = now
                        decision["detail"] = "replay"
                    else:
                        decision["detail"] = "conflicting_device"
                    return

                enrollment.enrolled = True
                enrollment.device_name = event.device_name
                enrollment.enrolled_at = now
                enrollment.compliance_status = "UNKNOWN"
                enrollment.last_sync_at = now
                enrollment.wiped = False
                enrollment.wiped_at = None
                token = enrollment.last_token
                if token and token.consumed_at is None:
                    token.consumed_at = now
                decision["detail"] = "enrolled"

            try:
                await self.cases.update(case_id, enroll)
            except NotFoundError:
                logger.warning("Enrollment event for unknown case", device_name=event.device_name)
                return ReconcileOutcome("ENROLLMENT", False, "case_not_found", case_id)

            if decision["detail"] == "replay":
                logger.info("Duplicate enrollment event, sync time refreshed")
                return ReconcileOutcome("ENROLLMENT", True, "replay", case_id)
            if decision["detail"] == "conflicting_device":
                logger.warning(
                    "Enrollment event for a different device on an enrolled case",
                    enrolled_device=decision["enrolled_device"],
                    device_name=event.device_name,
                )
                return ReconcileOutcome("ENROLLMENT", False, "conflicting_device", case_id)

            log_business_event("device_enrolled", case_id=case_id, device_name=event.device_name)
            return ReconcileOutcome("ENROLLMENT", True, "enrolled", case_id)

    async def _case_for_device(self, event_type: str, device_name: Optional[str]) -> Optional[Case]:
        if not device_name:
            logger.warning("Event without device name dropped", event_type=event_type)
            return None
        case = await self.cases.find_by_device_name(device_name)
        if case is None:
            logger.warning("Event for unknown device dropped", event_type=event_type, device_name=device_name)
        return case

    async def _on_compliance_report(self, event: ComplianceReportEvent, now: datetime) -> ReconcileOutcome:
        case = await self._case_for_device("COMPLIANCE_REPORT", event.device_name)
        if case is None:
            return ReconcileOutcome("COMPLIANCE_REPORT", False, "case_not_found")

        def apply(c: Case) -> None:
            c.enrollment.compliance_status = event.compliance_state or "UNKNOWN"
            c.enrollment.last_sync_at = now

        await self.cases.update(case.id, apply)
        logger.info(
            "Compliance status updated",
            case_id=case.id,
            compliance_status=event.compliance_state or "UNKNOWN",
        )
        return ReconcileOutcome("COMPLIANCE_REPORT", True, "compliance_updated", case.id)

    async def _on_status_report(self, event: StatusReportEvent, now: datetime) -> ReconcileOutcome:
        case = await self._case_for_device("STATUS_REPORT", event.device_name)
        if case is None:
            return ReconcileOutcome("STATUS_REPORT", False, "case_not_found")

        def apply(c: Case) -> None:
            c.enrollment.last_sync_at = now
            c.liveness.last_seen_at = now
            c.liveness.is_active = True

        await self.cases.update(case.id, apply)
        return ReconcileOutcome("STATUS_REPORT", True, "synced", case.id)

    async def _on_command_result(self, event: CommandResultEvent, now: datetime) -> ReconcileOutcome:
        case = await self._case_for_device("COMMAND", event.device_name)
        if case is None:
            return ReconcileOutcome("COMMAND", False, "case_not_found")

        state = event.confirmed_state
        if state is None:
            logger.info(
                "Command result carries no lock outcome",
                case_id=case.id,
                command_type=event.command_type,
                command_status=event.command_status,
            )
            return ReconcileOutcome("COMMAND", False, "no_lock_outcome", case.id)

        await self._confirm(case.id, state, now, source="management")
        return ReconcileOutcome("COMMAND", True, f"confirmed_{state.value.lower()}", case.id)

    async def _confirm(self, case_id: str, state: LockState, now: datetime, source: str) -> Case:
        case = await self.cases.update(case_id, lambda c: apply_confirmation(c, state, now))
        log_business_event(
            "lock_state_confirmed",
            case_id=case_id,
            confirmed_state=state.value,
            lock_intent=case.lock_intent.value,
            converged=case.is_converged,
            source=source,
        )
        return case

    # Device agent callbacks

    async def _case_for_serial(self, serial: str) -> Case:
        case = await self.cases.find_by_serial(serial)
        if case is None:
            raise NotFoundError("Case", serial, detail=f"No case registered for device {serial}")
        return case

    async def acknowledge_lock(self, ack: LockAcknowledgement, now: Optional[datetime] = None) -> Case:
        """
        Apply the agent's report of a lock/unlock attempt.

        A failed attempt leaves the confirmed state unchanged.
        """
        now = now or utc_now()
        case = await self._case_for_serial(ack.imei1)

        with correlation_context(case_id=case.id):
            if not ack.success:
                logger.warning(
                    "Device reported failed lock action",
                    action=ack.action.value,
                    error_message=ack.error_message,
                )

                def record_failure(c: Case) -> None:
                    c.dispatch.last_error = ack.error_message or "DEVICE_REPORTED_FAILURE"
                    c.liveness.last_seen_at = now

                return await self.cases.update(case.id, record_failure)

            return await self._confirm(case.id, ack.action.lock_state, now, source="device_agent")

    async def register_push_token(
        self,
        serial: str,
        push_token: str,
        device_pin: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Case:
        """Store the agent's FCM token and treat the call as a liveness signal."""
        now = now or utc_now()
        case = await self._case_for_serial(serial)

        def apply(c: Case) -> None:
            c.push_token = push_token
            if device_pin:
                c.device_pin = device_pin
            self._touch_liveness(c, now, latitude, longitude)

        updated = await self.cases.update(case.id, apply)
        logger.info("Push token registered", case_id=case.id)
        return updated

    async def record_location(
        self,
        serial: str,
        latitude: float,
        longitude: float,
        now: Optional[datetime] = None,
    ) -> Case:
        now = now or utc_now()
        case = await self._case_for_serial(serial)
        return await self.cases.update(
            case.id, lambda c: self._touch_liveness(c, now, latitude, longitude)
        )

    @staticmethod
    def _touch_liveness(
        case: Case, now: datetime, latitude: Optional[float], longitude: Optional[float]
    ) -> None:
        case.liveness.last_seen_at = now
        case.liveness.is_active = True
        if latitude is not None and longitude is not None:
            case.liveness.latitude = latitude
            case.liveness.longitude = longitude
