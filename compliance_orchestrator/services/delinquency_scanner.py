"""
Delinquency scanner.

Evaluates every active case against its installment schedule, decides the
lock intent the schedule calls for and hands directives to the command
dispatcher. Idempotence comes from comparing the target intent with the
last dispatched intent, never from the (asynchronous) confirmed state, so
an unconfirmed directive is not re-sent every cycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from compliance_orchestrator.core.exceptions import (
    ExternalServiceError,
    InvalidPushTokenError,
    StaleCaseError,
)
from compliance_orchestrator.core.logging import correlation_context, log_business_event
from compliance_orchestrator.models.case import Case, LockState, utc_now
from compliance_orchestrator.services.command_dispatcher import CommandDispatcher
from compliance_orchestrator.services.push_channel import PushChannel
from compliance_orchestrator.services.repository import CaseRepository

logger = structlog.get_logger(__name__)

REMINDER_TITLE = "EMI Payment Reminder"


class DispatchDecision(str, Enum):
    NONE = "none"                   # nothing to do
    DISPATCH = "dispatch"           # intent changed or drifted
    REDISPATCH = "redispatch"       # unconfirmed past timeout, use secondary
    AWAITING = "awaiting"           # dispatched, confirmation pending
    EXHAUSTED = "exhausted"         # redispatch budget used up


@dataclass
class CaseClassification:
    """Installment sequence numbers by delinquency class."""
    case_id: str
    pending: List[int]
    overdue: List[int]
    lock_eligible: List[int]
    max_days_overdue: int

    @property
    def target_state(self) -> LockState:
        return LockState.LOCKED if self.lock_eligible else LockState.UNLOCKED


@dataclass
class ScanReport:
    """Counters for one scan cycle."""
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    evaluated: int = 0
    overdue: int = 0
    lock_eligible: int = 0
    dispatched: int = 0
    redispatched: int = 0
    unlocked: int = 0
    skipped: int = 0
    reminders_sent: int = 0
    failures: int = 0
    failed_cases: List[Dict[str, str]] = field(default_factory=list)

    def record_failure(self, case_id: str, error: str) -> None:
        self.failures += 1
        self.failed_cases.append({"case_id": case_id, "error": error})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "evaluated": self.evaluated,
            "overdue": self.overdue,
            "lock_eligible": self.lock_eligible,
            "dispatched": self.dispatched,
            "redispatched": self.redispatched,
            "unlocked": self.unlocked,
            "skipped": self.skipped,
            "reminders_sent": self.reminders_sent,
            "failures": self.failures,
            "failed_cases": list(self.failed_cases),
        }


def classify(case: Case, now: datetime, grace_days: int) -> CaseClassification:
    overdue = case.overdue_installments(now)
    return CaseClassification(
        case_id=case.id,
        pending=[i.sequence for i in case.pending_installments()],
        overdue=[i.sequence for i in overdue],
        lock_eligible=[i.sequence for i in overdue if i.days_overdue(now) >= grace_days],
        max_days_overdue=case.max_days_overdue(now),
    )


class DelinquencyScanner:
    """Periodic evaluation of all active cases."""

    def __init__(
        self,
        cases: CaseRepository,
        dispatcher: CommandDispatcher,
        push_channel: PushChannel,
        lock_grace_days: int = 5,
        redispatch_timeout: timedelta = timedelta(minutes=30),
        max_dispatch_attempts: int = 3,
        send_reminders: bool = True,
    ):
        self.cases = cases
        self.dispatcher = dispatcher
        self.push_channel = push_channel
        self.lock_grace_days = lock_grace_days
        self.redispatch_timeout = redispatch_timeout
        self.max_dispatch_attempts = max_dispatch_attempts
        self.send_reminders = send_reminders
        self.last_report: Optional[ScanReport] = None

    def decide(self, case: Case, target: LockState, now: datetime) -> DispatchDecision:
        """Decide whether ``case`` needs a directive for ``target``."""
        record = case.dispatch

        if case.lock_intent != target or record.last_dispatched_intent != target:
            if target == LockState.UNLOCKED and record.last_dispatched_intent is None:
                return DispatchDecision.NONE
            return DispatchDecision.DISPATCH

        if case.confirmed_state == target:
            return DispatchDecision.NONE

        if record.pending_since is None:
            # Device drifted after confirming, or the last dispatch reached no channel
            return DispatchDecision.DISPATCH

        if record.attempts >= self.max_dispatch_attempts:
            return DispatchDecision.EXHAUSTED

        last_sent = record.last_dispatched_at or record.pending_since
        if now - last_sent >= self.redispatch_timeout:
            return DispatchDecision.REDISPATCH

        return DispatchDecision.AWAITING

    async def scan(self, now: Optional[datetime] = None) -> ScanReport:
        """
        Run one scan cycle over every active case.

        A failure on one case is recorded on the report and never stops
        the remaining cases from being processed.
        """
        now = now or utc_now()
        report = ScanReport(started_at=now)

        cases = await self.cases.list_cases(active_only=True)
        logger.info("Delinquency scan started", case_count=len(cases))

        for case in cases:
            report.evaluated += 1
            with correlation_context(case_id=case.id):
                try:
                    await self._process_case(case, now, report)
                except StaleCaseError as e:
                    logger.info("Case changed during scan, deferring", error=str(e))
                    report.skipped += 1
                except Exception as e:
                    logger.error(
                        "Failed to process case during scan",
                        error=str(e),
                        exc_info=True,
                    )
                    report.record_failure(case.id, str(e))

        report.finished_at = utc_now()
        self.last_report = report

        logger.info("Delinquency scan completed", **{
            k: v for k, v in report.to_dict().items() if k != "failed_cases"
        })
        log_business_event("delinquency_scan_completed", **report.to_dict())
        return report

    async def _process_case(self, case: Case, now: datetime, report: ScanReport) -> None:
        classification = classify(case, now, self.lock_grace_days)
        target = classification.target_state

        if classification.overdue:
            report.overdue += 1
        if classification.lock_eligible:
            report.lock_eligible += 1

        decision = self.decide(case, target, now)

        if decision in (DispatchDecision.AWAITING, DispatchDecision.EXHAUSTED):
            if decision == DispatchDecision.EXHAUSTED:
                logger.warning(
                    "Redispatch budget exhausted, waiting for device confirmation",
                    target=target.value,
                    attempts=case.dispatch.attempts,
                )
            report.skipped += 1
        elif decision != DispatchDecision.NONE:
            result = await self.dispatcher.dispatch(
                case, target, force_secondary=decision == DispatchDecision.REDISPATCH
            )
            if not result.success:
                report.record_failure(case.id, result.error_code.value)
            elif decision == DispatchDecision.REDISPATCH:
                report.redispatched += 1
            elif target == LockState.LOCKED:
                report.dispatched += 1
            else:
                report.unlocked += 1

        if classification.overdue and not classification.lock_eligible:
            await self._send_reminder(case, classification, report)

    async def _send_reminder(
        self, case: Case, classification: CaseClassification, report: ScanReport
    ) -> None:
        if not (self.send_reminders and case.push_token and self.push_channel.available):
            return

        pending = [i for i in case.installments if i.sequence in classification.pending]
        total = round(sum(i.amount for i in pending), 2)
        body = (
            f"You have {len(pending)} pending installment(s) totalling {total:.2f}. "
            f"Please pay to avoid your device being locked."
        )

        try:
            await self.push_channel.send_reminder(
                case.push_token,
                REMINDER_TITLE,
                body,
                {
                    "pendingCount": len(pending),
                    "totalPendingAmount": total,
                    "daysOverdue": classification.max_days_overdue,
                    "customerId": case.customer_id,
                },
            )
            report.reminders_sent += 1
        except InvalidPushTokenError:
            await self.cases.update(case.id, lambda c: setattr(c, "push_token", None))
            logger.warning("Reminder skipped, push token cleared")
        except ExternalServiceError as e:
            logger.warning("Reminder delivery failed", error=str(e))
