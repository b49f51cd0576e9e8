"""
Recovery escalation engine.

Cases whose device has been confirmed LOCKED for longer than the
escalation window are handed to a recovery agent. The owner is chosen
among ACTIVE recovery heads covering the case's postal code: least
loaded head first, then least loaded active agent inside that head,
with ties broken by id so the choice is deterministic.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import structlog

from compliance_orchestrator.core.exceptions import (
    AssignmentConflictError,
    NotFoundError,
    ValidationError,
)
from compliance_orchestrator.core.logging import correlation_context, log_business_event
from compliance_orchestrator.models.assignment import Assignment, RecoveryAgent, RecoveryHead
from compliance_orchestrator.models.case import Case, LockState, utc_now
from compliance_orchestrator.services.repository import (
    AssignmentRepository,
    CaseRepository,
    RecoveryDirectory,
)

logger = structlog.get_logger(__name__)


@dataclass
class EscalationReport:
    """Counters for one escalation pass."""
    started_at: datetime = field(default_factory=utc_now)
    candidates: int = 0
    assigned: int = 0
    already_assigned: int = 0
    unroutable: int = 0
    released: int = 0
    failures: int = 0
    assignment_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "candidates": self.candidates,
            "assigned": self.assigned,
            "already_assigned": self.already_assigned,
            "unroutable": self.unroutable,
            "released": self.released,
            "failures": self.failures,
            "assignment_ids": list(self.assignment_ids),
        }


class RecoveryEscalationEngine:
    """Routes long-locked cases to recovery agents."""

    def __init__(
        self,
        cases: CaseRepository,
        assignments: AssignmentRepository,
        directory: RecoveryDirectory,
        escalation_window: timedelta = timedelta(minutes=15),
    ):
        self.cases = cases
        self.assignments = assignments
        self.directory = directory
        self.escalation_window = escalation_window

    def is_candidate(self, case: Case, now: datetime) -> bool:
        return (
            case.confirmed_state == LockState.LOCKED
            and case.locked_since is not None
            and now - case.locked_since >= self.escalation_window
        )

    async def select_owner(self, postal_code: str) -> Optional[Tuple[RecoveryHead, RecoveryAgent]]:
        """Pick the head and agent for a postal code, or None if nobody covers it."""
        counts = await self.assignments.active_counts()
        head_load = counts["heads"]
        agent_load = counts["agents"]

        heads = await self.directory.heads_for_postal_code(postal_code)
        for head in sorted(heads, key=lambda h: (head_load.get(h.id, 0), h.id)):
            agents = await self.directory.active_agents(head.id)
            if agents:
                agent = min(agents, key=lambda a: (agent_load.get(a.id, 0), a.id))
                return head, agent
        return None

    async def escalate(self, now: Optional[datetime] = None) -> EscalationReport:
        """
        Assign every eligible case without an ACTIVE assignment, and release
        assignments whose device has since been confirmed unlocked.
        """
        now = now or utc_now()
        report = EscalationReport(started_at=now)

        for case in await self.cases.list_cases(active_only=False):
            with correlation_context(case_id=case.id):
                try:
                    await self._process_case(case, now, report)
                except AssignmentConflictError:
                    report.already_assigned += 1
                except Exception as e:
                    logger.error("Escalation failed for case", error=str(e), exc_info=True)
                    report.failures += 1

        logger.info("Escalation pass completed", **{
            k: v for k, v in report.to_dict().items() if k != "assignment_ids"
        })
        return report

    async def _process_case(self, case: Case, now: datetime, report: EscalationReport) -> None:
        active = await self.assignments.get_active_for_case(case.id)

        if active and case.confirmed_state == LockState.UNLOCKED:
            await self.assignments.close(active.id, reason="device_unlocked")
            report.released += 1
            return

        if not self.is_candidate(case, now):
            return

        report.candidates += 1
        if active:
            report.already_assigned += 1
            return

        selection = await self.select_owner(case.postal_code)
        if selection is None:
            logger.warning("No recovery head covers postal code", postal_code=case.postal_code)
            report.unroutable += 1
            return

        head, agent = selection
        assignment = await self.assignments.create(Assignment(
            case_id=case.id,
            head_id=head.id,
            agent_id=agent.id,
            assigned_at=now,
            reason="locked_beyond_window",
        ))
        report.assigned += 1
        report.assignment_ids.append(assignment.id)
        log_business_event(
            "recovery_assigned",
            case_id=case.id,
            assignment_id=assignment.id,
            head_id=head.id,
            agent_id=agent.id,
            postal_code=case.postal_code,
        )

    async def close_assignment(self, assignment_id: str, reason: Optional[str] = None) -> Assignment:
        assignment = await self.assignments.close(assignment_id, reason=reason or "closed_manually")
        log_business_event(
            "recovery_assignment_closed",
            assignment_id=assignment_id,
            case_id=assignment.case_id,
        )
        return assignment

    async def reassign(
        self, case_id: str, agent_id: Optional[str] = None, reason: Optional[str] = None
    ) -> Assignment:
        """
        Close the case's ACTIVE assignment, if any, and create a new one.

        Without ``agent_id`` the owner is re-selected by postal code.
        """
        case = await self.cases.get_or_raise(case_id)

        if agent_id:
            agent = await self.directory.get_agent(agent_id)
            if agent is None:
                raise NotFoundError("RecoveryAgent", agent_id)
            if not agent.is_active:
                raise ValidationError("agent is inactive", field="agent_id", value=agent_id)
            head_id = agent.head_id
        else:
            selection = await self.select_owner(case.postal_code)
            if selection is None:
                raise NotFoundError(
                    "RecoveryHead",
                    detail=f"No recovery head covers postal code {case.postal_code}",
                )
            head_id, agent_id = selection[0].id, selection[1].id

        active = await self.assignments.get_active_for_case(case_id)
        if active:
            await self.assignments.close(active.id, reason=reason or "reassigned")

        assignment = await self.assignments.create(Assignment(
            case_id=case_id,
            head_id=head_id,
            agent_id=agent_id,
            reason=reason or "reassigned",
        ))
        log_business_event(
            "recovery_reassigned",
            case_id=case_id,
            assignment_id=assignment.id,
            agent_id=agent_id,
            previous_assignment_id=active.id if active else None,
        )
        return assignment
