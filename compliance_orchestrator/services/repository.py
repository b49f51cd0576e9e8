"""
Case, assignment and recovery-directory storage.

Currently implements in-memory storage for development. In production
this would sit on a document store offering per-record atomic updates.
"""
import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

import structlog

from compliance_orchestrator.core.exceptions import (
    AssignmentConflictError,
    DuplicateCaseError,
    NotFoundError,
    StaleCaseError,
    ValidationError,
)
from compliance_orchestrator.models.assignment import (
    Assignment,
    AssignmentStatus,
    RecoveryAgent,
    RecoveryHead,
)
from compliance_orchestrator.models.case import Case, utc_now

logger = structlog.get_logger(__name__)

CaseMutator = Callable[[Case], None]


def _lock_fields(case: Case) -> tuple:
    return (case.lock_intent, case.confirmed_state, case.locked_since, case.dispatch)


class CaseRepository:
    """
    Case storage with per-record read-modify-write.

    Every update runs its mutator on a fresh copy while holding that
    case's lock, so concurrent scan and webhook writers never clobber
    each other. Writes that change lock intent, confirmed state or
    dispatch bookkeeping bump ``version``; callers that decided on an
    older snapshot pass ``expected_version`` and get StaleCaseError.
    """

    def __init__(self):
        # In-memory storage for development
        self._cases: Dict[str, Case] = {}
        self._by_serial: Dict[str, str] = {}
        self._by_device_name: Dict[str, str] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._index_lock = asyncio.Lock()

    async def create_case(self, case: Case) -> Case:
        """
        Store a new case.

        Raises:
            DuplicateCaseError: If a case exists for the primary serial
        """
        async with self._index_lock:
            if case.imei1 in self._by_serial or case.id in self._cases:
                raise DuplicateCaseError(case.imei1)

            stored = case.model_copy(deep=True)
            self._cases[stored.id] = stored
            self._by_serial[stored.imei1] = stored.id
            if stored.imei2:
                self._by_serial.setdefault(stored.imei2, stored.id)
            if stored.enrollment.device_name:
                self._by_device_name[stored.enrollment.device_name] = stored.id

        logger.info(
            "Case created",
            case_id=stored.id,
            customer_id=stored.customer_id,
            installments=len(stored.installments),
        )
        return stored.model_copy(deep=True)

    async def get(self, case_id: str) -> Optional[Case]:
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    async def get_or_raise(self, case_id: str) -> Case:
        case = await self.get(case_id)
        if case is None:
            raise NotFoundError("Case", case_id)
        return case

    async def find_by_serial(self, serial: str) -> Optional[Case]:
        """Look up a case by either hardware serial."""
        case_id = self._by_serial.get(serial)
        return await self.get(case_id) if case_id else None

    async def find_by_device_name(self, device_name: str) -> Optional[Case]:
        case_id = self._by_device_name.get(device_name)
        return await self.get(case_id) if case_id else None

    async def list_cases(self, active_only: bool = True) -> List[Case]:
        cases = [c for c in self._cases.values() if c.is_active or not active_only]
        return [c.model_copy(deep=True) for c in sorted(cases, key=lambda c: c.id)]

    async def update(
        self,
        case_id: str,
        mutator: CaseMutator,
        expected_version: Optional[int] = None,
    ) -> Case:
        """
        Atomically apply ``mutator`` to the stored case.

        Raises:
            NotFoundError: If the case does not exist
            StaleCaseError: If ``expected_version`` no longer matches
        """
        async with self._locks[case_id]:
            current = self._cases.get(case_id)
            if current is None:
                raise NotFoundError("Case", case_id)

            if expected_version is not None and current.version != expected_version:
                raise StaleCaseError(case_id, expected_version, current.version)

            working = current.model_copy(deep=True)
            mutator(working)

            if _lock_fields(working) != _lock_fields(current):
                working.version = current.version + 1
            else:
                working.version = current.version
            working.updated_at = utc_now()

            self._cases[case_id] = working
            device_name = working.enrollment.device_name
            if device_name and self._by_device_name.get(device_name) != case_id:
                self._by_device_name[device_name] = case_id

            return working.model_copy(deep=True)

    async def mark_installment_paid(
        self, case_id: str, sequence: int, paid_date: Optional[datetime] = None
    ) -> Case:
        """Mark one installment paid. Re-marking a paid installment is a no-op."""

        def apply(case: Case) -> None:
            for installment in case.installments:
                if installment.sequence == sequence:
                    if not installment.paid:
                        installment.paid = True
                        installment.paid_date = paid_date or utc_now()
                    return
            raise ValidationError(
                f"Installment {sequence} does not exist", field="sequence", value=sequence
            )

        case = await self.update(case_id, apply)
        logger.info("Installment marked paid", case_id=case_id, sequence=sequence)
        return case

    async def health_check(self) -> bool:
        # In production: ping the document store
        return True


class AssignmentRepository:
    """
    Assignment storage enforcing a single ACTIVE assignment per case.

    In production this is a unique partial index over
    {case_id, status=ACTIVE}.
    """

    def __init__(self):
        self._assignments: Dict[str, Assignment] = {}
        self._active_by_case: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def create(self, assignment: Assignment) -> Assignment:
        """
        Store a new ACTIVE assignment.

        Raises:
            AssignmentConflictError: If the case already has an ACTIVE assignment
        """
        async with self._lock:
            existing_id = self._active_by_case.get(assignment.case_id)
            if existing_id is not None:
                raise AssignmentConflictError(assignment.case_id, existing_id)

            stored = assignment.model_copy(
                update={"status": AssignmentStatus.ACTIVE, "unassigned_at": None}
            )
            self._assignments[stored.id] = stored
            self._active_by_case[stored.case_id] = stored.id

        logger.info(
            "Assignment created",
            assignment_id=stored.id,
            case_id=stored.case_id,
            head_id=stored.head_id,
            agent_id=stored.agent_id,
        )
        return stored.model_copy()

    async def close(self, assignment_id: str, reason: Optional[str] = None) -> Assignment:
        """Transition an assignment to INACTIVE. Closing twice is a no-op."""
        async with self._lock:
            assignment = self._assignments.get(assignment_id)
            if assignment is None:
                raise NotFoundError("Assignment", assignment_id)

            if assignment.status == AssignmentStatus.ACTIVE:
                assignment = assignment.model_copy(update={
                    "status": AssignmentStatus.INACTIVE,
                    "unassigned_at": utc_now(),
                    "reason": reason or assignment.reason,
                })
                self._assignments[assignment_id] = assignment
                if self._active_by_case.get(assignment.case_id) == assignment_id:
                    del self._active_by_case[assignment.case_id]

                logger.info(
                    "Assignment closed",
                    assignment_id=assignment_id,
                    case_id=assignment.case_id,
                    reason=reason,
                )

            return assignment.model_copy()

    async def delete(self, assignment_id: str) -> bool:
        """Remove an assignment record. The case it references is untouched."""
        async with self._lock:
            assignment = self._assignments.pop(assignment_id, None)
            if assignment is None:
                return False
            if self._active_by_case.get(assignment.case_id) == assignment_id:
                del self._active_by_case[assignment.case_id]
            return True

    async def get(self, assignment_id: str) -> Optional[Assignment]:
        assignment = self._assignments.get(assignment_id)
        return assignment.model_copy() if assignment else None

    async def get_active_for_case(self, case_id: str) -> Optional[Assignment]:
        assignment_id = self._active_by_case.get(case_id)
        return await self.get(assignment_id) if assignment_id else None

    async def list_for_case(self, case_id: str) -> List[Assignment]:
        return sorted(
            (a.model_copy() for a in self._assignments.values() if a.case_id == case_id),
            key=lambda a: a.assigned_at,
        )

    async def active_counts(self) -> Dict[str, Dict[str, int]]:
        """ACTIVE assignment counts keyed by head id and by agent id."""
        by_head: Dict[str, int] = defaultdict(int)
        by_agent: Dict[str, int] = defaultdict(int)
        for assignment_id in self._active_by_case.values():
            assignment = self._assignments[assignment_id]
            by_head[assignment.head_id] += 1
            by_agent[assignment.agent_id] += 1
        return {"heads": dict(by_head), "agents": dict(by_agent)}


class RecoveryDirectory:
    """Recovery heads and their agents."""

    def __init__(self):
        self._heads: Dict[str, RecoveryHead] = {}
        self._agents: Dict[str, RecoveryAgent] = {}

    async def add_head(self, head: RecoveryHead) -> RecoveryHead:
        self._heads[head.id] = head.model_copy(deep=True)
        return head

    async def add_agent(self, agent: RecoveryAgent) -> RecoveryAgent:
        if agent.head_id not in self._heads:
            raise NotFoundError("RecoveryHead", agent.head_id)
        self._agents[agent.id] = agent.model_copy()
        return agent

    async def get_agent(self, agent_id: str) -> Optional[RecoveryAgent]:
        agent = self._agents.get(agent_id)
        return agent.model_copy() if agent else None

    async def heads_for_postal_code(self, postal_code: str) -> List[RecoveryHead]:
        """ACTIVE heads covering the postal code, ordered by id."""
        return [
            h.model_copy(deep=True)
            for h in sorted(self._heads.values(), key=lambda h: h.id)
            if h.covers(postal_code)
        ]

    async def active_agents(self, head_id: str) -> List[RecoveryAgent]:
        """Active agents under a head, ordered by id."""
        return [
            a.model_copy()
            for a in sorted(self._agents.values(), key=lambda a: a.id)
            if a.head_id == head_id and a.is_active
        ]
