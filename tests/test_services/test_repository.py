"""
Tests for case, assignment and directory storage.
"""
import pytest

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
from compliance_orchestrator.models.case import LockState
from compliance_orchestrator.services.repository import (
    AssignmentRepository,
    CaseRepository,
    RecoveryDirectory,
)


class TestCaseRepository:
    """Test case storage and the version guard."""

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, case_repository, make_case):
        await case_repository.create_case(make_case(imei2="356938035643817"))

        assert (await case_repository.get("case-001")).imei1 == "356938035643809"
        assert (await case_repository.find_by_serial("356938035643817")).id == "case-001"
        assert await case_repository.get("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_serial_rejected(self, case_repository, make_case):
        await case_repository.create_case(make_case())
        with pytest.raises(DuplicateCaseError):
            await case_repository.create_case(make_case(case_id="case-002"))

    @pytest.mark.asyncio
    async def test_returned_copies_are_detached(self, case_repository, make_case):
        await case_repository.create_case(make_case())
        case = await case_repository.get("case-001")
        case.lock_intent = LockState.LOCKED

        assert (await case_repository.get("case-001")).lock_intent == LockState.UNLOCKED

    @pytest.mark.asyncio
    async def test_lock_field_change_bumps_version(self, case_repository, make_case):
        await case_repository.create_case(make_case())

        def lock(case):
            case.lock_intent = LockState.LOCKED

        updated = await case_repository.update("case-001", lock)
        assert updated.version == 1

    @pytest.mark.asyncio
    async def test_unrelated_change_keeps_version(self, case_repository, make_case):
        await case_repository.create_case(make_case())

        def rename(case):
            case.customer_name = "Someone Else"

        updated = await case_repository.update("case-001", rename)
        assert updated.version == 0
        assert updated.customer_name == "Someone Else"

    @pytest.mark.asyncio
    async def test_stale_expected_version_rejected(self, case_repository, make_case):
        await case_repository.create_case(make_case())

        def lock(case):
            case.lock_intent = LockState.LOCKED

        await case_repository.update("case-001", lock, expected_version=0)
        with pytest.raises(StaleCaseError) as exc_info:
            await case_repository.update("case-001", lock, expected_version=0)
        assert exc_info.value.actual_version == 1

    @pytest.mark.asyncio
    async def test_update_missing_case(self, case_repository):
        with pytest.raises(NotFoundError):
            await case_repository.update("missing", lambda case: None)

    @pytest.mark.asyncio
    async def test_device_name_index_follows_updates(self, case_repository, make_case):
        await case_repository.create_case(make_case())

        def enroll(case):
            case.enrollment.device_name = "enterprises/LC0test/devices/9"

        await case_repository.update("case-001", enroll)
        found = await case_repository.find_by_device_name("enterprises/LC0test/devices/9")
        assert found.id == "case-001"

    @pytest.mark.asyncio
    async def test_mark_installment_paid_is_idempotent(self, case_repository, make_case, make_installments, now):
        await case_repository.create_case(make_case(installments=make_installments(-10, 20)))

        first = await case_repository.mark_installment_paid("case-001", 1, paid_date=now)
        second = await case_repository.mark_installment_paid("case-001", 1)

        assert first.installments[0].paid is True
        assert second.installments[0].paid_date == now

    @pytest.mark.asyncio
    async def test_mark_unknown_installment(self, case_repository, make_case, make_installments):
        await case_repository.create_case(make_case(installments=make_installments(-10)))
        with pytest.raises(ValidationError):
            await case_repository.mark_installment_paid("case-001", 5)

    @pytest.mark.asyncio
    async def test_list_cases_filters_inactive(self, case_repository, make_case):
        await case_repository.create_case(make_case())
        await case_repository.create_case(make_case("case-002", imei1="356938035643825", is_active=False))

        assert [c.id for c in await case_repository.list_cases()] == ["case-001"]
        assert len(await case_repository.list_cases(active_only=False)) == 2


class TestAssignmentRepository:
    """Test the single-active-assignment rule."""

    @pytest.fixture
    def repository(self):
        return AssignmentRepository()

    @pytest.mark.asyncio
    async def test_second_active_assignment_conflicts(self, repository):
        first = await repository.create(Assignment(case_id="case-1", head_id="h1", agent_id="a1"))

        with pytest.raises(AssignmentConflictError) as exc_info:
            await repository.create(Assignment(case_id="case-1", head_id="h1", agent_id="a2"))
        assert exc_info.value.context["active_assignment_id"] == first.id

    @pytest.mark.asyncio
    async def test_close_frees_the_case(self, repository):
        first = await repository.create(Assignment(case_id="case-1", head_id="h1", agent_id="a1"))
        closed = await repository.close(first.id, "device_unlocked")

        assert closed.status == AssignmentStatus.INACTIVE
        assert closed.unassigned_at is not None
        assert await repository.get_active_for_case("case-1") is None

        await repository.create(Assignment(case_id="case-1", head_id="h1", agent_id="a2"))
        assert len(await repository.list_for_case("case-1")) == 2

    @pytest.mark.asyncio
    async def test_close_twice_is_noop(self, repository):
        first = await repository.create(Assignment(case_id="case-1", head_id="h1", agent_id="a1"))
        closed = await repository.close(first.id, "first")
        again = await repository.close(first.id, "second")
        assert again.reason == closed.reason == "first"

    @pytest.mark.asyncio
    async def test_close_unknown(self, repository):
        with pytest.raises(NotFoundError):
            await repository.close("missing")

    @pytest.mark.asyncio
    async def test_delete_and_counts(self, repository):
        a = await repository.create(Assignment(case_id="case-1", head_id="h1", agent_id="a1"))
        await repository.create(Assignment(case_id="case-2", head_id="h1", agent_id="a2"))

        assert await repository.active_counts() == {
            "heads": {"h1": 2},
            "agents": {"a1": 1, "a2": 1},
        }
        assert await repository.delete(a.id) is True
        assert await repository.delete(a.id) is False
        assert (await repository.active_counts())["heads"] == {"h1": 1}


class TestRecoveryDirectory:
    @pytest.mark.asyncio
    async def test_heads_and_agents(self):
        directory = RecoveryDirectory()
        await directory.add_head(RecoveryHead(id="h2", name="South", postal_codes=["560001"]))
        await directory.add_head(RecoveryHead(id="h1", name="Central", postal_codes=["560001", "560002"]))
        await directory.add_head(
            RecoveryHead(id="h3", name="Closed", postal_codes=["560001"], status="INACTIVE")
        )
        await directory.add_agent(RecoveryAgent(id="a2", name="B", head_id="h1"))
        await directory.add_agent(RecoveryAgent(id="a1", name="A", head_id="h1"))
        await directory.add_agent(RecoveryAgent(id="a3", name="C", head_id="h1", is_active=False))

        assert [h.id for h in await directory.heads_for_postal_code("560001")] == ["h1", "h2"]
        assert [a.id for a in await directory.active_agents("h1")] == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_agent_requires_known_head(self):
        with pytest.raises(NotFoundError):
            await RecoveryDirectory().add_agent(RecoveryAgent(id="a1", name="A", head_id="nope"))
