"""
Tests for the case domain model.
"""
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from compliance_orchestrator.models.case import EnrollmentRecord, Installment, LockState
from compliance_orchestrator.models.events import DeviceAction


class TestInstallment:
    def test_naive_due_date_assumed_utc(self):
        installment = Installment(sequence=1, due_date=datetime(2026, 1, 1), amount=100)
        assert installment.due_date.tzinfo is not None

    def test_days_overdue_floors(self, now):
        installment = Installment(sequence=1, due_date=now - timedelta(days=4, hours=23), amount=100)
        assert installment.days_overdue(now) == 4

    def test_paid_installment_never_overdue(self, now):
        installment = Installment(sequence=1, due_date=now - timedelta(days=40), amount=100, paid=True)
        assert installment.is_overdue(now) is False
        assert installment.days_overdue(now) == 0


class TestCase:
    def test_defaults(self, make_case):
        case = make_case()
        assert case.lock_intent == LockState.UNLOCKED
        assert case.confirmed_state is None
        assert case.is_converged is False
        assert case.version == 0

    def test_installments_sorted_and_contiguous(self, make_case, make_installments):
        installments = list(reversed(make_installments(-5, 25, 55)))
        case = make_case(installments=installments)
        assert [i.sequence for i in case.installments] == [1, 2, 3]

    def test_gap_in_schedule_rejected(self, make_case, make_installments):
        installments = make_installments(-5, 25)
        installments[1].sequence = 3
        with pytest.raises(ValidationError):
            make_case(installments=installments)

    @pytest.mark.parametrize("overrides", [
        {"imei1": "12345"},
        {"postal_code": "5600"},
        {"imei2": "356938035643809"},
        {"device_pin": "12"},
    ])
    def test_invalid_identifiers(self, make_case, overrides):
        with pytest.raises(ValidationError):
            make_case(**overrides)

    def test_max_days_overdue(self, make_case, make_installments, now):
        case = make_case(installments=make_installments(-12, -3, 20))
        assert case.max_days_overdue(now) == 12
        assert [i.sequence for i in case.lock_eligible_installments(now, grace_days=5)] == [1]

    def test_wiped_device_can_provision(self):
        assert EnrollmentRecord().can_provision is True
        assert EnrollmentRecord(enrolled=True).can_provision is False
        assert EnrollmentRecord(enrolled=True, wiped=True).can_provision is True


class TestDeviceAction:
    def test_mapping(self):
        assert DeviceAction.for_state(LockState.LOCKED) is DeviceAction.LOCK_DEVICE
        assert DeviceAction.UNLOCK_DEVICE.lock_state == LockState.UNLOCKED
