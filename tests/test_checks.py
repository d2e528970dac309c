"""
Tests for check creation and the status state machine
"""

import pytest
from decimal import Decimal
from datetime import date

from checkbook_core.storage import InMemoryStorage, SQLiteStorage
from checkbook_core.audit import AuditTrail, AuditAction, AuditSink
from checkbook_core.banks import BankRegistry
from checkbook_core.checkbooks import CheckbookRegistry
from checkbook_core.allocator import ReferenceAllocator
from checkbook_core.capacity import CapacityGuard
from checkbook_core.checks import CheckLifecycle
from checkbook_core.models import CheckStatus
from checkbook_core.errors import (
    ValidationError, NotFoundError, ConflictError, CapacityError, StateError
)


class BrokenSink(AuditSink):
    def record(self, actor_id, action, entity_type, entity_id, details=None):
        raise RuntimeError("sink unavailable")


def build(storage, sink=None):
    audit = sink or AuditTrail(storage)
    checkbooks = CheckbookRegistry(storage, audit)
    banks = BankRegistry(storage, audit, checkbooks)
    lifecycle = CheckLifecycle(storage, ReferenceAllocator(storage), CapacityGuard(storage), audit)
    bank = banks.create("BNA", "Banque Nationale")
    return audit, checkbooks, lifecycle, bank


class TestCheckCreation:
    """Creating checks with and without checkbooks"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit, self.checkbooks, self.lifecycle, self.bank = build(self.storage)
        self.checkbook = self.checkbooks.create(self.bank.id, "AA", 0, 19)

    def counter(self, checkbook=None):
        return self.checkbooks.get((checkbook or self.checkbook).id).issued_count

    def test_create_attached_check(self):
        check = self.lifecycle.create(
            " aa0000003 ", "1500.50", "Sonelgaz", "Alger",
            check_date=date(2024, 5, 2), user_id="u1", checkbook_id=self.checkbook.id
        )

        assert check.reference == "AA0000003"
        assert check.status == CheckStatus.ISSUED
        assert check.amount == Decimal("1500.50")
        assert check.check_date == date(2024, 5, 2)
        assert check.reason is None
        assert self.counter() == 1

        stored = self.lifecycle.get("aa0000003")
        assert stored.payee == "Sonelgaz"
        assert stored.checkbook_id == self.checkbook.id

        event = self.audit.get_events_for_entity("check", "AA0000003")[0]
        assert event.action == AuditAction.PRINT_CHECK
        assert event.actor_id == "u1"
        assert event.details["amount"] == "1500.50"
        assert event.details["status"] == "issued"

    def test_create_unattached_check(self):
        check = self.lifecycle.create("free-ref-1", Decimal("10"), "Payee", check_date="2024-01-31")

        assert check.reference == "FREE-REF-1"
        assert check.checkbook_id is None
        assert check.check_date == date(2024, 1, 31)

    def test_unattached_reference_rules(self):
        with pytest.raises(ValidationError):
            self.lifecycle.create("   ", Decimal("10"), "Payee")
        with pytest.raises(ValidationError):
            self.lifecycle.create("X" * 101, Decimal("10"), "Payee")
        assert self.lifecycle.create("X" * 100, Decimal("10"), "Payee").reference == "X" * 100

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "NaN", "Infinity"])
    def test_invalid_amount(self, amount):
        with pytest.raises(ValidationError):
            self.lifecycle.create("AA0000000", amount, "Payee", checkbook_id=self.checkbook.id)
        assert self.counter() == 0

    def test_blank_payee(self):
        with pytest.raises(ValidationError):
            self.lifecycle.create("AA0000000", "10", "  ", checkbook_id=self.checkbook.id)

    def test_invalid_date(self):
        with pytest.raises(ValidationError):
            self.lifecycle.create("AA0000000", "10", "Payee", check_date="31/01/2024",
                                  checkbook_id=self.checkbook.id)

    def test_out_of_range_reference_rolls_back_reservation(self):
        with pytest.raises(ValidationError):
            self.lifecycle.create("AA0000020", "10", "Payee", checkbook_id=self.checkbook.id)

        assert self.counter() == 0
        assert not self.lifecycle.reference_exists("AA0000020")

    def test_foreign_serie_rolls_back_reservation(self):
        with pytest.raises(ValidationError):
            self.lifecycle.create("AB0000001", "10", "Payee", checkbook_id=self.checkbook.id)
        assert self.counter() == 0

    def test_duplicate_reference_rolls_back_reservation(self):
        self.lifecycle.create("AA0000001", "10", "Payee", checkbook_id=self.checkbook.id)

        with pytest.raises(ConflictError):
            self.lifecycle.create("AA0000001", "20", "Other", checkbook_id=self.checkbook.id)

        assert self.counter() == 1
        assert self.lifecycle.get("AA0000001").payee == "Payee"

    def test_duplicate_across_checkbooks_and_unattached(self):
        self.lifecycle.create("AA0000001", "10", "Payee", checkbook_id=self.checkbook.id)
        with pytest.raises(ConflictError):
            self.lifecycle.create("AA0000001", "10", "Payee")

    def test_unknown_checkbook(self):
        with pytest.raises(NotFoundError):
            self.lifecycle.create("AA0000001", "10", "Payee", checkbook_id="missing")

    def test_full_checkbook(self):
        small = self.checkbooks.create(self.bank.id, "ZZ", 0, 1)
        self.lifecycle.create("ZZ0000000", "10", "Payee", checkbook_id=small.id)
        self.lifecycle.create("ZZ0000001", "10", "Payee", checkbook_id=small.id)

        with pytest.raises(CapacityError):
            self.lifecycle.create("ZZ0000001", "10", "Payee", checkbook_id=small.id)

        assert self.counter(small) == 2

    def test_capacity_checked_before_reference(self):
        small = self.checkbooks.create(self.bank.id, "ZZ", 0, 0)
        self.lifecycle.create("ZZ0000000", "10", "Payee", checkbook_id=small.id)

        with pytest.raises(CapacityError):
            self.lifecycle.create("bad", "10", "Payee", checkbook_id=small.id)

    def test_failing_audit_sink_does_not_undo_creation(self):
        storage = InMemoryStorage()
        _, checkbooks, lifecycle, bank = build(storage, sink=BrokenSink())
        checkbook = checkbooks.create(bank.id, "AA", 0, 9)

        check = lifecycle.create("AA0000000", "10", "Payee", checkbook_id=checkbook.id)

        assert lifecycle.get(check.reference) is not None
        assert checkbooks.get(checkbook.id).issued_count == 1

    def test_list_and_exists(self):
        self.lifecycle.create("AA0000000", "10", "Payee", user_id="u1", checkbook_id=self.checkbook.id)
        self.lifecycle.create("AA0000001", "10", "Payee", user_id="u2", checkbook_id=self.checkbook.id)

        assert self.lifecycle.reference_exists("aa0000000")
        assert not self.lifecycle.reference_exists("AA0000002")
        assert [c.reference for c in self.lifecycle.list(user_id="u2")] == ["AA0000001"]
        assert len(self.lifecycle.list()) == 2


class TestCheckTransitions:
    """Status state machine"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit, self.checkbooks, self.lifecycle, self.bank = build(self.storage)
        checkbook = self.checkbooks.create(self.bank.id, "AA", 0, 19)
        self.check = self.lifecycle.create("AA0000000", "250.00", "Payee", "Alger",
                                           user_id="u1", checkbook_id=checkbook.id)

    def status_events(self):
        return self.audit.get_events_by_action(AuditAction.UPDATE_CHECK_STATUS)

    def test_cancel_with_reason(self):
        check = self.lifecycle.transition("AA0000000", "canceled", " duplicate ", user_id="u2")

        assert check.status == CheckStatus.CANCELED
        assert check.reason == "duplicate"
        event = self.status_events()[0]
        assert event.details == {
            "old_status": "issued",
            "new_status": "canceled",
            "reason": "duplicate",
            "amount": "250.00",
            "payee": "Payee"
        }
        assert event.actor_id == "u2"

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_cancel_requires_reason(self, reason):
        with pytest.raises(ValidationError):
            self.lifecycle.transition("AA0000000", "canceled", reason)
        assert self.lifecycle.get("AA0000000").status == CheckStatus.ISSUED

    def test_reject_without_reason(self):
        check = self.lifecycle.transition("AA0000000", CheckStatus.REJECTED)
        assert check.status == CheckStatus.REJECTED
        assert check.reason is None

    def test_reject_clears_reason(self):
        check = self.lifecycle.transition("AA0000000", "rejected", "bounced")
        assert check.reason is None

    @pytest.mark.parametrize("terminal", ["canceled", "rejected"])
    def test_no_return_to_issued(self, terminal):
        self.lifecycle.transition("AA0000000", terminal, "reason")

        with pytest.raises(StateError):
            self.lifecycle.transition("AA0000000", "issued")

        assert self.lifecycle.get("AA0000000").status.value == terminal

    def test_no_move_between_terminal_states(self):
        self.lifecycle.transition("AA0000000", "canceled", "duplicate")
        with pytest.raises(StateError):
            self.lifecycle.transition("AA0000000", "rejected")

    def test_rejected_cannot_be_canceled(self):
        self.lifecycle.transition("AA0000000", "rejected")
        with pytest.raises(StateError):
            self.lifecycle.transition("AA0000000", "canceled", "duplicate")

    def test_self_transition_is_silent_noop(self):
        self.lifecycle.transition("AA0000000", "canceled", "duplicate")
        before = len(self.status_events())

        check = self.lifecycle.transition("AA0000000", "canceled")

        assert check.status == CheckStatus.CANCELED
        assert check.reason == "duplicate"
        assert len(self.status_events()) == before

    def test_issued_to_issued_is_noop(self):
        assert self.lifecycle.transition("AA0000000", "issued").status == CheckStatus.ISSUED
        assert self.status_events() == []

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            self.lifecycle.transition("AA0000000", "emitted")

    def test_missing_check_reported_before_status(self):
        with pytest.raises(NotFoundError):
            self.lifecycle.transition("ZZ9999999", "bogus")

    def test_status_token_is_case_insensitive(self):
        assert self.lifecycle.transition("aa0000000", " REJECTED ").status == CheckStatus.REJECTED

    def test_transition_does_not_touch_counter(self):
        self.lifecycle.transition("AA0000000", "canceled", "void")
        checkbook = self.checkbooks.list()[0]
        assert checkbook.issued_count == 1


class TestCheckLifecycleOnSQLite:
    """Same rules on a persistent backend"""

    def setup_method(self):
        self.storage = SQLiteStorage()
        self.audit, self.checkbooks, self.lifecycle, self.bank = build(self.storage)

    def teardown_method(self):
        self.storage.close()

    def test_rollback_and_transitions(self):
        checkbook = self.checkbooks.create(self.bank.id, "AA", 0, 1)

        self.lifecycle.create("AA0000000", "10", "Payee", checkbook_id=checkbook.id)
        with pytest.raises(ValidationError):
            self.lifecycle.create("AA0000009", "10", "Payee", checkbook_id=checkbook.id)
        assert self.checkbooks.get(checkbook.id).issued_count == 1

        self.lifecycle.create("AA0000001", "10", "Payee", checkbook_id=checkbook.id)
        with pytest.raises(CapacityError):
            self.lifecycle.create("AA0000001", "10", "Payee", checkbook_id=checkbook.id)

        check = self.lifecycle.transition("AA0000001", "canceled", "printer jam")
        assert self.lifecycle.get("AA0000001").reason == "printer jam"
        assert check.status == CheckStatus.CANCELED
        assert self.audit.verify_integrity()["valid"]
