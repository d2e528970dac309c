"""
Tests for organisation-wide statistics and export logging
"""

import pytest
from decimal import Decimal

from checkbook_core.storage import InMemoryStorage
from checkbook_core.audit import AuditTrail, AuditAction
from checkbook_core.banks import BankRegistry
from checkbook_core.checkbooks import CheckbookRegistry
from checkbook_core.allocator import ReferenceAllocator
from checkbook_core.capacity import CapacityGuard
from checkbook_core.checks import CheckLifecycle
from checkbook_core.reporting import CheckReporting
from checkbook_core.errors import ValidationError


class TestCheckReporting:
    """Statistics over checks"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.checkbooks = CheckbookRegistry(self.storage, self.audit)
        self.banks = BankRegistry(self.storage, self.audit, self.checkbooks)
        self.lifecycle = CheckLifecycle(
            self.storage, ReferenceAllocator(self.storage), CapacityGuard(self.storage), self.audit
        )
        self.reporting = CheckReporting(self.storage, self.audit)

        bna = self.banks.create("BNA", "Banque Nationale")
        cpa = self.banks.create("CPA", "Credit Populaire")
        self.bna_book = self.checkbooks.create(bna.id, "AA", 0, 99)
        self.cpa_book = self.checkbooks.create(cpa.id, "BB", 0, 99)

    def test_empty_stats(self):
        stats = self.reporting.stats()

        assert stats["total_amount"] == Decimal("0")
        assert stats["total_checks"] == 0
        assert stats["checks_by_bank"] == {}
        assert stats["amount_by_user"] == {}

    def test_stats_count_issued_only(self):
        self.lifecycle.create("AA0000000", "100", "P", user_id="u1", checkbook_id=self.bna_book.id)
        self.lifecycle.create("AA0000001", "50.25", "P", user_id="u2", checkbook_id=self.bna_book.id)
        self.lifecycle.create("BB0000000", "30", "P", user_id="u1", checkbook_id=self.cpa_book.id)
        self.lifecycle.create("BB0000001", "1000", "P", user_id="u1", checkbook_id=self.cpa_book.id)
        self.lifecycle.create("LOOSE-1", "5", "P", user_id="u3")
        self.lifecycle.transition("BB0000001", "canceled", "duplicate")
        self.lifecycle.transition("AA0000001", "rejected")

        stats = self.reporting.stats()

        assert stats["total_amount"] == Decimal("135")
        assert stats["total_checks"] == 3
        assert stats["issued_checks"] == 3
        assert stats["canceled_checks"] == 1
        assert stats["rejected_checks"] == 1
        assert stats["checks_by_bank"] == {
            "Banque Nationale": 1,
            "Credit Populaire": 1,
            "Unknown": 1
        }
        assert stats["amount_by_user"] == {"u1": Decimal("130"), "u3": Decimal("5")}

    def test_log_export_records_audit_event(self):
        self.reporting.log_export("u1", "CSV", 42, "2024-01-01..2024-01-31")

        events = self.audit.get_events_by_action(AuditAction.EXPORT_HISTORY)
        assert len(events) == 1
        assert events[0].actor_id == "u1"
        assert events[0].details == {
            "format": "csv",
            "record_count": 42,
            "date_range": "2024-01-01..2024-01-31"
        }

    def test_log_export_defaults_date_range(self):
        self.reporting.log_export("u1", "pdf", 0)
        assert self.audit.get_events_by_action(AuditAction.EXPORT_HISTORY)[0].details["date_range"] == "all"

    def test_log_export_validation(self):
        with pytest.raises(ValidationError):
            self.reporting.log_export("u1", " ", 3)
        with pytest.raises(ValidationError):
            self.reporting.log_export("u1", "csv", -1)
