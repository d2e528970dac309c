"""
Reporting Module

Organisation-wide statistics over checks and the audit record of history
exports. Totals only count checks that are still issued; canceled and
rejected checks appear in the per-status counts only.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from .storage import StorageInterface
from .audit import AuditSink, AuditAction, notify
from .errors import ValidationError
from .models import Check, CheckStatus, BANKS_TABLE, CHECKBOOKS_TABLE, CHECKS_TABLE
from .logging_config import get_logger, log_action


UNKNOWN_BANK = "Unknown"
UNKNOWN_USER = "unknown"

logger = get_logger("checkbook.reporting")


class CheckReporting:
    """Statistics and export bookkeeping"""

    def __init__(self, storage: StorageInterface, audit_sink: AuditSink):
        self.storage = storage
        self.audit_sink = audit_sink

    def _bank_names_by_checkbook(self) -> Dict[str, str]:
        banks = {d["id"]: d["name"] for d in self.storage.load_all(BANKS_TABLE)}
        return {
            d["id"]: banks.get(d["bank_id"], UNKNOWN_BANK)
            for d in self.storage.load_all(CHECKBOOKS_TABLE)
        }

    def stats(self) -> Dict[str, Any]:
        """
        Compute organisation-wide statistics

        Returns:
            Dictionary with total_amount and total_checks over issued checks,
            issued_checks / canceled_checks / rejected_checks counts,
            checks_by_bank (issued checks per bank name) and amount_by_user
            (issued amount per user id)
        """
        checks = [Check.from_dict(d) for d in self.storage.load_all(CHECKS_TABLE)]
        issued = [c for c in checks if c.status == CheckStatus.ISSUED]
        bank_names = self._bank_names_by_checkbook()

        checks_by_bank: Dict[str, int] = {}
        amount_by_user: Dict[str, Decimal] = {}
        for check in issued:
            bank = bank_names.get(check.checkbook_id, UNKNOWN_BANK) if check.checkbook_id else UNKNOWN_BANK
            checks_by_bank[bank] = checks_by_bank.get(bank, 0) + 1
            user = check.user_id or UNKNOWN_USER
            amount_by_user[user] = amount_by_user.get(user, Decimal("0")) + check.amount

        return {
            "total_amount": sum((c.amount for c in issued), Decimal("0")),
            "total_checks": len(issued),
            "issued_checks": len(issued),
            "canceled_checks": sum(1 for c in checks if c.status == CheckStatus.CANCELED),
            "rejected_checks": sum(1 for c in checks if c.status == CheckStatus.REJECTED),
            "checks_by_bank": checks_by_bank,
            "amount_by_user": amount_by_user
        }

    def log_export(
        self,
        user_id: Optional[str],
        export_format: str,
        record_count: int,
        date_range: Optional[str] = None
    ) -> None:
        """Record that a user exported the check history"""
        export_format = (export_format or "").strip().lower()
        if not export_format:
            raise ValidationError("Export format must not be blank")
        if record_count < 0:
            raise ValidationError("Record count must not be negative", {"record_count": record_count})

        log_action(logger, "info", f"History exported as {export_format}",
                   user_id=user_id, action="EXPORT_HISTORY",
                   extra={"record_count": record_count, "date_range": date_range})
        notify(self.audit_sink, user_id, AuditAction.EXPORT_HISTORY, "export", None, {
            "format": export_format,
            "record_count": record_count,
            "date_range": date_range or "all"
        })
