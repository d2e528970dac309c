"""
Check Lifecycle Module

Creation of checks and their status state machine:

    issued ──> canceled   (terminal, reason required)
           └─> rejected   (terminal, reason optional)

There is no way back to ``issued`` and no move between the two terminal
states. Cancelling requires a reason while rejecting does not; this
asymmetry is a business rule of check handling, not an oversight.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from typing import Any, Dict, List, Optional, Union

from .storage import StorageInterface, DuplicateKeyError
from .audit import AuditSink, AuditAction, notify
from .allocator import ReferenceAllocator
from .capacity import CapacityGuard
from .errors import ValidationError, NotFoundError, ConflictError, StateError
from .models import Check, CheckStatus, CHECKS_TABLE
from .logging_config import get_logger, log_action


MAX_REFERENCE_LENGTH = 100

logger = get_logger("checkbook.checks")


def normalize_reference(reference: Optional[str]) -> str:
    return (reference or "").strip().upper()


def _parse_amount(amount: Union[Decimal, int, float, str]) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a decimal number", {"amount": str(amount)})
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than zero", {"amount": str(amount)})
    return value


def _parse_date(value: Union[date, str, None]) -> date:
    if value is None:
        return datetime.now(timezone.utc).date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("Date must be an ISO date (YYYY-MM-DD)", {"date": str(value)})


def _parse_status(status: Union[CheckStatus, str]) -> CheckStatus:
    if isinstance(status, CheckStatus):
        return status
    try:
        return CheckStatus(str(status).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown status {status!r}; expected one of "
            f"{', '.join(s.value for s in CheckStatus)}",
            {"status": str(status)}
        )


def public_fields(check: Check) -> Dict[str, Any]:
    """Fields of a check reported to the audit sink"""
    return {
        "reference": check.reference,
        "checkbook_id": check.checkbook_id,
        "amount": str(check.amount),
        "payee": check.payee,
        "city": check.city,
        "date": check.check_date.isoformat(),
        "status": check.status.value
    }


class CheckLifecycle:
    """
    Creates checks against checkbooks and applies status transitions
    """

    def __init__(
        self,
        storage: StorageInterface,
        allocator: ReferenceAllocator,
        guard: CapacityGuard,
        audit_sink: AuditSink
    ):
        self.storage = storage
        self.allocator = allocator
        self.guard = guard
        self.audit_sink = audit_sink

    def create(
        self,
        reference: str,
        amount: Union[Decimal, int, str],
        payee: str,
        city: str = "",
        check_date: Union[date, str, None] = None,
        user_id: Optional[str] = None,
        checkbook_id: Optional[str] = None
    ) -> Check:
        """
        Create a check in status issued

        With a checkbook, one slot is reserved and the reference must fall
        inside the checkbook range; reservation, validation and insert share
        one transaction, so any failure leaves the counter untouched.

        Args:
            reference: Check reference (normalized to upper case)
            amount: Positive amount
            payee: Beneficiary name
            city: Issue city
            check_date: Business date of the check (today if omitted)
            user_id: Issuing user
            checkbook_id: Optional checkbook the reference is taken from

        Returns:
            Created Check

        Raises:
            ValidationError: Malformed input or reference outside the range
            NotFoundError: Checkbook does not exist
            CapacityError: Checkbook is full
            ConflictError: Reference already exists
        """
        reference = normalize_reference(reference)
        amount = _parse_amount(amount)
        payee = (payee or "").strip()
        if not payee:
            raise ValidationError("Payee must not be blank")
        check_date = _parse_date(check_date)

        if not checkbook_id:
            if not reference:
                raise ValidationError("Reference must not be blank")
            if len(reference) > MAX_REFERENCE_LENGTH:
                raise ValidationError(
                    f"Reference must be at most {MAX_REFERENCE_LENGTH} characters",
                    {"reference": reference}
                )

        def insert_check() -> Check:
            with self.storage.atomic():
                if checkbook_id:
                    checkbook = self.guard.reserve_slot(checkbook_id)
                    self.allocator.validate_reference(reference, checkbook)

                now = datetime.now(timezone.utc)
                check = Check(
                    id=reference,
                    created_at=now,
                    updated_at=now,
                    user_id=user_id,
                    amount=amount,
                    payee=payee,
                    city=(city or "").strip(),
                    check_date=check_date,
                    checkbook_id=checkbook_id or None
                )
                try:
                    self.storage.insert(CHECKS_TABLE, check.id, check.to_dict())
                except DuplicateKeyError:
                    raise ConflictError(
                        f"Check reference {reference} already exists",
                        {"reference": reference}
                    )
                return check

        try:
            check = self.guard.with_retries(insert_check, resource=checkbook_id or reference)
        except (ValidationError, ConflictError, StateError, NotFoundError) as e:
            log_action(logger, "warning", f"Check creation refused: {e.message}",
                       user_id=user_id, action="PRINT_CHECK", resource=reference)
            raise

        log_action(logger, "info", f"Check {reference} issued",
                   user_id=user_id, action="PRINT_CHECK", resource=reference,
                   extra={"checkbook_id": check.checkbook_id, "amount": str(amount)})
        notify(self.audit_sink, user_id, AuditAction.PRINT_CHECK, "check", reference, public_fields(check))
        return check

    def transition(
        self,
        reference: str,
        new_status: Union[CheckStatus, str],
        reason: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> Check:
        """
        Move a check to a new status

        Moving to the current status is a no-op and is not audited.

        Raises:
            NotFoundError: Check does not exist
            ValidationError: Unknown status, or cancellation without reason
            StateError: Return to issued, or move between terminal states
        """
        reference = normalize_reference(reference)

        with self.storage.atomic():
            data = self.storage.load_for_update(CHECKS_TABLE, reference)
            if not data:
                raise NotFoundError("check", reference)
            check = Check.from_dict(data)
            target = _parse_status(new_status)

            if target == check.status:
                return check

            if target == CheckStatus.ISSUED:
                log_action(logger, "warning", "Refused return to issued",
                           user_id=user_id, action="UPDATE_CHECK_STATUS", resource=reference)
                raise StateError(
                    f"Check {reference} is {check.status.value} and cannot return to issued",
                    {"reference": reference, "status": check.status.value}
                )
            if check.status.is_terminal:
                log_action(logger, "warning", "Refused move between terminal states",
                           user_id=user_id, action="UPDATE_CHECK_STATUS", resource=reference)
                raise StateError(
                    f"Check {reference} is {check.status.value} and cannot become {target.value}",
                    {"reference": reference, "status": check.status.value, "new_status": target.value}
                )

            reason = (reason or "").strip()
            if target == CheckStatus.CANCELED and not reason:
                raise ValidationError(
                    "A reason is required to cancel a check",
                    {"reference": reference}
                )

            old_status = check.status
            check.status = target
            check.reason = reason if target == CheckStatus.CANCELED else None
            check.updated_at = datetime.now(timezone.utc)
            self.storage.save(CHECKS_TABLE, check.id, check.to_dict())

        log_action(logger, "info", f"Check {reference} {old_status.value} -> {target.value}",
                   user_id=user_id, action="UPDATE_CHECK_STATUS", resource=reference)
        notify(self.audit_sink, user_id, AuditAction.UPDATE_CHECK_STATUS, "check", reference, {
            "old_status": old_status.value,
            "new_status": target.value,
            "reason": check.reason,
            "amount": str(check.amount),
            "payee": check.payee
        })
        return check

    def get(self, reference: str) -> Optional[Check]:
        """Get check by reference"""
        data = self.storage.load(CHECKS_TABLE, normalize_reference(reference))
        if data:
            return Check.from_dict(data)
        return None

    def reference_exists(self, reference: str) -> bool:
        return self.storage.exists(CHECKS_TABLE, normalize_reference(reference))

    def list(self, user_id: Optional[str] = None) -> List[Check]:
        """List checks, newest first, optionally for one issuing user"""
        filters = {"user_id": user_id} if user_id else {}
        checks = [Check.from_dict(d) for d in self.storage.find(CHECKS_TABLE, filters)]
        checks.sort(key=lambda c: c.created_at, reverse=True)
        return checks
