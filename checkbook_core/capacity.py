"""
Capacity Guard Module

Enforces ``issued_count <= capacity`` for every checkbook. A slot is reserved
with a single conditional increment in storage, so concurrent reservations
against the same checkbook can never exceed its capacity. There is no way to
release a slot: rolling back the enclosing transaction undoes the increment
together with the check insert.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .storage import StorageInterface, WriteConflictError
from .errors import NotFoundError, CapacityError, ConflictError
from .models import Checkbook, CHECKBOOKS_TABLE, CHECKS_TABLE
from .logging_config import get_logger, log_action


T = TypeVar("T")

logger = get_logger("checkbook.capacity")


@dataclass
class CounterReport:
    """Stored counter of a checkbook compared with the checks referencing it"""
    checkbook_id: str
    issued_count: int
    referenced_checks: int
    capacity: int

    @property
    def drift(self) -> int:
        return self.issued_count - self.referenced_checks

    @property
    def consistent(self) -> bool:
        return self.drift == 0


class CapacityGuard:
    """
    Atomic slot reservation for checkbooks
    """

    def __init__(
        self,
        storage: StorageInterface,
        max_retries: int = 3,
        retry_backoff_ms: int = 20
    ):
        self.storage = storage
        self.max_retries = max_retries
        self.retry_backoff_ms = retry_backoff_ms

    def with_retries(self, operation: Callable[[], T], resource: Optional[str] = None) -> T:
        """
        Run a unit of work, retrying it when storage reports a write conflict

        The whole operation is replayed, so it must open its own transaction.
        After ``max_retries`` failed retries the conflict surfaces as
        ConflictError.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except WriteConflictError as e:
                attempt += 1
                if attempt > self.max_retries:
                    log_action(logger, "warning", f"Write conflict persisted after {self.max_retries} retries",
                               action="RESERVE_SLOT", resource=resource)
                    raise ConflictError(
                        "Concurrent update could not be applied, please retry",
                        {"resource": resource, "attempts": attempt}
                    ) from e
                logger.debug(f"Write conflict on {resource}, retry {attempt}/{self.max_retries}: {e}")
                time.sleep(self.retry_backoff_ms * attempt / 1000.0)

    def reserve_slot(self, checkbook_id: str) -> Checkbook:
        """
        Consume one slot of a checkbook

        Inside an open transaction the reservation joins it and a write
        conflict propagates to the caller's retry loop; on its own the call
        retries by itself.

        Returns:
            The checkbook after the increment

        Raises:
            NotFoundError: Checkbook does not exist
            CapacityError: Checkbook is full
            ConflictError: Write conflicts exhausted the retries
        """
        if self.storage.in_transaction:
            return self._reserve(checkbook_id)
        return self.with_retries(lambda: self._reserve(checkbook_id), resource=checkbook_id)

    def _reserve(self, checkbook_id: str) -> Checkbook:
        data = self.storage.increment_if_below(CHECKBOOKS_TABLE, checkbook_id, "issued_count", "capacity")
        if data is not None:
            return Checkbook.from_dict(data)

        if not self.storage.exists(CHECKBOOKS_TABLE, checkbook_id):
            raise NotFoundError("checkbook", checkbook_id)
        log_action(logger, "warning", "Checkbook exhausted",
                   action="RESERVE_SLOT", resource=checkbook_id)
        raise CapacityError(checkbook_id)

    def inspect_counter(self, checkbook_id: str) -> CounterReport:
        """Compare the stored counter with the checks that reference the checkbook"""
        data = self.storage.load(CHECKBOOKS_TABLE, checkbook_id)
        if not data:
            raise NotFoundError("checkbook", checkbook_id)
        checkbook = Checkbook.from_dict(data)

        report = CounterReport(
            checkbook_id=checkbook.id,
            issued_count=checkbook.issued_count,
            referenced_checks=len(self.storage.find(CHECKS_TABLE, {"checkbook_id": checkbook.id})),
            capacity=checkbook.capacity
        )
        if not report.consistent:
            log_action(logger, "warning", f"Checkbook counter drift of {report.drift}",
                       action="INSPECT_COUNTER", resource=checkbook.id,
                       extra={"issued_count": report.issued_count,
                              "referenced_checks": report.referenced_checks})
        return report
