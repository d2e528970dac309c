"""
Checkbook Registry Module

Creation, validation and deletion of numbered check ranges per bank. A
checkbook is mutable (agency fields only) and deletable while nothing has
been issued from it; the first issued check freezes it for good.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from .storage import StorageInterface, DuplicateKeyError
from .audit import AuditSink, AuditAction, notify
from .errors import ValidationError, NotFoundError, ConflictError, StateError
from .models import (
    Checkbook, BANKS_TABLE, CHECKBOOKS_TABLE, CHECKBOOK_RANGES_TABLE, CHECKS_TABLE
)
from .logging_config import get_logger, log_action


SERIE_LENGTH = 2
MIN_NUMBER = 0
MAX_NUMBER = 9_999_999

logger = get_logger("checkbook.checkbooks")


def normalize_serie(serie: Optional[str]) -> str:
    """Upper-case a serie and check it is exactly two characters"""
    value = (serie or "").strip()
    # upper() can change the length ("ß" becomes "SS")
    if len(value) != SERIE_LENGTH or len(value.upper()) != SERIE_LENGTH:
        raise ValidationError(
            f"Serie must be exactly {SERIE_LENGTH} characters",
            {"serie": serie}
        )
    return value.upper()


def _validate_bounds(start_number: int, end_number: int) -> None:
    for name, value in (("start_number", start_number), ("end_number", end_number)):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{name} must be an integer", {name: value})
        if value < MIN_NUMBER or value > MAX_NUMBER:
            raise ValidationError(
                f"{name} must be between {MIN_NUMBER} and {MAX_NUMBER}",
                {name: value}
            )
    if end_number < start_number:
        raise ValidationError(
            "end_number must be greater than or equal to start_number",
            {"start_number": start_number, "end_number": end_number}
        )


class CheckbookRegistry:
    """
    Manages checkbook ranges and their immutability once used
    """

    def __init__(self, storage: StorageInterface, audit_sink: AuditSink):
        self.storage = storage
        self.audit_sink = audit_sink

    def create(
        self,
        bank_id: str,
        serie: str,
        start_number: int,
        end_number: int,
        agency_name: str = "",
        agency_code: str = "",
        actor_id: Optional[str] = None
    ) -> Checkbook:
        """
        Create a new checkbook range

        Args:
            bank_id: Owning bank
            serie: Two character prefix of every reference in the range
            start_number: First number of the range (inclusive)
            end_number: Last number of the range (inclusive)
            agency_name: Issuing agency name
            agency_code: Issuing agency code
            actor_id: User performing the operation

        Returns:
            Created Checkbook with issued_count 0

        Raises:
            ValidationError: Malformed serie or bounds
            NotFoundError: Bank does not exist
            ConflictError: (bank, serie, start_number) already registered
        """
        serie = normalize_serie(serie)
        _validate_bounds(start_number, end_number)

        now = datetime.now(timezone.utc)
        checkbook = Checkbook(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            bank_id=bank_id,
            serie=serie,
            start_number=start_number,
            end_number=end_number,
            capacity=end_number - start_number + 1,
            agency_name=(agency_name or "").strip(),
            agency_code=(agency_code or "").strip()
        )

        with self.storage.atomic():
            if self.storage.load_for_update(BANKS_TABLE, bank_id) is None:
                raise NotFoundError("bank", bank_id)
            try:
                self.storage.insert(CHECKBOOK_RANGES_TABLE, checkbook.range_key, {
                    "checkbook_id": checkbook.id
                })
            except DuplicateKeyError:
                log_action(
                    logger, "warning", "Duplicate checkbook range refused",
                    user_id=actor_id, action="CREATE_CHECKBOOK",
                    resource=checkbook.range_key
                )
                raise ConflictError(
                    f"A checkbook with serie {serie} starting at {start_number} "
                    f"already exists for this bank",
                    {"bank_id": bank_id, "serie": serie, "start_number": start_number}
                )
            self.storage.insert(CHECKBOOKS_TABLE, checkbook.id, checkbook.to_dict())

        log_action(
            logger, "info", f"Checkbook {serie} {start_number}-{end_number} created",
            user_id=actor_id, action="CREATE_CHECKBOOK", resource=checkbook.id
        )
        notify(self.audit_sink, actor_id, AuditAction.CREATE_CHECKBOOK, "checkbook", checkbook.id, {
            "bank_id": bank_id,
            "serie": serie,
            "start_number": start_number,
            "end_number": end_number,
            "capacity": checkbook.capacity
        })
        return checkbook

    def get(self, checkbook_id: str) -> Optional[Checkbook]:
        """Get checkbook by ID"""
        data = self.storage.load(CHECKBOOKS_TABLE, checkbook_id)
        if data:
            return Checkbook.from_dict(data)
        return None

    def lock(self, checkbook_id: str) -> Checkbook:
        """
        Load a checkbook with its row locked for the current transaction

        Slot reservations on other connections wait until the transaction
        ends, so ``issued_count`` cannot change between the read and a
        write of the whole record.
        """
        data = self.storage.load_for_update(CHECKBOOKS_TABLE, checkbook_id)
        if not data:
            raise NotFoundError("checkbook", checkbook_id)
        return Checkbook.from_dict(data)

    def lock_all(self, bank_id: str) -> List[Checkbook]:
        """Lock every checkbook of a bank; checkbooks deleted meanwhile are skipped"""
        locked = []
        for checkbook in self.list(bank_id):
            data = self.storage.load_for_update(CHECKBOOKS_TABLE, checkbook.id)
            if data:
                locked.append(Checkbook.from_dict(data))
        return locked

    def list(self, bank_id: Optional[str] = None) -> List[Checkbook]:
        """List checkbooks, newest first"""
        filters = {"bank_id": bank_id} if bank_id else {}
        checkbooks = [Checkbook.from_dict(d) for d in self.storage.find(CHECKBOOKS_TABLE, filters)]
        checkbooks.sort(key=lambda c: c.created_at, reverse=True)
        return checkbooks

    def has_checks(self, checkbook_id: str) -> bool:
        """True if any check row references the checkbook"""
        return bool(self.storage.find(CHECKS_TABLE, {"checkbook_id": checkbook_id}))

    def is_used(self, checkbook: Checkbook) -> bool:
        return checkbook.is_used or self.has_checks(checkbook.id)

    def update(
        self,
        checkbook_id: str,
        agency_name: Optional[str] = None,
        agency_code: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> Checkbook:
        """
        Update agency fields of an unused checkbook

        Range, serie and bank are never patchable.
        """
        with self.storage.atomic():
            checkbook = self.lock(checkbook_id)
            if checkbook.is_used:
                log_action(
                    logger, "warning", "Refused update of a used checkbook",
                    user_id=actor_id, action="UPDATE_CHECKBOOK", resource=checkbook_id
                )
                raise StateError(
                    "Checkbook already has issued checks and cannot be modified",
                    {"checkbook_id": checkbook_id, "issued_count": checkbook.issued_count}
                )

            old_values = {"agency_name": checkbook.agency_name, "agency_code": checkbook.agency_code}
            if agency_name is not None:
                checkbook.agency_name = agency_name.strip()
            if agency_code is not None:
                checkbook.agency_code = agency_code.strip()
            checkbook.updated_at = datetime.now(timezone.utc)
            self.storage.save(CHECKBOOKS_TABLE, checkbook.id, checkbook.to_dict())

        new_values = {"agency_name": checkbook.agency_name, "agency_code": checkbook.agency_code}
        log_action(
            logger, "info", "Checkbook updated",
            user_id=actor_id, action="UPDATE_CHECKBOOK", resource=checkbook.id
        )
        notify(self.audit_sink, actor_id, AuditAction.UPDATE_CHECKBOOK, "checkbook", checkbook.id, {
            "old_values": old_values,
            "new_values": new_values
        })
        return checkbook

    def delete(self, checkbook_id: str, actor_id: Optional[str] = None) -> None:
        """
        Delete an unused checkbook and release its range

        Raises:
            NotFoundError: Checkbook does not exist
            StateError: Checks were issued from it or still reference it
        """
        with self.storage.atomic():
            checkbook = self.lock(checkbook_id)
            if self.is_used(checkbook):
                log_action(
                    logger, "warning", "Refused deletion of a used checkbook",
                    user_id=actor_id, action="DELETE_CHECKBOOK", resource=checkbook_id
                )
                raise StateError(
                    "Checkbook has issued checks and cannot be deleted",
                    {"checkbook_id": checkbook_id, "issued_count": checkbook.issued_count}
                )
            self.remove(checkbook)

        log_action(
            logger, "info", "Checkbook deleted",
            user_id=actor_id, action="DELETE_CHECKBOOK", resource=checkbook_id
        )
        notify(self.audit_sink, actor_id, AuditAction.DELETE_CHECKBOOK, "checkbook", checkbook_id,
               self._describe(checkbook))

    def remove(self, checkbook: Checkbook) -> None:
        """Delete the row and its range key; the caller owns the transaction and the checks"""
        self.storage.delete(CHECKBOOKS_TABLE, checkbook.id)
        self.storage.delete(CHECKBOOK_RANGES_TABLE, checkbook.range_key)

    def detach_checks(self, checkbook_id: str) -> int:
        """Clear checkbook_id on every check of the checkbook; returns how many"""
        detached = 0
        for found in self.storage.find(CHECKS_TABLE, {"checkbook_id": checkbook_id}):
            data = self.storage.load_for_update(CHECKS_TABLE, found["id"])
            if not data:
                continue
            data["checkbook_id"] = None
            data["updated_at"] = datetime.now(timezone.utc).isoformat()
            self.storage.save(CHECKS_TABLE, data["id"], data)
            detached += 1
        return detached

    @staticmethod
    def _describe(checkbook: Checkbook) -> Dict[str, Any]:
        return {
            "bank_id": checkbook.bank_id,
            "serie": checkbook.serie,
            "start_number": checkbook.start_number,
            "end_number": checkbook.end_number,
            "issued_count": checkbook.issued_count
        }
