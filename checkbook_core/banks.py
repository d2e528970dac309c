"""
Bank Registry Module

Banks own checkbooks. Bank codes are unique; deleting a bank cascades to its
unused checkbooks and is refused while any of them is in use unless forced.
"""

from datetime import datetime, timezone
from typing import List, Optional
import uuid

from .storage import StorageInterface, DuplicateKeyError
from .audit import AuditSink, AuditAction, notify
from .checkbooks import CheckbookRegistry
from .errors import ValidationError, NotFoundError, ConflictError, StateError
from .models import Bank, BANKS_TABLE, BANK_CODES_TABLE
from .logging_config import get_logger, log_action


logger = get_logger("checkbook.banks")


def _require_text(name: str, value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} must not be blank", {name: value})
    return value


class BankRegistry:
    """
    Manages banks and the delete cascade to their checkbooks
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_sink: AuditSink,
        checkbooks: CheckbookRegistry
    ):
        self.storage = storage
        self.audit_sink = audit_sink
        self.checkbooks = checkbooks

    def _reserve_code(self, code: str, bank_id: str) -> None:
        try:
            self.storage.insert(BANK_CODES_TABLE, code, {"bank_id": bank_id})
        except DuplicateKeyError:
            raise ConflictError(f"Bank code {code} already exists", {"code": code})

    def create(self, code: str, name: str, actor_id: Optional[str] = None) -> Bank:
        """
        Create a new bank

        Args:
            code: Bank code, unique and stored upper-cased
            name: Display name
            actor_id: User performing the operation

        Returns:
            Created Bank
        """
        code = _require_text("code", code).upper()
        name = _require_text("name", name)

        now = datetime.now(timezone.utc)
        bank = Bank(id=str(uuid.uuid4()), created_at=now, updated_at=now, code=code, name=name)

        with self.storage.atomic():
            self._reserve_code(code, bank.id)
            self.storage.insert(BANKS_TABLE, bank.id, bank.to_dict())

        log_action(logger, "info", f"Bank {code} created",
                   user_id=actor_id, action="CREATE_BANK", resource=bank.id)
        notify(self.audit_sink, actor_id, AuditAction.CREATE_BANK, "bank", bank.id,
               {"code": code, "name": name})
        return bank

    def get(self, bank_id: str) -> Optional[Bank]:
        """Get bank by ID"""
        data = self.storage.load(BANKS_TABLE, bank_id)
        if data:
            return Bank.from_dict(data)
        return None

    def get_by_code(self, code: str) -> Optional[Bank]:
        """Get bank by its code"""
        banks = self.storage.find(BANKS_TABLE, {"code": (code or "").strip().upper()})
        if banks:
            return Bank.from_dict(banks[0])
        return None

    def list(self) -> List[Bank]:
        """List banks ordered by name"""
        banks = [Bank.from_dict(d) for d in self.storage.load_all(BANKS_TABLE)]
        banks.sort(key=lambda b: b.name.casefold())
        return banks

    def update(
        self,
        bank_id: str,
        code: Optional[str] = None,
        name: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> Bank:
        """Update code and/or name of a bank"""
        with self.storage.atomic():
            data = self.storage.load_for_update(BANKS_TABLE, bank_id)
            if not data:
                raise NotFoundError("bank", bank_id)
            bank = Bank.from_dict(data)
            old_values = {"code": bank.code, "name": bank.name}

            if code is not None:
                new_code = _require_text("code", code).upper()
                if new_code != bank.code:
                    self._reserve_code(new_code, bank.id)
                    self.storage.delete(BANK_CODES_TABLE, bank.code)
                    bank.code = new_code
            if name is not None:
                bank.name = _require_text("name", name)

            bank.updated_at = datetime.now(timezone.utc)
            self.storage.save(BANKS_TABLE, bank.id, bank.to_dict())

        log_action(logger, "info", f"Bank {bank.code} updated",
                   user_id=actor_id, action="UPDATE_BANK", resource=bank.id)
        notify(self.audit_sink, actor_id, AuditAction.UPDATE_BANK, "bank", bank.id, {
            "old_values": old_values,
            "new_values": {"code": bank.code, "name": bank.name}
        })
        return bank

    def delete(self, bank_id: str, force: bool = False, actor_id: Optional[str] = None) -> None:
        """
        Delete a bank together with its checkbooks

        Args:
            bank_id: Bank to delete
            force: Also delete used checkbooks, detaching (never deleting)
                the checks that referenced them
            actor_id: User performing the operation

        Raises:
            NotFoundError: Bank does not exist
            StateError: A checkbook of the bank is in use and force is False
        """
        with self.storage.atomic():
            data = self.storage.load_for_update(BANKS_TABLE, bank_id)
            if not data:
                raise NotFoundError("bank", bank_id)
            bank = Bank.from_dict(data)

            checkbooks = self.checkbooks.lock_all(bank_id)
            used = [cb for cb in checkbooks if self.checkbooks.is_used(cb)]
            if used and not force:
                log_action(logger, "warning", "Refused deletion of a bank with used checkbooks",
                           user_id=actor_id, action="DELETE_BANK", resource=bank_id)
                raise StateError(
                    f"Bank {bank.code} has checkbooks with issued checks",
                    {"bank_id": bank_id, "used_checkbooks": [cb.id for cb in used]}
                )

            detached = 0
            for checkbook in checkbooks:
                detached += self.checkbooks.detach_checks(checkbook.id)
                self.checkbooks.remove(checkbook)

            self.storage.delete(BANK_CODES_TABLE, bank.code)
            self.storage.delete(BANKS_TABLE, bank.id)

        log_action(logger, "info", f"Bank {bank.code} deleted",
                   user_id=actor_id, action="DELETE_BANK", resource=bank_id,
                   extra={"checkbooks_deleted": len(checkbooks), "checks_detached": detached})
        notify(self.audit_sink, actor_id, AuditAction.DELETE_BANK, "bank", bank_id, {
            "code": bank.code,
            "name": bank.name,
            "force": force,
            "checkbooks_deleted": [cb.id for cb in checkbooks],
            "checks_detached": detached
        })
