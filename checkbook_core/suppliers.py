"""
Supplier Directory Module

Suppliers are the payees checks are written to. Names are unique ignoring
case; renaming a supplier rewrites the payee of the checks that carried the
old name.
"""

from datetime import datetime, timezone
from typing import List, Optional
import uuid

from .storage import StorageInterface, DuplicateKeyError
from .audit import AuditSink, AuditAction, notify
from .errors import ValidationError, NotFoundError, ConflictError
from .models import Supplier, CHECKS_TABLE, SUPPLIERS_TABLE, SUPPLIER_NAMES_TABLE
from .logging_config import get_logger, log_action


logger = get_logger("checkbook.suppliers")

CONTACT_FIELDS = ("email", "phone", "address")


def _require_name(name: Optional[str]) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationError("Supplier name must not be blank", {"name": name})
    return value


def _name_key(name: str) -> str:
    return name.strip().lower()


def _optional(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class SupplierRegistry:
    """
    Manages the supplier directory
    """

    def __init__(self, storage: StorageInterface, audit_sink: AuditSink):
        self.storage = storage
        self.audit_sink = audit_sink

    def _reserve_name(self, name: str, supplier_id: str) -> None:
        try:
            self.storage.insert(SUPPLIER_NAMES_TABLE, _name_key(name), {"supplier_id": supplier_id})
        except DuplicateKeyError:
            raise ConflictError(f"Supplier {name} already exists", {"name": name})

    def name_exists(self, name: Optional[str], except_id: Optional[str] = None) -> bool:
        """True if another supplier already uses the name, ignoring case"""
        if not (name or "").strip():
            return False
        data = self.storage.load(SUPPLIER_NAMES_TABLE, _name_key(name))
        return data is not None and data["supplier_id"] != except_id

    def create(
        self,
        name: str,
        company_type: str = "",
        email: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        actor_id: Optional[str] = None
    ) -> Supplier:
        """
        Create a supplier

        Raises:
            ValidationError: Blank name
            ConflictError: Name already used by another supplier
        """
        name = _require_name(name)
        now = datetime.now(timezone.utc)
        supplier = Supplier(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            company_type=(company_type or "").strip(),
            email=_optional(email),
            phone=_optional(phone),
            address=_optional(address)
        )

        with self.storage.atomic():
            self._reserve_name(name, supplier.id)
            self.storage.insert(SUPPLIERS_TABLE, supplier.id, supplier.to_dict())

        log_action(logger, "info", f"Supplier {name} created",
                   user_id=actor_id, action="CREATE_SUPPLIER", resource=supplier.id)
        notify(self.audit_sink, actor_id, AuditAction.CREATE_SUPPLIER, "supplier", supplier.id,
               {"name": name})
        return supplier

    def get(self, supplier_id: str) -> Optional[Supplier]:
        data = self.storage.load(SUPPLIERS_TABLE, supplier_id)
        if data:
            return Supplier.from_dict(data)
        return None

    def list(self) -> List[Supplier]:
        """List suppliers ordered by name"""
        suppliers = [Supplier.from_dict(d) for d in self.storage.load_all(SUPPLIERS_TABLE)]
        suppliers.sort(key=lambda s: s.name.casefold())
        return suppliers

    def update(
        self,
        supplier_id: str,
        name: Optional[str] = None,
        company_type: Optional[str] = None,
        actor_id: Optional[str] = None,
        **contact: Optional[str]
    ) -> Supplier:
        """
        Update a supplier

        Contact fields (email, phone, address) passed as keyword arguments are
        replaced; a blank value clears them. A rename rewrites the payee of
        every check written to the old name in the same transaction.
        """
        unknown = set(contact) - set(CONTACT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown supplier fields: {', '.join(sorted(unknown))}")

        with self.storage.atomic():
            data = self.storage.load_for_update(SUPPLIERS_TABLE, supplier_id)
            if not data:
                raise NotFoundError("supplier", supplier_id)
            supplier = Supplier.from_dict(data)
            old_name = supplier.name
            checks_renamed = 0

            if name is not None:
                new_name = _require_name(name)
                if _name_key(new_name) != _name_key(old_name):
                    self._reserve_name(new_name, supplier.id)
                    self.storage.delete(SUPPLIER_NAMES_TABLE, _name_key(old_name))
                supplier.name = new_name
                if new_name != old_name:
                    checks_renamed = self._rename_payee(old_name, new_name)
            if company_type is not None:
                supplier.company_type = company_type.strip()
            for field_name, value in contact.items():
                setattr(supplier, field_name, _optional(value))

            supplier.updated_at = datetime.now(timezone.utc)
            self.storage.save(SUPPLIERS_TABLE, supplier.id, supplier.to_dict())

        log_action(logger, "info", f"Supplier {supplier.name} updated",
                   user_id=actor_id, action="UPDATE_SUPPLIER", resource=supplier.id,
                   extra={"checks_renamed": checks_renamed})
        notify(self.audit_sink, actor_id, AuditAction.UPDATE_SUPPLIER, "supplier", supplier.id, {
            "old_name": old_name,
            "new_name": supplier.name,
            "checks_renamed": checks_renamed
        })
        return supplier

    def _rename_payee(self, old_name: str, new_name: str) -> int:
        renamed = 0
        for found in self.storage.find(CHECKS_TABLE, {"payee": old_name}):
            data = self.storage.load_for_update(CHECKS_TABLE, found["id"])
            if not data or data["payee"] != old_name:
                continue
            data["payee"] = new_name
            data["updated_at"] = datetime.now(timezone.utc).isoformat()
            self.storage.save(CHECKS_TABLE, data["id"], data)
            renamed += 1
        return renamed

    def delete(self, supplier_id: str, actor_id: Optional[str] = None) -> None:
        """Delete a supplier; checks keep the payee text they were printed with"""
        with self.storage.atomic():
            data = self.storage.load_for_update(SUPPLIERS_TABLE, supplier_id)
            if not data:
                raise NotFoundError("supplier", supplier_id)
            supplier = Supplier.from_dict(data)
            self.storage.delete(SUPPLIERS_TABLE, supplier_id)
            self.storage.delete(SUPPLIER_NAMES_TABLE, _name_key(supplier.name))

        log_action(logger, "info", f"Supplier {supplier.name} deleted",
                   user_id=actor_id, action="DELETE_SUPPLIER", resource=supplier_id)
        notify(self.audit_sink, actor_id, AuditAction.DELETE_SUPPLIER, "supplier", supplier_id,
               {"name": supplier.name})
