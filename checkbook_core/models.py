"""
Domain Records Module

Persisted records of the checkbook engine: banks, checkbooks (numbered
ranges), checks, regions and suppliers, plus the names of the tables they
live in.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum

from .storage import StorageRecord


BANKS_TABLE = "banks"
BANK_CODES_TABLE = "bank_codes"
CHECKBOOKS_TABLE = "checkbooks"
CHECKBOOK_RANGES_TABLE = "checkbook_ranges"
CHECKS_TABLE = "checks"
REGIONS_TABLE = "regions"
REGION_NAMES_TABLE = "region_names"
SUPPLIERS_TABLE = "suppliers"
SUPPLIER_NAMES_TABLE = "supplier_names"


class CheckStatus(Enum):
    """Check lifecycle states"""
    ISSUED = "issued"        # Initial state
    CANCELED = "canceled"    # Terminal, requires a reason
    REJECTED = "rejected"    # Terminal

    @property
    def is_terminal(self) -> bool:
        return self != CheckStatus.ISSUED


def _parse_datetimes(data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    for key in ('created_at', 'updated_at'):
        if isinstance(data.get(key), str):
            data[key] = datetime.fromisoformat(data[key])
    return data


@dataclass
class Bank(StorageRecord):
    """Bank owning checkbooks"""
    code: str
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Bank':
        return cls(**_parse_datetimes(data))


@dataclass
class Checkbook(StorageRecord):
    """
    Pre-printed numeric range of check references for one bank

    ``capacity`` is stored next to ``issued_count`` so the storage layer can
    compare both fields in a single conditional update.
    """
    bank_id: str
    serie: str
    start_number: int
    end_number: int
    capacity: int
    issued_count: int = 0
    agency_name: str = ""
    agency_code: str = ""

    @property
    def remaining(self) -> int:
        return self.capacity - self.issued_count

    @property
    def is_used(self) -> bool:
        return self.issued_count > 0

    @property
    def range_key(self) -> str:
        """Natural key (bank, serie, start) reserved in the ranges table"""
        return f"{self.bank_id}:{self.serie}:{self.start_number}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkbook':
        data = _parse_datetimes(data)
        for key in ('start_number', 'end_number', 'capacity', 'issued_count'):
            data[key] = int(data[key])
        return cls(**data)


@dataclass
class Check(StorageRecord):
    """
    A single paper check

    The record id is the check reference, so the primary key guarantees
    at most one check per reference.
    """
    user_id: Optional[str]
    amount: Decimal
    payee: str
    city: str
    check_date: date
    status: CheckStatus = CheckStatus.ISSUED
    checkbook_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.id

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['reference'] = self.id
        result['status'] = self.status.value
        result['check_date'] = self.check_date.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Check':
        data = _parse_datetimes(data)
        data.pop('reference', None)
        data['amount'] = Decimal(str(data['amount']))
        data['status'] = CheckStatus(data['status'])
        if isinstance(data['check_date'], str):
            data['check_date'] = date.fromisoformat(data['check_date'])
        return cls(**data)


@dataclass
class Region(StorageRecord):
    """Named set of cities scoping a regional user's view"""
    name: str
    cities: List[str] = field(default_factory=list)

    def contains_city(self, city: Optional[str]) -> bool:
        if not city:
            return False
        wanted = city.strip().casefold()
        return any(c.strip().casefold() == wanted for c in self.cities)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Region':
        return cls(**_parse_datetimes(data))


@dataclass
class Supplier(StorageRecord):
    """Payee directory entry; the name doubles as the payee printed on checks"""
    name: str
    company_type: str = ""      # sarl, eurl, spa, ...
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Supplier':
        return cls(**_parse_datetimes(data))
