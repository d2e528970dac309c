"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from ..models import Bank, Checkbook, Check, Region, Supplier


# Bank schemas
class CreateBankRequest(BaseModel):
    code: str
    name: str


class UpdateBankRequest(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None


class BankModel(BaseModel):
    id: str
    code: str
    name: str
    created_at: str

    @classmethod
    def from_bank(cls, bank: Bank) -> 'BankModel':
        return cls(id=bank.id, code=bank.code, name=bank.name, created_at=bank.created_at.isoformat())


# Checkbook schemas
class CreateCheckbookRequest(BaseModel):
    bank_id: str
    serie: str = Field(..., description="Two character serie")
    start_number: int = Field(..., description="First number of the range (0-9999999)")
    end_number: int = Field(..., description="Last number of the range (0-9999999)")
    agency_name: str = ""
    agency_code: str = ""


class UpdateCheckbookRequest(BaseModel):
    agency_name: Optional[str] = None
    agency_code: Optional[str] = None


class CheckbookModel(BaseModel):
    id: str
    bank_id: str
    serie: str
    start_number: int
    end_number: int
    capacity: int
    issued_count: int
    remaining: int
    agency_name: str
    agency_code: str
    created_at: str

    @classmethod
    def from_checkbook(cls, checkbook: Checkbook) -> 'CheckbookModel':
        return cls(
            id=checkbook.id,
            bank_id=checkbook.bank_id,
            serie=checkbook.serie,
            start_number=checkbook.start_number,
            end_number=checkbook.end_number,
            capacity=checkbook.capacity,
            issued_count=checkbook.issued_count,
            remaining=checkbook.remaining,
            agency_name=checkbook.agency_name,
            agency_code=checkbook.agency_code,
            created_at=checkbook.created_at.isoformat()
        )


# Check schemas
class CreateCheckRequest(BaseModel):
    reference: str
    checkbook_id: Optional[str] = None
    amount: str = Field(..., description="Decimal amount as string")
    payee: str
    city: str = ""
    check_date: Optional[date] = Field(None, description="Business date (defaults to today)")


class UpdateStatusRequest(BaseModel):
    status: str = Field(..., description="New status (issued, canceled, rejected)")
    reason: Optional[str] = Field(None, description="Required when canceling")


class LogExportRequest(BaseModel):
    format: str = Field(..., description="Export format (csv, xlsx, pdf...)")
    record_count: int = Field(..., ge=0)
    date_range: Optional[str] = None


class CheckModel(BaseModel):
    reference: str
    checkbook_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: str
    payee: str
    city: str
    check_date: str
    status: str
    reason: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_check(cls, check: Check) -> 'CheckModel':
        return cls(
            reference=check.reference,
            checkbook_id=check.checkbook_id,
            user_id=check.user_id,
            amount=str(check.amount),
            payee=check.payee,
            city=check.city,
            check_date=check.check_date.isoformat(),
            status=check.status.value,
            reason=check.reason,
            created_at=check.created_at.isoformat(),
            updated_at=check.updated_at.isoformat()
        )


# Region schemas
class CreateRegionRequest(BaseModel):
    name: str
    cities: List[str] = Field(default_factory=list)


class UpdateRegionRequest(BaseModel):
    name: Optional[str] = None
    cities: Optional[List[str]] = None


class RegionModel(BaseModel):
    id: str
    name: str
    cities: List[str]
    created_at: str

    @classmethod
    def from_region(cls, region: Region) -> 'RegionModel':
        return cls(id=region.id, name=region.name, cities=list(region.cities),
                   created_at=region.created_at.isoformat())


# Supplier schemas
class CreateSupplierRequest(BaseModel):
    name: str
    company_type: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class UpdateSupplierRequest(BaseModel):
    name: Optional[str] = None
    company_type: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class SupplierModel(BaseModel):
    id: str
    name: str
    company_type: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: str

    @classmethod
    def from_supplier(cls, supplier: Supplier) -> 'SupplierModel':
        return cls(
            id=supplier.id,
            name=supplier.name,
            company_type=supplier.company_type,
            email=supplier.email,
            phone=supplier.phone,
            address=supplier.address,
            created_at=supplier.created_at.isoformat()
        )
