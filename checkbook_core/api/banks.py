"""
Bank management endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import CheckSystem, get_check_system, get_actor_id, http_error
from .schemas import CreateBankRequest, UpdateBankRequest, BankModel
from ..errors import CheckbookError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=BankModel)
def create_bank(
    request: CreateBankRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Create a new bank"""
    try:
        bank = system.banks.create(request.code, request.name, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return BankModel.from_bank(bank)


@router.get("")
def list_banks(system: CheckSystem = Depends(get_check_system)):
    """List banks"""
    return {"banks": [BankModel.from_bank(b) for b in system.banks.list()]}


@router.get("/{bank_id}", response_model=BankModel)
def get_bank(bank_id: str, system: CheckSystem = Depends(get_check_system)):
    """Get bank details"""
    bank = system.banks.get(bank_id)
    if not bank:
        raise HTTPException(status_code=404, detail="Bank not found")
    return BankModel.from_bank(bank)


@router.put("/{bank_id}", response_model=BankModel)
def update_bank(
    bank_id: str,
    request: UpdateBankRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Update bank code or name"""
    try:
        bank = system.banks.update(bank_id, code=request.code, name=request.name, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return BankModel.from_bank(bank)


@router.delete("/{bank_id}")
def delete_bank(
    bank_id: str,
    force: bool = False,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Delete a bank and its unused checkbooks"""
    try:
        system.banks.delete(bank_id, force=force, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return {"message": "Bank deleted successfully"}
