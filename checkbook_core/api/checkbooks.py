"""
Checkbook management endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import CheckSystem, get_check_system, get_actor_id, http_error
from .schemas import CreateCheckbookRequest, UpdateCheckbookRequest, CheckbookModel
from ..errors import CheckbookError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CheckbookModel)
def create_checkbook(
    request: CreateCheckbookRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Register a new checkbook range"""
    try:
        checkbook = system.checkbooks.create(
            bank_id=request.bank_id,
            serie=request.serie,
            start_number=request.start_number,
            end_number=request.end_number,
            agency_name=request.agency_name,
            agency_code=request.agency_code,
            actor_id=actor_id
        )
    except CheckbookError as e:
        raise http_error(e)
    return CheckbookModel.from_checkbook(checkbook)


@router.get("")
def list_checkbooks(
    bank_id: Optional[str] = None,
    system: CheckSystem = Depends(get_check_system)
):
    """List checkbooks, newest first"""
    return {"checkbooks": [CheckbookModel.from_checkbook(c) for c in system.checkbooks.list(bank_id)]}


@router.get("/{checkbook_id}", response_model=CheckbookModel)
def get_checkbook(checkbook_id: str, system: CheckSystem = Depends(get_check_system)):
    """Get checkbook details"""
    checkbook = system.checkbooks.get(checkbook_id)
    if not checkbook:
        raise HTTPException(status_code=404, detail="Checkbook not found")
    return CheckbookModel.from_checkbook(checkbook)


@router.get("/{checkbook_id}/next-reference")
def get_next_reference(checkbook_id: str, system: CheckSystem = Depends(get_check_system)):
    """Suggest the next free reference (advisory)"""
    try:
        reference = system.allocator.suggest_next(checkbook_id)
    except CheckbookError as e:
        raise http_error(e)
    return {"checkbook_id": checkbook_id, "reference": reference}


@router.get("/{checkbook_id}/counter")
def inspect_counter(checkbook_id: str, system: CheckSystem = Depends(get_check_system)):
    """Compare the issued counter with the checks referencing the checkbook"""
    try:
        report = system.capacity_guard.inspect_counter(checkbook_id)
    except CheckbookError as e:
        raise http_error(e)
    return {
        "checkbook_id": report.checkbook_id,
        "capacity": report.capacity,
        "issued_count": report.issued_count,
        "referenced_checks": report.referenced_checks,
        "drift": report.drift
    }


@router.put("/{checkbook_id}", response_model=CheckbookModel)
def update_checkbook(
    checkbook_id: str,
    request: UpdateCheckbookRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Update agency fields of an unused checkbook"""
    try:
        checkbook = system.checkbooks.update(
            checkbook_id,
            agency_name=request.agency_name,
            agency_code=request.agency_code,
            actor_id=actor_id
        )
    except CheckbookError as e:
        raise http_error(e)
    return CheckbookModel.from_checkbook(checkbook)


@router.delete("/{checkbook_id}")
def delete_checkbook(
    checkbook_id: str,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Delete an unused checkbook"""
    try:
        system.checkbooks.delete(checkbook_id, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return {"message": "Checkbook deleted successfully"}
