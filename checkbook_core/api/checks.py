"""
Check endpoints: issuing, status changes, statistics
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import CheckSystem, get_check_system, get_actor_id, get_user_region, http_error
from .schemas import CreateCheckRequest, UpdateStatusRequest, LogExportRequest, CheckModel
from ..errors import CheckbookError
from ..models import Region


router = APIRouter()


def _stringify_amounts(stats: dict) -> dict:
    result = dict(stats)
    result["total_amount"] = str(result["total_amount"])
    if "amount_by_user" in result:
        result["amount_by_user"] = {k: str(v) for k, v in result["amount_by_user"].items()}
    return result


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CheckModel)
def create_check(
    request: CreateCheckRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Issue a check, reserving a slot of its checkbook"""
    try:
        check = system.checks.create(
            reference=request.reference,
            amount=request.amount,
            payee=request.payee,
            city=request.city,
            check_date=request.check_date,
            user_id=actor_id,
            checkbook_id=request.checkbook_id
        )
    except CheckbookError as e:
        raise http_error(e)
    return CheckModel.from_check(check)


@router.get("")
def list_checks(
    user_id: Optional[str] = None,
    system: CheckSystem = Depends(get_check_system),
    region: Optional[Region] = Depends(get_user_region)
):
    """List checks, newest first; regional callers only see their cities"""
    checks = system.checks.list(user_id=user_id)
    if region is not None:
        checks = system.region_view.filter_checks(checks, region)
    return {"checks": [CheckModel.from_check(c) for c in checks]}


@router.get("/check-reference")
def check_reference(reference: str, system: CheckSystem = Depends(get_check_system)):
    """Tell whether a reference is already used"""
    return {"reference": reference.strip().upper(), "exists": system.checks.reference_exists(reference)}


@router.get("/stats")
def get_stats(
    system: CheckSystem = Depends(get_check_system),
    region: Optional[Region] = Depends(get_user_region)
):
    """Statistics, scoped to the caller's region when there is one"""
    if region is not None:
        return _stringify_amounts(system.region_view.stats(region))
    return _stringify_amounts(system.reporting.stats())


@router.post("/log-export")
def log_export(
    request: LogExportRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Record a history export in the audit trail"""
    try:
        system.reporting.log_export(actor_id, request.format, request.record_count, request.date_range)
    except CheckbookError as e:
        raise http_error(e)
    return {"message": "Export logged successfully"}


@router.get("/{reference}", response_model=CheckModel)
def get_check(reference: str, system: CheckSystem = Depends(get_check_system)):
    """Get check details"""
    check = system.checks.get(reference)
    if not check:
        raise HTTPException(status_code=404, detail="Check not found")
    return CheckModel.from_check(check)


@router.patch("/{reference}/status", response_model=CheckModel)
def update_check_status(
    reference: str,
    request: UpdateStatusRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Cancel or reject an issued check"""
    try:
        check = system.checks.transition(reference, request.status, request.reason, user_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return CheckModel.from_check(check)
