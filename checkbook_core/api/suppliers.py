"""
Supplier directory endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import CheckSystem, get_check_system, get_actor_id, http_error
from .schemas import CreateSupplierRequest, UpdateSupplierRequest, SupplierModel
from ..errors import CheckbookError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=SupplierModel)
def create_supplier(
    request: CreateSupplierRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Create a supplier"""
    try:
        supplier = system.suppliers.create(
            request.name,
            company_type=request.company_type,
            email=request.email,
            phone=request.phone,
            address=request.address,
            actor_id=actor_id
        )
    except CheckbookError as e:
        raise http_error(e)
    return SupplierModel.from_supplier(supplier)


@router.get("")
def list_suppliers(system: CheckSystem = Depends(get_check_system)):
    """List suppliers ordered by name"""
    return {"suppliers": [SupplierModel.from_supplier(s) for s in system.suppliers.list()]}


@router.get("/name-exists")
def supplier_name_exists(
    name: str,
    except_id: Optional[str] = None,
    system: CheckSystem = Depends(get_check_system)
):
    """Check whether a supplier name is taken, ignoring case"""
    return {"name": name.strip(), "exists": system.suppliers.name_exists(name, except_id=except_id)}


@router.get("/{supplier_id}", response_model=SupplierModel)
def get_supplier(supplier_id: str, system: CheckSystem = Depends(get_check_system)):
    """Get supplier details"""
    supplier = system.suppliers.get(supplier_id)
    if not supplier:
        raise HTTPException(status_code=404, detail="Supplier not found")
    return SupplierModel.from_supplier(supplier)


@router.put("/{supplier_id}", response_model=SupplierModel)
def update_supplier(
    supplier_id: str,
    request: UpdateSupplierRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Update a supplier; a rename also renames the payee on its checks"""
    contact = request.model_dump(include={"email", "phone", "address"}, exclude_unset=True)
    try:
        supplier = system.suppliers.update(
            supplier_id,
            name=request.name,
            company_type=request.company_type,
            actor_id=actor_id,
            **contact
        )
    except CheckbookError as e:
        raise http_error(e)
    return SupplierModel.from_supplier(supplier)


@router.delete("/{supplier_id}")
def delete_supplier(
    supplier_id: str,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Delete a supplier"""
    try:
        system.suppliers.delete(supplier_id, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return {"message": "Supplier deleted successfully"}
