"""
Region management endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import CheckSystem, get_check_system, get_actor_id, http_error
from .schemas import CreateRegionRequest, UpdateRegionRequest, RegionModel
from ..errors import CheckbookError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RegionModel)
def create_region(
    request: CreateRegionRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Create a region"""
    try:
        region = system.regions.create(request.name, request.cities, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return RegionModel.from_region(region)


@router.get("")
def list_regions(system: CheckSystem = Depends(get_check_system)):
    """List regions"""
    return {"regions": [RegionModel.from_region(r) for r in system.regions.list()]}


@router.get("/{region_id}", response_model=RegionModel)
def get_region(region_id: str, system: CheckSystem = Depends(get_check_system)):
    region = system.regions.get(region_id)
    if not region:
        raise HTTPException(status_code=404, detail="Region not found")
    return RegionModel.from_region(region)


@router.put("/{region_id}", response_model=RegionModel)
def update_region(
    region_id: str,
    request: UpdateRegionRequest,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Rename a region or replace its cities"""
    try:
        region = system.regions.update(region_id, name=request.name, cities=request.cities, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return RegionModel.from_region(region)


@router.delete("/{region_id}")
def delete_region(
    region_id: str,
    system: CheckSystem = Depends(get_check_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    try:
        system.regions.delete(region_id, actor_id=actor_id)
    except CheckbookError as e:
        raise http_error(e)
    return {"message": "Region deleted successfully"}
