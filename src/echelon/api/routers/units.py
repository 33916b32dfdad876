from fastapi import APIRouter, Depends, Response

from echelon.api.deps import get_current_actor, get_hierarchy_service, require_auth
from echelon.api.schemas import UnitCreate, UnitUpdate
from echelon.domain.models import Actor
from echelon.services import HierarchyService

router = APIRouter(prefix="/units", tags=["units"])


@router.post("", status_code=201)
def create_unit(
    body: UnitCreate,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.create_unit(actor, body.name, body.unit_level, body.parent_id)


@router.get("/referral/{code}")
def unit_by_referral(
    code: str,
    service: HierarchyService = Depends(get_hierarchy_service),
    _auth=Depends(require_auth),
):
    unit = service.unit_by_referral_code(code)
    # Registration only needs enough to confirm the unit.
    return {"id": unit.id, "name": unit.name, "unit_level": unit.unit_level}


@router.get("/{unit_id}")
def get_unit(
    unit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.get_unit(actor, unit_id)


@router.patch("/{unit_id}")
def update_unit(
    unit_id: int,
    body: UnitUpdate,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    changes = body.model_dump(exclude_unset=True)
    return service.update_unit(actor, unit_id, **changes)


@router.delete("/{unit_id}", status_code=204)
def delete_unit(
    unit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    service.delete_unit(actor, unit_id)
    return Response(status_code=204)
