from fastapi import APIRouter, Depends

from echelon.api.deps import get_current_actor, get_hierarchy_service, get_roster_service, require_auth
from echelon.domain.models import Actor
from echelon.services import HierarchyService, RosterService

router = APIRouter(prefix="/hierarchy", tags=["hierarchy"])


@router.get("/constants")
def constants(
    service: HierarchyService = Depends(get_hierarchy_service),
    _auth=Depends(require_auth),
):
    return service.hierarchy_constants()


@router.get("/accessible-units")
def accessible_units(
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.get_accessible_units(actor)


@router.get("/accessible-users")
def accessible_users(
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.get_accessible_users(actor)


@router.get("/rollup")
def rollup(
    actor: Actor = Depends(get_current_actor),
    roster: RosterService = Depends(get_roster_service),
):
    return roster.rollup(actor)


@router.get("/units/{unit_id}/subordinates")
def subordinates(
    unit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.get_subordinate_units(actor, unit_id)


@router.get("/units/{unit_id}/members")
def members(
    unit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.get_users_in_unit(actor, unit_id)


@router.get("/units/{unit_id}/leader")
def leader(
    unit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return {"unit_id": unit_id, "leader": service.get_unit_leader(actor, unit_id)}


@router.get("/users/{user_id}/access")
def user_access(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.access_summary(actor, user_id)


@router.get("/users/{user_id}/chain-of-command")
def chain_of_command(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.chain_of_command(actor, user_id)
