from typing import Optional

from fastapi import APIRouter, Depends, Query

from echelon.api.deps import get_current_actor, get_hierarchy_service
from echelon.api.schemas import AssignmentBatch, PrimaryUnitChange
from echelon.domain.models import Actor
from echelon.services import HierarchyService

router = APIRouter(prefix="/users/{user_id}", tags=["assignments"])


@router.get("/assignments")
def list_assignments(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.list_assignments(actor, user_id)


@router.post("/assignments")
def apply_assignment_changes(
    user_id: int,
    body: AssignmentBatch,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.apply_assignment_changes(actor, user_id, body.operations)


@router.delete("/assignments/{assignment_id}")
def remove_assignment(
    user_id: int,
    assignment_id: int,
    promote: Optional[int] = Query(None, description="Assignment id to promote to PRIMARY"),
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.remove_assignment(actor, user_id, assignment_id, promote_assignment_id=promote)


@router.put("/primary-unit")
def reassign_primary_unit(
    user_id: int,
    body: PrimaryUnitChange,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.reassign_primary_unit(actor, user_id, body.unit_id)
