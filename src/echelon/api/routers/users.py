from fastapi import APIRouter, Depends

from echelon.api.deps import get_current_actor, get_hierarchy_service, require_auth
from echelon.api.schemas import ProfileUpdate, UserRegistration
from echelon.domain.models import Actor
from echelon.services import HierarchyService

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", status_code=201)
def register_user(
    body: UserRegistration,
    service: HierarchyService = Depends(get_hierarchy_service),
    _auth=Depends(require_auth),
):
    return service.register_user(**body.model_dump())


@router.get("/me")
def whoami(
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return {
        "actor": actor,
        "assignments": service.list_assignments(actor, actor.id),
    }


@router.get("/{user_id}")
def get_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.get_user(actor, user_id)


@router.patch("/{user_id}")
def update_profile(
    user_id: int,
    body: ProfileUpdate,
    actor: Actor = Depends(get_current_actor),
    service: HierarchyService = Depends(get_hierarchy_service),
):
    return service.update_profile(actor, user_id, **body.model_dump(exclude_unset=True))
