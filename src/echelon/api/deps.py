from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException

from echelon.config import settings
from echelon.data.repositories import HierarchyRepository
from echelon.data.storage import Database
from echelon.domain.models import Actor
from echelon.services import HierarchyService, RosterService

# Global/Cached instances
_db_instance: Optional[Database] = None


def get_db() -> Database:
    global _db_instance
    if _db_instance is None:
        _db_instance = Database(settings.paths.db_path)
    return _db_instance


def get_hierarchy_service() -> Generator[HierarchyService, None, None]:
    repo = HierarchyRepository(db=get_db())
    yield HierarchyService(repository=repo)


def get_roster_service(
    service: HierarchyService = Depends(get_hierarchy_service),
) -> Generator[RosterService, None, None]:
    yield RosterService(hierarchy=service)


def require_auth(
    authorization: Optional[str] = Header(None),
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
):
    token = settings.security.api_token
    if not token:
        return

    if authorization == f"Bearer {token}" or authorization == f"Token {token}" or x_api_key == token:
        return

    raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})


def get_current_actor(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    _auth=Depends(require_auth),
    service: HierarchyService = Depends(get_hierarchy_service),
) -> Actor:
    """
    The upstream auth layer forwards the authenticated user id.
    Unknown or malformed ids are treated as unauthenticated.
    """
    if not x_user_id or not x_user_id.strip().isdigit():
        raise HTTPException(status_code=401, detail="Missing authentication")
    actor = service.resolve_actor(int(x_user_id.strip()))
    if actor is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return actor
