from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, TypeVar

from echelon.domain.models import Actor, MilitaryRole, role_authority
from echelon.exceptions import AccessDenied, IntegrityFault
from echelon.hierarchy.index import HierarchyIndex

logger = logging.getLogger(__name__)

R = TypeVar("R")


class AccessEvaluator:
    """
    Yes/no authorization decisions over a HierarchyIndex snapshot.
    Pure: no writes, and every unknown id or integrity fault evaluates to deny.
    """

    def __init__(self, index: HierarchyIndex):
        self.index = index

    def _accessible_ids(self, actor: Actor) -> frozenset[int]:
        try:
            return self.index.accessible_unit_ids(actor)
        except IntegrityFault:
            # Already logged by the tree; deny rather than fail open.
            return frozenset()

    def can_access_unit(self, actor: Actor, unit_id: Optional[int]) -> bool:
        if unit_id is None or unit_id not in self.index.tree:
            return False
        return unit_id in self._accessible_ids(actor)

    def can_access_user(self, actor: Actor, user_id: Optional[int]) -> bool:
        if self.index.user(user_id) is None or self.index.user(actor.id) is None:
            return False
        if user_id == actor.id:
            return True
        unit_ids = self._accessible_ids(actor)
        if not unit_ids:
            return False
        if self.index.primary_unit_id(user_id) in unit_ids:
            return True
        return any(a.unit_id in unit_ids for a in self.index.active_assignments(user_id))

    def filter_to_accessible(self, actor: Actor, records: Iterable[R], unit_id_of: Callable[[R], Optional[int]]) -> list[R]:
        unit_ids = self._accessible_ids(actor)
        if not unit_ids:
            return []
        return [record for record in records if unit_id_of(record) in unit_ids]

    def can_manage_unit(self, actor: Actor, unit_id: Optional[int]) -> bool:
        """
        Structural rights (create subunits, reparent, reassign members).

        Requires read access, plus a leadership position somewhere on the path
        from unit_id up to the actor's primary unit: either a command role
        (anything above Soldier) held at the primary unit, or an active
        assignment carrying a leadership role on that path. With
        manage_requires_leadership disabled, manage rights equal read rights.
        """
        if not self.can_access_unit(actor, unit_id):
            return False
        if self.index.is_admin(actor) or not self.index.config.manage_requires_leadership:
            return True

        user = self.index.user(actor.id)
        primary_id = self.index.primary_unit_id(actor.id)
        try:
            chain = self.index.tree.get_ancestor_chain(unit_id)
        except IntegrityFault:
            return False
        path: set[int] = set()
        for unit in chain:
            path.add(unit.id)
            if unit.id == primary_id:
                break

        if primary_id in path and role_authority(user.role) > role_authority(MilitaryRole.SOLDIER.value):
            return True
        return bool(self.index.leadership_unit_ids(user.id) & path)

    # ----- raising variants for callers that prefer exceptions -------------
    def require_unit_access(self, actor: Actor, unit_id: Optional[int]) -> None:
        if not self.can_access_unit(actor, unit_id):
            self.deny(actor, "read_unit", unit_id=unit_id)

    def require_user_access(self, actor: Actor, user_id: Optional[int]) -> None:
        if not self.can_access_user(actor, user_id):
            self.deny(actor, "read_user", user_id=user_id)

    def require_manage(self, actor: Actor, unit_id: Optional[int]) -> None:
        if not self.can_manage_unit(actor, unit_id):
            self.deny(actor, "manage_unit", unit_id=unit_id)

    @staticmethod
    def deny(actor: Actor, action: str, **target) -> None:
        logger.info("access denied", extra={"actor_id": actor.id, "action": action, **target})
        raise AccessDenied(f"{action} denied", actor_id=actor.id, action=action, **target)
