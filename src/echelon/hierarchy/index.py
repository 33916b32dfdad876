from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable, Optional

from echelon.config import HierarchySettings, settings
from echelon.domain.models import (
    Actor,
    AssignmentType,
    MilitaryRole,
    Unit,
    UnitAssignment,
    User,
    role_authority,
)
from echelon.hierarchy.tree import UnitTree

logger = logging.getLogger(__name__)


class HierarchyIndex:
    """
    Derived lookups over one consistent snapshot of units, users and active
    assignments: accessible unit/user sets, unit membership and leader
    resolution.

    The snapshot is immutable, so per-actor results are memoized.
    """

    def __init__(
        self,
        tree: UnitTree,
        users: Iterable[User],
        assignments: Iterable[UnitAssignment],
        hierarchy: Optional[HierarchySettings] = None,
    ):
        self.tree = tree
        self.config = hierarchy or settings.hierarchy
        self._users: dict[int, User] = {u.id: u for u in users if not u.is_deleted}
        self._assignments: dict[int, list[UnitAssignment]] = defaultdict(list)
        for assignment in assignments:
            if assignment.is_active and assignment.user_id in self._users:
                self._assignments[assignment.user_id].append(assignment)
        self._primary: dict[int, Optional[int]] = {
            uid: self._resolve_primary(uid) for uid in self._users
        }
        self._accessible_cache: dict[int, frozenset[int]] = {}

    # ----- directory lookups -------------------------------------------------
    def user(self, user_id: Optional[int]) -> Optional[User]:
        return self._users.get(user_id) if user_id is not None else None

    def all_users(self) -> list[User]:
        return [self._users[uid] for uid in sorted(self._users)]

    def active_assignments(self, user_id: int) -> list[UnitAssignment]:
        """
        Active assignments of a user. A user without assignment records gets a
        synthesized PRIMARY (id=None) at the legacy unit_id.
        """
        records = self._assignments.get(user_id)
        if records:
            return sorted(records, key=lambda a: (a.id is None, a.id or 0))
        user = self._users.get(user_id)
        if user is None or user.unit_id is None:
            return []
        return [UnitAssignment(id=None, user_id=user_id, unit_id=user.unit_id, assignment_type=AssignmentType.PRIMARY)]

    def has_assignment_records(self, user_id: int) -> bool:
        return bool(self._assignments.get(user_id))

    def primary_unit_id(self, user_id: Optional[int]) -> Optional[int]:
        if user_id is None:
            return None
        return self._primary.get(user_id)

    def _resolve_primary(self, user_id: int) -> Optional[int]:
        primaries = [a for a in self._assignments.get(user_id, []) if a.is_primary]
        if primaries:
            unit_id = min(primaries, key=lambda a: a.id or 0).unit_id
        else:
            unit_id = self._users[user_id].unit_id
        if unit_id is None or unit_id not in self.tree:
            return None
        return unit_id

    def is_admin(self, actor: Actor) -> bool:
        user = self.user(actor.id)
        return bool(
            self.config.admin_override_enabled
            and user is not None
            and user.role == MilitaryRole.ADMIN.value
        )

    # ----- accessibility -----------------------------------------------------
    def compute_accessible_units(self, actor: Actor) -> list[Unit]:
        """
        Primary unit plus its whole subtree. Unknown, unauthenticated or
        unit-less actors get an empty list, never all units.
        """
        if not actor.is_authenticated or self.user(actor.id) is None:
            return []
        if self.is_admin(actor):
            logger.info("admin override: granting access to all units", extra={"actor_id": actor.id})
            return self.tree.all_units()
        primary_id = self.primary_unit_id(actor.id)
        if primary_id is None:
            return []
        return [self.tree.get_unit(primary_id)] + self.tree.get_descendant_subtree(primary_id)

    def accessible_unit_ids(self, actor: Actor) -> frozenset[int]:
        if actor.id is None:
            return frozenset()
        cached = self._accessible_cache.get(actor.id)
        if cached is None:
            cached = frozenset(u.id for u in self.compute_accessible_units(actor))
            self._accessible_cache[actor.id] = cached
        return cached

    def compute_accessible_users(self, actor: Actor, accessible_units: Optional[Iterable[Unit]] = None) -> list[User]:
        acting = self.user(actor.id)
        if acting is None:
            return []
        if accessible_units is None:
            unit_ids = self.accessible_unit_ids(actor)
        else:
            unit_ids = frozenset(u.id for u in accessible_units)

        result = []
        for user in self.all_users():
            if user.id == acting.id or self._primary.get(user.id) in unit_ids:
                result.append(user)
                continue
            if any(a.unit_id in unit_ids for a in self._assignments.get(user.id, [])):
                result.append(user)
        return result

    # ----- unit lookups ------------------------------------------------------
    def get_subordinate_units(self, unit_id: int) -> list[Unit]:
        return self.tree.get_children(unit_id)

    def get_users_in_unit(self, unit_id: int) -> list[User]:
        self.tree.get_unit(unit_id)
        return [u for u in self.all_users() if self._primary.get(u.id) == unit_id]

    def get_unit_leader(self, unit_id: int) -> Optional[User]:
        """Highest command role among primary members; ties go to the lowest user id."""
        members = self.get_users_in_unit(unit_id)
        if not members:
            return None
        return min(members, key=lambda u: (-role_authority(u.role), u.id))

    def leadership_unit_ids(self, user_id: int) -> set[int]:
        return {
            a.unit_id
            for a in self._assignments.get(user_id, [])
            if a.leadership_role and a.unit_id in self.tree
        }
