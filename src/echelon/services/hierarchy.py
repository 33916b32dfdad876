from __future__ import annotations

import logging
import secrets
import string
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

from echelon.config import HierarchySettings, settings
from echelon.data.repositories import HierarchyRepository, HierarchySnapshot, StoreSession
from echelon.domain.models import (
    ROLE_AUTHORITY,
    Actor,
    AssignmentOperation,
    AssignmentType,
    CreateAssignmentOp,
    EndAssignmentOp,
    MilitaryRole,
    PromoteAssignmentOp,
    Unit,
    UnitAssignment,
    User,
    role_authority,
)
from echelon.domain.records import AARContentItem, ScopedAAR, ScopedEvent, aar_unit_id, event_unit_id
from echelon.exceptions import (
    AccessDenied,
    AssignmentNotFound,
    DataSourceError,
    InvalidUnitName,
    MutationRejected,
    NotFoundError,
    UserNotFound,
)
from echelon.hierarchy import AccessEvaluator, AssignmentPlan, HierarchyIndex, LevelOrder, MutationGuard, UnitTree

logger = logging.getLogger(__name__)

_UNSET: Any = object()
_REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class HierarchyView:
    """Index, evaluator and guard built over one snapshot."""
    index: HierarchyIndex
    access: AccessEvaluator
    guard: MutationGuard

    @property
    def tree(self) -> UnitTree:
        return self.index.tree


class HierarchyService:
    """
    Orchestrates repository reads/writes around the pure hierarchy engine.

    Every call loads its own snapshot, so there is no shared mutable state
    between requests. Mutations re-validate against a snapshot read inside
    the write transaction, which holds the database write lock.
    """

    def __init__(self, repository: HierarchyRepository, hierarchy: Optional[HierarchySettings] = None):
        self.repository = repository
        self.config = hierarchy or settings.hierarchy
        self.levels = LevelOrder.from_settings(self.config)

    # ----- snapshot plumbing -------------------------------------------------
    def build_view(self, snapshot: HierarchySnapshot) -> HierarchyView:
        tree = UnitTree(snapshot.units, levels=self.levels)
        index = HierarchyIndex(tree, snapshot.users, snapshot.assignments, hierarchy=self.config)
        return HierarchyView(index=index, access=AccessEvaluator(index), guard=MutationGuard(index))

    def view(self) -> HierarchyView:
        return self.build_view(self.repository.load_snapshot())

    @contextmanager
    def _writing(self) -> Iterator[tuple[StoreSession, HierarchyView]]:
        with self.repository.session(write=True) as store:
            yield store, self.build_view(store.load_snapshot())

    def resolve_actor(self, user_id: Optional[int]) -> Optional[Actor]:
        if user_id is None:
            return None
        with self.repository.session() as store:
            user = store.fetch_user(user_id)
        return Actor.from_user(user) if user else None

    # ----- predicates (fail closed) ------------------------------------------
    def can_access_unit(self, actor: Actor, unit_id: Optional[int]) -> bool:
        try:
            return self.view().access.can_access_unit(actor, unit_id)
        except DataSourceError:
            logger.warning("access check failed closed", extra={"actor_id": actor.id, "unit_id": unit_id})
            return False

    def can_access_user(self, actor: Actor, user_id: Optional[int]) -> bool:
        try:
            return self.view().access.can_access_user(actor, user_id)
        except DataSourceError:
            logger.warning("access check failed closed", extra={"actor_id": actor.id, "user_id": user_id})
            return False

    def can_manage_unit(self, actor: Actor, unit_id: Optional[int]) -> bool:
        try:
            return self.view().access.can_manage_unit(actor, unit_id)
        except DataSourceError:
            logger.warning("manage check failed closed", extra={"actor_id": actor.id, "unit_id": unit_id})
            return False

    # ----- reads -------------------------------------------------------------
    def get_accessible_units(self, actor: Actor) -> list[Unit]:
        return self.view().index.compute_accessible_units(actor)

    def get_accessible_users(self, actor: Actor) -> list[User]:
        return self.view().index.compute_accessible_users(actor)

    def get_unit(self, actor: Actor, unit_id: int) -> Unit:
        view = self.view()
        view.access.require_unit_access(actor, unit_id)
        return view.tree.get_unit(unit_id)

    def get_subordinate_units(self, actor: Actor, unit_id: int) -> list[Unit]:
        view = self.view()
        view.access.require_unit_access(actor, unit_id)
        return view.index.get_subordinate_units(unit_id)

    def get_users_in_unit(self, actor: Actor, unit_id: int) -> list[User]:
        view = self.view()
        view.access.require_unit_access(actor, unit_id)
        return view.index.get_users_in_unit(unit_id)

    def get_unit_leader(self, actor: Actor, unit_id: int) -> Optional[User]:
        view = self.view()
        view.access.require_unit_access(actor, unit_id)
        return view.index.get_unit_leader(unit_id)

    def access_summary(self, actor: Actor, user_id: int) -> dict:
        """What `user_id` can see, for an actor allowed to see that user."""
        view = self.view()
        view.access.require_user_access(actor, user_id)
        subject = Actor.from_user(view.index.user(user_id))
        units = view.index.compute_accessible_units(subject)
        return {
            "user_id": user_id,
            "primary_unit_id": view.index.primary_unit_id(user_id),
            "is_admin": view.index.is_admin(subject),
            "accessible_unit_ids": [u.id for u in units],
            "managed_unit_ids": [u.id for u in units if view.access.can_manage_unit(subject, u.id)],
        }

    def chain_of_command(self, actor: Actor, user_id: int) -> list[dict]:
        """
        Leaders of every unit from the user's primary unit up to its root.
        Units above the actor's own subtree are left out.
        """
        view = self.view()
        view.access.require_user_access(actor, user_id)
        primary_id = view.index.primary_unit_id(user_id)
        if primary_id is None:
            return []
        chain = []
        for unit in view.tree.get_ancestor_chain(primary_id):
            if not view.access.can_access_unit(actor, unit.id):
                break
            leader = view.index.get_unit_leader(unit.id)
            chain.append({"unit": unit, "leader": leader})
        return chain

    def list_assignments(self, actor: Actor, user_id: int) -> list[UnitAssignment]:
        view = self.view()
        view.access.require_user_access(actor, user_id)
        return view.index.active_assignments(user_id)

    def unit_by_referral_code(self, code: str) -> Unit:
        with self.repository.session() as store:
            unit = store.fetch_unit_by_referral_code(code.strip())
        if unit is None:
            raise NotFoundError("Unit not found with that referral code", referral_code=code)
        return unit

    def hierarchy_constants(self) -> dict:
        return {
            "unit_levels": self.levels.levels,
            "level_rank": self.levels.as_dict(),
            "leadership_roles": {level: list(self.levels.leadership_vocabulary(level)) for level in self.levels.levels},
            "military_roles": [
                {"role": role.value, "authority": role_authority(role.value)} for role in ROLE_AUTHORITY
            ],
            "assignment_types": [t.value for t in AssignmentType],
        }

    def integrity_report(self) -> dict:
        return self.view().tree.integrity_report()

    # ----- scoped records ----------------------------------------------------
    def filter_events(self, actor: Actor, events: Iterable[ScopedEvent]) -> list[ScopedEvent]:
        return self.view().access.filter_to_accessible(actor, events, event_unit_id)

    def collect_aar_content(
        self,
        actor: Actor,
        aars: Iterable[ScopedAAR],
        section: Optional[str] = None,
    ) -> list[AARContentItem]:
        """Content items from the AARs the actor may read; metadata items never leave here."""
        visible = self.view().access.filter_to_accessible(actor, aars, aar_unit_id)
        return [item for aar in visible for item in aar.content_items(section)]

    # ----- unit mutations ----------------------------------------------------
    def create_unit(self, actor: Actor, name: str, unit_level: str, parent_id: Optional[int] = None) -> Unit:
        with self._writing() as (store, view):
            if parent_id is None:
                if not view.index.is_admin(actor):
                    view.access.deny(actor, "create_root_unit")
            else:
                view.access.require_manage(actor, parent_id)
            level = view.guard.validate_create_unit(name, unit_level, parent_id)
            unit = store.insert_unit(name.strip(), level, parent_id, self._new_referral_code(store))
            store.record_audit(
                actor.id,
                "create_unit",
                {"unit_id": unit.id, "name": unit.name, "unit_level": level, "parent_id": parent_id},
            )
        logger.info("unit created", extra={"actor_id": actor.id, "unit_id": unit.id, "parent_id": parent_id})
        return unit

    def update_unit(
        self,
        actor: Actor,
        unit_id: int,
        name: Optional[str] = None,
        unit_level: Optional[str] = None,
        parent_id: Optional[int] = _UNSET,
    ) -> Unit:
        """
        Rename, change level and/or move a unit in one transaction.
        parent_id=None detaches the unit to a root; leave it out to keep the parent.
        """
        with self._writing() as (store, view):
            view.access.require_manage(actor, unit_id)
            unit = view.tree.get_unit(unit_id)
            reparent = parent_id is not _UNSET and parent_id != unit.parent_id
            if reparent:
                self._authorize_reparent(view, actor, unit, parent_id)

            changes: dict[str, Any] = {}
            if name is not None:
                if not name.strip():
                    raise InvalidUnitName("Unit name is required")
                changes["name"] = name.strip()
            level = unit.unit_level
            if unit_level is not None:
                level = view.guard.validate_level_change(unit_id, unit_level, check_parent=not reparent)
                changes["unit_level"] = level
            if reparent:
                view.guard.validate_reparent(unit_id, parent_id, unit_level=level)
                changes["parent_id"] = parent_id

            if not changes:
                return unit
            updated = store.write_unit(unit.model_copy(update=changes))
            store.record_audit(
                actor.id,
                "update_unit",
                {"unit_id": unit_id, "before": {k: getattr(unit, k) for k in changes}, "after": changes},
            )
        logger.info("unit updated", extra={"actor_id": actor.id, "unit_id": unit_id, "fields": sorted(changes)})
        return updated

    def reparent_unit(self, actor: Actor, unit_id: int, new_parent_id: Optional[int]) -> Unit:
        return self.update_unit(actor, unit_id, parent_id=new_parent_id)

    def rename_unit(self, actor: Actor, unit_id: int, name: str) -> Unit:
        return self.update_unit(actor, unit_id, name=name)

    def delete_unit(self, actor: Actor, unit_id: int) -> None:
        with self._writing() as (store, view):
            view.access.require_manage(actor, unit_id)
            unit = view.tree.get_unit(unit_id)
            if unit.parent_id is None and not view.index.is_admin(actor):
                view.access.deny(actor, "delete_root_unit", unit_id=unit_id)
            view.guard.validate_delete_unit(unit_id)
            store.tombstone_unit(unit_id)
            store.record_audit(actor.id, "delete_unit", {"unit_id": unit_id, "name": unit.name})
        logger.info("unit deleted", extra={"actor_id": actor.id, "unit_id": unit_id})

    @staticmethod
    def _authorize_reparent(view: HierarchyView, actor: Actor, unit: Unit, new_parent_id: Optional[int]) -> None:
        if new_parent_id is not None:
            view.access.require_manage(actor, new_parent_id)
            return
        # Detaching to a root needs rights over the place the unit is leaving.
        if view.index.is_admin(actor):
            return
        if unit.parent_id is None or not view.access.can_manage_unit(actor, unit.parent_id):
            view.access.deny(actor, "detach_unit", unit_id=unit.id)

    def _new_referral_code(self, store: StoreSession) -> str:
        length = max(4, self.config.referral_code_length)
        for _ in range(10):
            code = "".join(secrets.choice(_REFERRAL_ALPHABET) for _ in range(length))
            if not store.referral_code_exists(code):
                return code
        raise DataSourceError("Could not allocate a unique referral code")

    # ----- assignment mutations ----------------------------------------------
    def apply_assignment_changes(
        self,
        actor: Actor,
        user_id: int,
        operations: Iterable[AssignmentOperation],
    ) -> list[UnitAssignment]:
        """Validate and persist a batch of assignment operations atomically."""
        ops = list(operations)
        with self._writing() as (store, view):
            result = self._apply_changes(store, view, actor, user_id, ops)
        return result

    def _apply_changes(
        self,
        store: StoreSession,
        view: HierarchyView,
        actor: Actor,
        user_id: int,
        ops: list[AssignmentOperation],
    ) -> list[UnitAssignment]:
        # Unknown user ids are denied like out-of-scope ones.
        view.access.require_user_access(actor, user_id)
        for unit_id in sorted({op.unit_id for op in ops}):
            view.access.require_manage(actor, unit_id)
        plan = view.guard.plan_assignment_changes(user_id, ops, assigned_by=actor.id)
        self._write_plan(store, view, actor, plan)
        logger.info(
            "assignments changed",
            extra={"actor_id": actor.id, "user_id": user_id, "operations": [op.kind for op in ops]},
        )
        return store.fetch_active_assignments(user_id)

    def remove_assignment(
        self,
        actor: Actor,
        user_id: int,
        assignment_id: int,
        promote_assignment_id: Optional[int] = None,
    ) -> list[UnitAssignment]:
        with self._writing() as (store, view):
            view.access.require_user_access(actor, user_id)
            current = view.index.active_assignments(user_id)
            target = next((a for a in current if a.id is not None and a.id == assignment_id), None)
            if target is None:
                raise AssignmentNotFound(assignment_id, user_id=user_id)
            view.access.require_manage(actor, target.unit_id)
            if promote_assignment_id is not None:
                promoted = next((a for a in current if a.id == promote_assignment_id), None)
                if promoted is not None:
                    view.access.require_manage(actor, promoted.unit_id)
            plan = view.guard.validate_remove_assignment(user_id, assignment_id, promote_assignment_id)
            self._write_plan(store, view, actor, plan)
            result = store.fetch_active_assignments(user_id)
        logger.info("assignment removed", extra={"actor_id": actor.id, "user_id": user_id, "assignment_id": assignment_id})
        return result

    def reassign_primary_unit(self, actor: Actor, user_id: int, unit_id: int) -> list[UnitAssignment]:
        """
        Move a user's PRIMARY to unit_id and end the old PRIMARY assignment.
        An existing active assignment at unit_id is promoted rather than duplicated.
        """
        with self._writing() as (store, view):
            view.access.require_user_access(actor, user_id)
            view.access.require_manage(actor, unit_id)
            current = view.index.active_assignments(user_id)
            old_primary = next((a.unit_id for a in current if a.is_primary), None)
            if old_primary == unit_id:
                return current
            ops: list[AssignmentOperation] = []
            if any(a.unit_id == unit_id for a in current):
                ops.append(PromoteAssignmentOp(unit_id=unit_id))
            else:
                ops.append(CreateAssignmentOp(unit_id=unit_id, assignment_type=AssignmentType.PRIMARY))
            if old_primary is not None:
                ops.append(EndAssignmentOp(unit_id=old_primary))
            result = self._apply_changes(store, view, actor, user_id, ops)
        return result

    @staticmethod
    def _write_plan(store: StoreSession, view: HierarchyView, actor: Actor, plan: AssignmentPlan) -> None:
        # Ends go first so a re-created (user, unit) pair never collides with
        # the active-assignment unique index.
        for ended in plan.ends:
            store.end_assignment(ended.id, ended.end_date)
            store.record_audit(
                actor.id,
                "end_unit_assignment",
                {"assignment_id": ended.id, "user_id": plan.user_id, "unit_id": ended.unit_id},
            )
        for updated in plan.updates:
            store.write_assignment(updated)
            store.record_audit(
                actor.id,
                "update_unit_assignment",
                {
                    "assignment_id": updated.id,
                    "user_id": plan.user_id,
                    "unit_id": updated.unit_id,
                    "assignment_type": updated.assignment_type.value,
                    "leadership_role": updated.leadership_role,
                },
            )
        pending = list(plan.creates)
        if plan.legacy_primary is not None and any(a is plan.legacy_primary for a in plan.result):
            pending.insert(0, plan.legacy_primary)
        for created in pending:
            written = store.write_assignment(created)
            store.record_audit(
                actor.id,
                "assign_user_to_unit",
                {
                    "assignment_id": written.id,
                    "user_id": plan.user_id,
                    "unit_id": written.unit_id,
                    "assignment_type": written.assignment_type.value,
                    "leadership_role": written.leadership_role,
                },
            )

        primary_unit_id = plan.primary_unit_id
        user = view.index.user(plan.user_id)
        if user is not None and user.unit_id != primary_unit_id:
            store.update_user_unit(plan.user_id, primary_unit_id)

    # ----- directory ---------------------------------------------------------
    def get_user(self, actor: Actor, user_id: int) -> User:
        view = self.view()
        view.access.require_user_access(actor, user_id)
        return view.index.user(user_id)

    def update_profile(
        self,
        actor: Actor,
        user_id: int,
        name: Optional[str] = None,
        rank: Optional[str] = _UNSET,
        bio: Optional[str] = _UNSET,
    ) -> User:
        """
        Self-service edit of name, rank and bio; admins may edit anyone.
        Unit membership and role are not touched here.
        """
        with self._writing() as (store, view):
            if actor.id != user_id and not view.index.is_admin(actor):
                view.access.deny(actor, "update_user_profile", user_id=user_id)
            user = view.index.user(user_id)
            if user is None:
                raise UserNotFound(user_id)

            changes: dict[str, Any] = {}
            if name is not None:
                if not name.strip():
                    raise MutationRejected("Name is required", user_id=user_id)
                changes["name"] = name.strip()
            if rank is not _UNSET:
                changes["rank"] = (rank or "").strip()
            if bio is not _UNSET:
                changes["bio"] = bio
            changes = {k: v for k, v in changes.items() if getattr(user, k) != v}

            if not changes:
                return user
            updated = store.write_user_profile(user.model_copy(update=changes))
            store.record_audit(actor.id, "update_user_profile", {"user_id": user_id, "updates": changes})
        logger.info("profile updated", extra={"actor_id": actor.id, "user_id": user_id, "fields": sorted(changes)})
        return updated

    def register_user(
        self,
        username: str,
        name: str,
        rank: str = "",
        role: str = MilitaryRole.SOLDIER.value,
        referral_code: Optional[str] = None,
        new_unit_name: Optional[str] = None,
        new_unit_level: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> User:
        """
        Join an existing unit through its referral code, or create a new root
        unit and become its Commander.
        """
        username = (username or "").strip()
        if not username:
            raise MutationRejected("Username is required")
        if role == MilitaryRole.ADMIN.value:
            raise AccessDenied("admin role cannot be self-assigned", action="register_user")
        if role_authority(role) == 0:
            raise MutationRejected(f"Unknown role '{role}'", role=role)

        with self._writing() as (store, view):
            if store.fetch_user_by_username(username) is not None:
                raise MutationRejected("Username already exists", username=username)

            leadership_role = None
            if referral_code:
                unit = store.fetch_unit_by_referral_code(referral_code.strip())
                if unit is None:
                    raise NotFoundError("Invalid referral code", referral_code=referral_code)
            elif new_unit_name and new_unit_level:
                level = view.guard.validate_create_unit(new_unit_name, new_unit_level)
                unit = store.insert_unit(new_unit_name.strip(), level, None, self._new_referral_code(store))
                role = MilitaryRole.COMMANDER.value
                vocabulary = self.levels.leadership_vocabulary(level)
                leadership_role = "Commander" if "Commander" in vocabulary else (vocabulary[0] if vocabulary else None)
                store.record_audit(None, "create_unit", {"unit_id": unit.id, "name": unit.name, "unit_level": level})
            else:
                raise MutationRejected("Either a referral code or new unit details are required")

            user = store.insert_user(username, name, rank, role, unit.id, bio)
            assignment = store.write_assignment(
                UnitAssignment(
                    user_id=user.id,
                    unit_id=unit.id,
                    assignment_type=AssignmentType.PRIMARY,
                    leadership_role=leadership_role,
                    assigned_by=user.id,
                )
            )
            store.record_audit(
                user.id,
                "assign_user_to_unit",
                {"assignment_id": assignment.id, "user_id": user.id, "unit_id": unit.id, "assignment_type": "PRIMARY"},
            )
        logger.info("user registered", extra={"user_id": user.id, "unit_id": unit.id})
        return user
