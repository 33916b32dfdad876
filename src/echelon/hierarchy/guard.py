from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Iterable, Optional

from echelon.domain.models import (
    AssignmentOperation,
    AssignmentType,
    CreateAssignmentOp,
    EndAssignmentOp,
    PromoteAssignmentOp,
    SetLeadershipOp,
    UnitAssignment,
    normalize_leadership_role,
)
from echelon.exceptions import (
    AssignmentNotFound,
    CannotRemovePrimary,
    CycleAndLevelViolation,
    CycleWouldForm,
    DuplicateActiveAssignment,
    InvalidLeadershipRole,
    InvalidLevelOrdering,
    InvalidParent,
    InvalidUnitLevel,
    InvalidUnitName,
    MultiplePrimaryAssignments,
    MutationRejected,
    NoPrimaryAssignment,
    SelfParent,
    UnitHasDependents,
    UnitNotFound,
    UserNotFound,
)
from echelon.hierarchy.index import HierarchyIndex

logger = logging.getLogger(__name__)


@dataclass
class AssignmentPlan:
    """
    Outcome of a validated assignment batch, ready to be written in one
    transaction. `result` is the user's full active set after the batch.
    """
    user_id: int
    result: list[UnitAssignment]
    creates: list[UnitAssignment] = field(default_factory=list)
    updates: list[UnitAssignment] = field(default_factory=list)
    ends: list[UnitAssignment] = field(default_factory=list)
    legacy_primary: Optional[UnitAssignment] = None

    @property
    def primary_unit_id(self) -> int:
        return next(a.unit_id for a in self.result if a.is_primary)


class MutationGuard:
    """
    Read-only validation of structural changes against a HierarchyIndex
    snapshot. Every validate_* either returns normally or raises a
    MutationRejected / NotFoundError subclass naming the broken invariant.
    """

    def __init__(self, index: HierarchyIndex):
        self.index = index
        self.tree = index.tree
        self.levels = index.tree.levels

    # ----- units -------------------------------------------------------------
    def validate_create_unit(self, name: str, unit_level: str, parent_id: Optional[int] = None) -> str:
        """Returns the canonical unit level."""
        if not name or not str(name).strip():
            raise InvalidUnitName("Unit name is required")
        level = self.levels.canonical(unit_level)
        if level is None:
            raise InvalidUnitLevel(
                f"Unknown unit level '{unit_level}'",
                unit_level=unit_level,
                allowed=self.levels.levels,
            )
        if parent_id is None:
            return level

        parent = self.tree.find_unit(parent_id)
        if parent is None:
            raise InvalidParent(f"Parent unit {parent_id} does not exist", parent_id=parent_id)
        if not self.levels.is_higher(parent.unit_level, level):
            raise InvalidLevelOrdering(
                f"A {parent.unit_level} cannot be the parent of a {level}",
                parent_id=parent.id,
                parent_level=parent.unit_level,
                unit_level=level,
            )
        return level

    def validate_reparent(self, unit_id: int, new_parent_id: Optional[int], unit_level: Optional[str] = None) -> None:
        """
        `unit_level` lets a combined level-change + reparent be checked against
        the level the unit will have afterwards.
        """
        unit = self.tree.get_unit(unit_id)
        child_level = unit_level or unit.unit_level
        if unit_level is not None and not self.levels.is_valid(unit_level):
            raise InvalidUnitLevel(f"Unknown unit level '{unit_level}'", unit_level=unit_level)
        if new_parent_id is None:
            return
        if new_parent_id == unit_id:
            raise SelfParent("A unit cannot be its own parent", unit_id=unit_id)

        parent = self.tree.find_unit(new_parent_id)
        if parent is None:
            raise InvalidParent(f"Parent unit {new_parent_id} does not exist", parent_id=new_parent_id)

        chain = [u.id for u in self.tree.get_ancestor_chain(new_parent_id)]
        would_cycle = unit_id in chain
        misordered = not self.levels.is_higher(parent.unit_level, child_level)
        context = {
            "unit_id": unit_id,
            "unit_level": child_level,
            "parent_id": parent.id,
            "parent_level": parent.unit_level,
        }
        if would_cycle and misordered:
            raise CycleAndLevelViolation(
                f"Unit {new_parent_id} is a descendant of unit {unit_id} and not a higher echelon",
                ancestor_chain=chain,
                **context,
            )
        if would_cycle:
            raise CycleWouldForm(
                f"Unit {new_parent_id} is a descendant of unit {unit_id}",
                ancestor_chain=chain,
                **context,
            )
        if misordered:
            raise InvalidLevelOrdering(
                f"A {parent.unit_level} cannot be the parent of a {child_level}",
                **context,
            )

    def validate_level_change(self, unit_id: int, new_level: str, check_parent: bool = True) -> str:
        """
        A level change must stay below the parent and above every child.
        Pass check_parent=False when the unit is being reparented in the same
        change; validate_reparent then checks the new parent.
        """
        unit = self.tree.get_unit(unit_id)
        level = self.levels.canonical(new_level)
        if level is None:
            raise InvalidUnitLevel(f"Unknown unit level '{new_level}'", unit_level=new_level)
        parent = self.tree.find_unit(unit.parent_id) if check_parent else None
        if parent is not None and not self.levels.is_higher(parent.unit_level, level):
            raise InvalidLevelOrdering(
                f"A {parent.unit_level} cannot be the parent of a {level}",
                unit_id=unit_id,
                parent_id=parent.id,
            )
        for child in self.tree.get_children(unit_id):
            if not self.levels.is_higher(level, child.unit_level):
                raise InvalidLevelOrdering(
                    f"A {level} cannot be the parent of a {child.unit_level}",
                    unit_id=unit_id,
                    child_id=child.id,
                )
        return level

    def validate_delete_unit(self, unit_id: int) -> None:
        self.tree.get_unit(unit_id)
        children = [u.id for u in self.tree.get_children(unit_id)]
        if children:
            raise UnitHasDependents("Unit still has subordinate units", unit_id=unit_id, children=children)
        members = [
            u.id
            for u in self.index.all_users()
            if self.index.primary_unit_id(u.id) == unit_id
            or any(a.unit_id == unit_id for a in self.index.active_assignments(u.id))
        ]
        if members:
            raise UnitHasDependents("Unit still has assigned personnel", unit_id=unit_id, members=members)

    # ----- assignments -------------------------------------------------------
    def validate_assignment_change(self, user_id: int, proposed_assignments: Iterable[UnitAssignment]) -> list[UnitAssignment]:
        """
        Validate the complete resulting assignment set of one user.
        Ended entries (end_date set) are ignored for the active-set invariants.
        """
        if self.index.user(user_id) is None:
            raise UserNotFound(user_id)

        active = [a for a in proposed_assignments if a.is_active]
        for assignment in active:
            if assignment.user_id != user_id:
                raise MutationRejected(
                    "Assignment belongs to a different user",
                    user_id=user_id,
                    assignment_user_id=assignment.user_id,
                )
            unit = self.tree.find_unit(assignment.unit_id)
            if unit is None:
                raise UnitNotFound(assignment.unit_id)
            role = assignment.leadership_role
            if role is not None:
                vocabulary = self.levels.leadership_vocabulary(unit.unit_level)
                if role not in vocabulary:
                    raise InvalidLeadershipRole(
                        f"'{role}' is not a leadership role for a {unit.unit_level}",
                        unit_id=unit.id,
                        unit_level=unit.unit_level,
                        leadership_role=role,
                        allowed=list(vocabulary),
                    )

        per_unit = Counter(a.unit_id for a in active)
        duplicates = sorted(uid for uid, count in per_unit.items() if count > 1)
        if duplicates:
            raise DuplicateActiveAssignment(
                f"User {user_id} would hold more than one active assignment to unit {duplicates[0]}",
                user_id=user_id,
                unit_ids=duplicates,
            )

        primaries = [a for a in active if a.is_primary]
        if not primaries:
            raise NoPrimaryAssignment(f"User {user_id} would have no PRIMARY assignment", user_id=user_id)
        if len(primaries) > 1:
            raise MultiplePrimaryAssignments(
                f"User {user_id} would have {len(primaries)} PRIMARY assignments",
                user_id=user_id,
                unit_ids=sorted(a.unit_id for a in primaries),
            )
        return active

    def validate_remove_assignment(
        self,
        user_id: int,
        assignment_id: int,
        promote_assignment_id: Optional[int] = None,
    ) -> AssignmentPlan:
        if self.index.user(user_id) is None:
            raise UserNotFound(user_id)
        current = [a.model_copy() for a in self.index.active_assignments(user_id)]
        target = next((a for a in current if a.id is not None and a.id == assignment_id), None)
        if target is None:
            raise AssignmentNotFound(assignment_id, user_id=user_id)
        if len(current) == 1:
            raise CannotRemovePrimary(
                "Cannot remove a user's last assignment",
                user_id=user_id,
                assignment_id=assignment_id,
            )

        updates: list[UnitAssignment] = []
        if target.is_primary:
            if promote_assignment_id is None:
                raise CannotRemovePrimary(
                    "Promote another assignment to PRIMARY before removing this one",
                    user_id=user_id,
                    assignment_id=assignment_id,
                )
            replacement = next(
                (a for a in current if a.id == promote_assignment_id and a is not target),
                None,
            )
            if replacement is None:
                raise AssignmentNotFound(promote_assignment_id, user_id=user_id)
            replacement.assignment_type = AssignmentType.PRIMARY
            updates.append(replacement)
        elif promote_assignment_id is not None:
            raise MutationRejected(
                "Promotion only applies when removing the PRIMARY assignment",
                user_id=user_id,
                assignment_id=assignment_id,
                promote_assignment_id=promote_assignment_id,
            )

        target.end_date = datetime.now(UTC)
        remaining = [a for a in current if a is not target]
        self.validate_assignment_change(user_id, remaining)
        return AssignmentPlan(user_id=user_id, result=remaining, updates=updates, ends=[target])

    def plan_assignment_changes(
        self,
        user_id: int,
        operations: Iterable[AssignmentOperation],
        assigned_by: Optional[int] = None,
    ) -> AssignmentPlan:
        """
        Apply a batch of operations to the user's current active set in memory
        and validate the outcome. Any failure rejects the whole batch.
        """
        if self.index.user(user_id) is None:
            raise UserNotFound(user_id)

        originals = self.index.active_assignments(user_id)
        working = [a.model_copy() for a in originals]
        legacy = None
        if not self.index.has_assignment_records(user_id) and working:
            legacy = working[0]
        baseline = {id(w): (o.assignment_type, o.leadership_role) for w, o in zip(working, originals)}
        created: list[UnitAssignment] = []
        ended: list[UnitAssignment] = []

        def active_at(unit_id: int) -> UnitAssignment:
            found = next((a for a in working if a.unit_id == unit_id), None)
            if found is None:
                raise AssignmentNotFound(None, user_id=user_id, unit_id=unit_id)
            return found

        def demote_primary(keep: Optional[UnitAssignment] = None) -> None:
            for a in working:
                if a.is_primary and a is not keep:
                    a.assignment_type = AssignmentType.ATTACHED

        for op in operations:
            if isinstance(op, CreateAssignmentOp):
                if any(a.unit_id == op.unit_id for a in working):
                    raise DuplicateActiveAssignment(
                        f"User {user_id} already has an active assignment to unit {op.unit_id}",
                        user_id=user_id,
                        unit_ids=[op.unit_id],
                    )
                new = UnitAssignment(
                    user_id=user_id,
                    unit_id=op.unit_id,
                    assignment_type=op.assignment_type,
                    leadership_role=op.leadership_role,
                    assigned_by=assigned_by,
                )
                if new.is_primary:
                    demote_primary()
                working.append(new)
                created.append(new)
            elif isinstance(op, PromoteAssignmentOp):
                target = active_at(op.unit_id)
                demote_primary(keep=target)
                target.assignment_type = AssignmentType.PRIMARY
            elif isinstance(op, EndAssignmentOp):
                target = active_at(op.unit_id)
                if target.is_primary or len(working) == 1:
                    raise CannotRemovePrimary(
                        "Promote another assignment to PRIMARY before ending this one",
                        user_id=user_id,
                        unit_id=op.unit_id,
                    )
                working.remove(target)
                if any(c is target for c in created):
                    created = [c for c in created if c is not target]
                else:
                    target.end_date = datetime.now(UTC)
                    ended.append(target)
            elif isinstance(op, SetLeadershipOp):
                target = active_at(op.unit_id)
                target.leadership_role = normalize_leadership_role(op.leadership_role)
            else:  # pragma: no cover - guarded by the discriminated union
                raise MutationRejected(f"Unsupported assignment operation {op!r}")

        self.validate_assignment_change(user_id, working)

        updates = [
            a for a in working
            if id(a) in baseline and a is not legacy
            and (a.assignment_type, a.leadership_role) != baseline[id(a)]
        ]
        if legacy is not None:
            ended = [a for a in ended if a is not legacy]
        plan = AssignmentPlan(
            user_id=user_id,
            result=working,
            creates=created,
            updates=updates,
            ends=[a for a in ended if a.id is not None],
            legacy_primary=legacy,
        )
        logger.debug(
            "assignment plan validated",
            extra={"user_id": user_id, "creates": len(plan.creates), "updates": len(plan.updates), "ends": len(plan.ends)},
        )
        return plan
