import random
from itertools import product

import pytest

from conftest import BATTALION, CHAIN, build_index, make_units
from echelon.config import settings
from echelon.domain.models import (
    AssignmentType,
    CreateAssignmentOp,
    EndAssignmentOp,
    PromoteAssignmentOp,
    SetLeadershipOp,
    Unit,
    UnitAssignment,
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
from echelon.hierarchy import MutationGuard

LEVELS = settings.hierarchy.unit_levels
NON_DESCENDING_PAIRS = [
    (parent, child)
    for parent, child in product(LEVELS, LEVELS)
    if LEVELS.index(parent) <= LEVELS.index(child)
]


def _guard(units, users=(), assignments=()):
    return MutationGuard(build_index(units, users, assignments))


def _random_tree(rng, size):
    """A valid tree: every child is strictly lower than its parent."""
    top = len(LEVELS) - 1
    units = [Unit(id=1, name="root", unit_level=LEVELS[top], parent_id=None)]
    for uid in range(2, size + 1):
        candidates = [u for u in units if LEVELS.index(u.unit_level) > 0]
        parent = rng.choice(candidates)
        level = LEVELS[rng.randrange(0, LEVELS.index(parent.unit_level))]
        units.append(Unit(id=uid, name=f"unit-{uid}", unit_level=level, parent_id=parent.id))
    return units


# ----- scenarios on the Battalion -> Company -> Platoon -> Squad chain --------
def test_scenario_c_company_under_own_squad_is_a_level_violation():
    guard = _guard(make_units(CHAIN))
    with pytest.raises(InvalidLevelOrdering):
        guard.validate_reparent(2, 4)


def test_scenario_d_battalion_under_descendant_would_cycle():
    guard = _guard(make_units(CHAIN))
    with pytest.raises(CycleWouldForm) as exc_info:
        guard.validate_reparent(1, 4)
    assert exc_info.value.details["ancestor_chain"] == [4, 3, 2, 1]


def test_descendant_and_lower_level_reports_both():
    guard = _guard(make_units(CHAIN))
    with pytest.raises(CycleAndLevelViolation) as exc_info:
        guard.validate_reparent(2, 3)
    assert isinstance(exc_info.value, CycleWouldForm)
    assert isinstance(exc_info.value, InvalidLevelOrdering)
    assert exc_info.value.code == "cycle_would_form"


@pytest.mark.parametrize("seed", range(5))
def test_reparent_under_any_descendant_is_rejected(seed):
    rng = random.Random(seed)
    units = _random_tree(rng, 25)
    guard = _guard(units)
    tree = guard.tree
    for x, y in product(units, units):
        if x.id == y.id:
            continue
        if tree.is_descendant(y.id, x.id):
            with pytest.raises(CycleWouldForm):
                guard.validate_reparent(x.id, y.id)
        else:
            try:
                guard.validate_reparent(x.id, y.id)
            except InvalidLevelOrdering as exc:
                assert not isinstance(exc, CycleWouldForm)


@pytest.mark.parametrize("parent_level,child_level", NON_DESCENDING_PAIRS)
def test_create_rejects_parent_not_strictly_higher(parent_level, child_level):
    guard = _guard([Unit(id=1, name="parent", unit_level=parent_level)])
    with pytest.raises(InvalidLevelOrdering):
        guard.validate_create_unit("child", child_level, parent_id=1)


@pytest.mark.parametrize("parent_level,child_level", NON_DESCENDING_PAIRS)
def test_reparent_rejects_parent_not_strictly_higher(parent_level, child_level):
    guard = _guard(
        [
            Unit(id=1, name="parent", unit_level=parent_level),
            Unit(id=2, name="child", unit_level=child_level),
        ]
    )
    with pytest.raises(InvalidLevelOrdering):
        guard.validate_reparent(2, 1)


def test_create_unit_validation():
    guard = _guard(make_units(BATTALION))
    assert guard.validate_create_unit("A-3 Platoon", "platoon", parent_id=2) == "Platoon"
    assert guard.validate_create_unit("2nd Battalion", "Battalion") == "Battalion"
    with pytest.raises(InvalidUnitName):
        guard.validate_create_unit("  ", "Platoon", parent_id=2)
    with pytest.raises(InvalidUnitLevel):
        guard.validate_create_unit("Odd", "Regiment", parent_id=1)
    with pytest.raises(InvalidParent):
        guard.validate_create_unit("Lost", "Platoon", parent_id=99)


def test_reparent_validation():
    guard = _guard(make_units(BATTALION))
    guard.validate_reparent(7, 2)
    guard.validate_reparent(7, None)
    with pytest.raises(SelfParent):
        guard.validate_reparent(7, 7)
    with pytest.raises(InvalidParent):
        guard.validate_reparent(7, 99)
    with pytest.raises(UnitNotFound):
        guard.validate_reparent(99, 2)
    with pytest.raises(InvalidLevelOrdering) as exc_info:
        guard.validate_reparent(3, 4)
    assert not isinstance(exc_info.value, CycleWouldForm)
    # A Platoon may move under a Platoon once it becomes a Section.
    guard.validate_reparent(5, 4, unit_level="Section")


def test_level_change_stays_between_parent_and_children():
    guard = _guard(make_units(BATTALION))
    assert guard.validate_level_change(5, "section") == "Section"
    with pytest.raises(InvalidLevelOrdering):
        guard.validate_level_change(4, "Company")
    with pytest.raises(InvalidLevelOrdering):
        guard.validate_level_change(2, "Platoon")
    with pytest.raises(InvalidUnitLevel):
        guard.validate_level_change(2, "Regiment")
    assert guard.validate_level_change(4, "Company", check_parent=False) == "Company"


def test_delete_requires_empty_unit(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users)
    with pytest.raises(UnitHasDependents) as exc_info:
        guard.validate_delete_unit(2)
    assert exc_info.value.details["children"] == [4, 5]
    with pytest.raises(UnitHasDependents) as exc_info:
        guard.validate_delete_unit(8)
    assert exc_info.value.details["members"] == [80]
    guard.validate_delete_unit(5)


# ----- assignments ------------------------------------------------------------
def _primary(assignment_id, user_id, unit_id, **kw):
    return UnitAssignment(id=assignment_id, user_id=user_id, unit_id=unit_id, assignment_type=AssignmentType.PRIMARY, **kw)


def _attached(assignment_id, user_id, unit_id, **kw):
    return UnitAssignment(id=assignment_id, user_id=user_id, unit_id=unit_id, assignment_type=AssignmentType.ATTACHED, **kw)


def test_assignment_set_invariants(guard):
    assert len(guard.validate_assignment_change(41, [_primary(1, 41, 4)])) == 1
    with pytest.raises(NoPrimaryAssignment):
        guard.validate_assignment_change(41, [_attached(1, 41, 4)])
    with pytest.raises(MultiplePrimaryAssignments):
        guard.validate_assignment_change(41, [_primary(1, 41, 4), _primary(2, 41, 5)])
    with pytest.raises(DuplicateActiveAssignment):
        guard.validate_assignment_change(41, [_primary(1, 41, 4), _attached(2, 41, 4)])
    with pytest.raises(UnitNotFound):
        guard.validate_assignment_change(41, [_primary(1, 41, 99)])
    with pytest.raises(UserNotFound):
        guard.validate_assignment_change(999, [_primary(1, 999, 4)])
    with pytest.raises(MutationRejected):
        guard.validate_assignment_change(41, [_primary(1, 40, 4)])


def test_ended_assignments_do_not_count(guard):
    ended = _primary(2, 41, 5, end_date="2024-01-01T00:00:00+00:00")
    active = guard.validate_assignment_change(41, [_primary(1, 41, 4), ended])
    assert [a.id for a in active] == [1]


def test_leadership_role_must_fit_unit_level(guard):
    guard.validate_assignment_change(41, [_primary(1, 41, 4, leadership_role="Platoon Sergeant")])
    guard.validate_assignment_change(41, [_primary(1, 41, 4, leadership_role="none")])
    with pytest.raises(InvalidLeadershipRole) as exc_info:
        guard.validate_assignment_change(41, [_primary(1, 41, 4, leadership_role="Squad Leader")])
    assert "Platoon Leader" in exc_info.value.details["allowed"]


def test_scenario_e_attach_then_promote(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4)])
    plan = guard.plan_assignment_changes(
        41,
        [CreateAssignmentOp(unit_id=2), PromoteAssignmentOp(unit_id=2)],
        assigned_by=20,
    )
    by_unit = {a.unit_id: a for a in plan.result}
    assert by_unit[4].assignment_type == AssignmentType.ATTACHED
    assert by_unit[2].assignment_type == AssignmentType.PRIMARY
    assert sum(1 for a in plan.result if a.is_primary) == 1
    assert plan.primary_unit_id == 2
    assert [a.unit_id for a in plan.creates] == [2]
    assert plan.creates[0].assigned_by == 20
    assert [a.id for a in plan.updates] == [1]
    assert plan.ends == []
    # The snapshot itself is never touched.
    assert guard.index.active_assignments(41)[0].is_primary


def test_creating_a_primary_demotes_the_old_one(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4)])
    plan = guard.plan_assignment_changes(
        41, [CreateAssignmentOp(unit_id=5, assignment_type=AssignmentType.PRIMARY), EndAssignmentOp(unit_id=4)]
    )
    assert [a.unit_id for a in plan.result] == [5]
    assert [a.id for a in plan.ends] == [1]
    assert plan.ends[0].end_date is not None


def test_batch_rejections(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4), _attached(2, 41, 5)])
    with pytest.raises(CannotRemovePrimary):
        guard.plan_assignment_changes(41, [EndAssignmentOp(unit_id=4)])
    with pytest.raises(DuplicateActiveAssignment):
        guard.plan_assignment_changes(41, [CreateAssignmentOp(unit_id=5)])
    with pytest.raises(AssignmentNotFound):
        guard.plan_assignment_changes(41, [PromoteAssignmentOp(unit_id=6)])
    with pytest.raises(InvalidLeadershipRole):
        guard.plan_assignment_changes(41, [SetLeadershipOp(unit_id=5, leadership_role="Commander")])
    with pytest.raises(UnitNotFound):
        guard.plan_assignment_changes(41, [CreateAssignmentOp(unit_id=99)])
    with pytest.raises(UserNotFound):
        guard.plan_assignment_changes(999, [CreateAssignmentOp(unit_id=5)])


def test_create_then_end_in_one_batch_writes_nothing(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4)])
    plan = guard.plan_assignment_changes(41, [CreateAssignmentOp(unit_id=5), EndAssignmentOp(unit_id=5)])
    assert plan.creates == [] and plan.ends == [] and plan.updates == []


def test_legacy_user_plan_materializes_primary(guard):
    plan = guard.plan_assignment_changes(41, [CreateAssignmentOp(unit_id=5)])
    assert plan.legacy_primary is not None
    assert plan.legacy_primary.unit_id == 4
    assert plan.legacy_primary.id is None
    assert [a.unit_id for a in plan.creates] == [5]
    assert plan.updates == []


def test_set_leadership_is_an_update(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4)])
    plan = guard.plan_assignment_changes(41, [SetLeadershipOp(unit_id=4, leadership_role="Platoon Sergeant")])
    assert [(a.id, a.leadership_role) for a in plan.updates] == [(1, "Platoon Sergeant")]


def test_remove_assignment_rules(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4), _attached(2, 41, 5)])
    with pytest.raises(CannotRemovePrimary):
        guard.validate_remove_assignment(41, 1)
    with pytest.raises(AssignmentNotFound):
        guard.validate_remove_assignment(41, 77)
    with pytest.raises(AssignmentNotFound):
        guard.validate_remove_assignment(41, 1, promote_assignment_id=77)

    plan = guard.validate_remove_assignment(41, 2)
    assert [a.id for a in plan.ends] == [2]
    assert plan.updates == []

    plan = guard.validate_remove_assignment(41, 1, promote_assignment_id=2)
    assert [a.id for a in plan.ends] == [1]
    assert [(a.id, a.assignment_type) for a in plan.updates] == [(2, AssignmentType.PRIMARY)]
    assert plan.primary_unit_id == 5


def test_promotion_is_rejected_when_removing_a_secondary(battalion_users):
    guard = _guard(
        make_units(BATTALION),
        battalion_users,
        [_primary(1, 41, 4), _attached(2, 41, 5), _attached(3, 41, 6)],
    )
    with pytest.raises(MutationRejected) as exc:
        guard.validate_remove_assignment(41, 2, promote_assignment_id=3)
    assert exc.value.details["promote_assignment_id"] == 3


def test_last_assignment_cannot_be_removed(battalion_users):
    guard = _guard(make_units(BATTALION), battalion_users, [_primary(1, 41, 4)])
    with pytest.raises(CannotRemovePrimary):
        guard.validate_remove_assignment(41, 1, promote_assignment_id=1)


@pytest.mark.parametrize("seed", range(5))
def test_single_primary_survives_any_accepted_sequence(battalion_users, seed):
    rng = random.Random(seed)
    units = make_units(BATTALION)
    current = [_primary(1, 41, 4)]
    next_id = 2
    for _ in range(40):
        guard = _guard(units, battalion_users, current)
        unit_id = rng.choice([u.id for u in units])
        op = rng.choice(
            [
                CreateAssignmentOp(unit_id=unit_id),
                CreateAssignmentOp(unit_id=unit_id, assignment_type=AssignmentType.PRIMARY),
                PromoteAssignmentOp(unit_id=unit_id),
                EndAssignmentOp(unit_id=unit_id),
            ]
        )
        try:
            plan = guard.plan_assignment_changes(41, [op])
        except (MutationRejected, AssignmentNotFound):
            continue
        assert sum(1 for a in plan.result if a.is_primary) == 1
        current = []
        for a in plan.result:
            if a.id is None:
                a = a.model_copy(update={"id": next_id})
                next_id += 1
            current.append(a)
