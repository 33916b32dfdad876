from conftest import BATTALION, actor_for, build_index, make_units, make_user
from echelon.domain.models import AssignmentType, UnitAssignment


def test_users_in_unit_are_primary_members_only(battalion_users):
    assignments = [
        UnitAssignment(id=1, user_id=41, unit_id=5, assignment_type=AssignmentType.PRIMARY),
        UnitAssignment(id=2, user_id=41, unit_id=4, assignment_type=AssignmentType.ATTACHED),
    ]
    index = build_index(make_units(BATTALION), battalion_users, assignments)
    # The PRIMARY record wins over the legacy unit_id.
    assert index.primary_unit_id(41) == 5
    assert [u.id for u in index.get_users_in_unit(4)] == [40]
    assert [u.id for u in index.get_users_in_unit(5)] == [41]


def test_legacy_user_gets_synthesized_primary(battalion_index):
    assignments = battalion_index.active_assignments(41)
    assert len(assignments) == 1
    assert assignments[0].id is None
    assert assignments[0].unit_id == 4
    assert assignments[0].is_primary
    assert not battalion_index.has_assignment_records(41)


def test_unit_leader_is_highest_command_role(battalion_index):
    assert battalion_index.get_unit_leader(2).id == 20
    assert battalion_index.get_unit_leader(4).id == 40
    assert battalion_index.get_unit_leader(5) is None


def test_unit_leader_tie_breaks_on_lowest_id(battalion_users):
    users = battalion_users + [make_user(15, 2, "Commander", "second_cdr")]
    index = build_index(make_units(BATTALION), users)
    assert index.get_unit_leader(2).id == 15


def test_unit_leader_resolution_is_stable(battalion_index):
    first = battalion_index.get_unit_leader(1)
    second = battalion_index.get_unit_leader(1)
    assert first == second
    # The admin system role never outranks a commander.
    assert first.id == 10


def test_accessible_users_cover_subtree_and_self(battalion_index):
    alpha_cdr = actor_for(battalion_index, 20)
    assert [u.id for u in battalion_index.compute_accessible_users(alpha_cdr)] == [20, 21, 40, 41, 60]
    squad_leader = actor_for(battalion_index, 60)
    assert [u.id for u in battalion_index.compute_accessible_users(squad_leader)] == [60]


def test_subordinate_units_are_direct_children(battalion_index):
    assert [u.id for u in battalion_index.get_subordinate_units(2)] == [4, 5]
    assert battalion_index.get_subordinate_units(8) == []


def test_ended_and_foreign_assignments_are_ignored(battalion_users):
    assignments = [
        UnitAssignment(id=1, user_id=41, unit_id=4, assignment_type=AssignmentType.PRIMARY),
        UnitAssignment(
            id=2,
            user_id=41,
            unit_id=7,
            assignment_type=AssignmentType.ATTACHED,
            end_date="2024-01-01T00:00:00+00:00",
        ),
        UnitAssignment(id=3, user_id=999, unit_id=7, assignment_type=AssignmentType.PRIMARY),
    ]
    index = build_index(make_units(BATTALION), battalion_users, assignments)
    assert [a.id for a in index.active_assignments(41)] == [1]
    assert index.active_assignments(999) == []


def test_leadership_unit_ids(battalion_users):
    assignments = [
        UnitAssignment(id=1, user_id=41, unit_id=4, assignment_type=AssignmentType.PRIMARY),
        UnitAssignment(id=2, user_id=41, unit_id=6, leadership_role="Squad Leader", assignment_type=AssignmentType.ATTACHED),
    ]
    index = build_index(make_units(BATTALION), battalion_users, assignments)
    assert index.leadership_unit_ids(41) == {6}
