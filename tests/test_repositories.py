import pytest

from echelon.domain.models import AssignmentType, UnitAssignment
from echelon.exceptions import DataSourceError


def test_snapshot_holds_live_rows_only(repo, seeded):
    with repo.session(write=True) as s:
        s.tombstone_unit(seeded.units.a2.id)
    snapshot = repo.load_snapshot()
    assert len(snapshot.units) == 7
    assert len(snapshot.users) == 9
    # admin and b11_soldier have no assignment rows yet.
    assert len(snapshot.assignments) == 7


def test_users_by_unit_ids_includes_attached_members(repo, seeded):
    with repo.session(write=True) as s:
        s.write_assignment(
            UnitAssignment(
                user_id=seeded.users.bravo_1sg.id,
                unit_id=seeded.units.a1.id,
                assignment_type=AssignmentType.ATTACHED,
            )
        )
    with repo.session() as s:
        usernames = [u.username for u in s.fetch_users_by_unit_ids([seeded.units.a1.id])]
        assert s.fetch_users_by_unit_ids([]) == []
    assert usernames == ["bravo_1sg", "a1_pl", "a1_soldier"]


def test_end_assignment_is_single_shot(repo, seeded):
    with repo.session(write=True) as s:
        assignment = s.fetch_active_assignments(seeded.users.a1_soldier.id)[0]
        assert s.end_assignment(assignment.id) is True
        assert s.end_assignment(assignment.id) is False
        assert s.fetch_active_assignments(seeded.users.a1_soldier.id) == []


def test_write_unit_on_missing_row_fails(repo, seeded):
    unit = seeded.units.a2.model_copy(update={"id": 999})
    with pytest.raises(DataSourceError):
        with repo.session(write=True) as s:
            s.write_unit(unit)


def test_failed_write_session_rolls_back(repo, seeded):
    with pytest.raises(DataSourceError):
        with repo.session(write=True) as s:
            s.insert_unit("Temp", "Platoon", seeded.units.alpha.id, "TEMP0001")
            s.insert_unit("Clash", "Platoon", seeded.units.alpha.id, "TEMP0001")
    with repo.session() as s:
        assert s.fetch_unit_by_referral_code("TEMP0001") is None


def test_audit_details_round_trip(repo, seeded):
    with repo.session(write=True) as s:
        s.record_audit(seeded.users.bn_cdr.id, "update_unit", {"unit_id": 4, "after": {"name": "Renamed"}})
    with repo.session() as s:
        entry = s.fetch_audit(limit=1)[0]
    assert entry["action"] == "update_unit"
    assert entry["details"] == {"unit_id": 4, "after": {"name": "Renamed"}}
