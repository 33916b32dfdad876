from types import SimpleNamespace

import pytest

from echelon.data.repositories import HierarchyRepository
from echelon.data.storage import Database
from echelon.domain.models import Actor, AssignmentType, Unit, UnitAssignment, User
from echelon.hierarchy import AccessEvaluator, HierarchyIndex, MutationGuard, UnitTree
from echelon.services import HierarchyService

# Battalion(1) -> Company(2) -> Platoon(3) -> Squad(4)
CHAIN = [
    (1, "1st Battalion", "Battalion", None),
    (2, "Alpha Company", "Company", 1),
    (3, "1st Platoon", "Platoon", 2),
    (4, "1st Squad", "Squad", 3),
]

# Two companies under one battalion, with platoons and squads below.
BATTALION = [
    (1, "1st Battalion", "Battalion", None),
    (2, "Alpha Company", "Company", 1),
    (3, "Bravo Company", "Company", 1),
    (4, "A-1 Platoon", "Platoon", 2),
    (5, "A-2 Platoon", "Platoon", 2),
    (6, "A-1-1 Squad", "Squad", 4),
    (7, "B-1 Platoon", "Platoon", 3),
    (8, "B-1-1 Squad", "Squad", 7),
]


def make_units(rows):
    return [Unit(id=uid, name=name, unit_level=level, parent_id=parent) for uid, name, level, parent in rows]


def make_user(user_id, unit_id, role="Soldier", username=None):
    return User(id=user_id, username=username or f"user{user_id}", name=f"User {user_id}", role=role, unit_id=unit_id)


def build_index(units, users, assignments=(), hierarchy=None):
    return HierarchyIndex(UnitTree(units), users, assignments, hierarchy=hierarchy)


@pytest.fixture
def chain_index():
    users = [
        make_user(100, 3, "Soldier", "u"),
        make_user(200, 1, "Commander", "v"),
    ]
    return build_index(make_units(CHAIN), users)


@pytest.fixture
def battalion_users():
    return [
        make_user(1, 1, "admin", "admin"),
        make_user(10, 1, "Commander", "bn_cdr"),
        make_user(20, 2, "Commander", "alpha_cdr"),
        make_user(21, 2, "Soldier", "alpha_soldier"),
        make_user(30, 3, "First Sergeant", "bravo_1sg"),
        make_user(40, 4, "Platoon Leader", "a1_pl"),
        make_user(41, 4, "Soldier", "a1_soldier"),
        make_user(60, 6, "Squad Leader", "a11_sl"),
        make_user(80, 8, "Soldier", "b11_soldier"),
    ]


@pytest.fixture
def battalion_index(battalion_users):
    return build_index(make_units(BATTALION), battalion_users)


@pytest.fixture
def access(battalion_index):
    return AccessEvaluator(battalion_index)


@pytest.fixture
def guard(battalion_index):
    return MutationGuard(battalion_index)


def actor_for(index, user_id):
    return Actor.from_user(index.user(user_id))


# ----- persisted fixtures ------------------------------------------------------
def seed_battalion(repo: HierarchyRepository) -> SimpleNamespace:
    """
    Same shape as BATTALION, persisted. Every user except the admin and
    b11_soldier gets a PRIMARY assignment record; those two stay legacy-only.
    """
    with repo.session(write=True) as s:
        bn = s.insert_unit("1st Battalion", "Battalion", None, "BN000001")
        alpha = s.insert_unit("Alpha Company", "Company", bn.id, "ALPHA001")
        bravo = s.insert_unit("Bravo Company", "Company", bn.id, "BRAVO001")
        a1 = s.insert_unit("A-1 Platoon", "Platoon", alpha.id, "A1PLT001")
        a2 = s.insert_unit("A-2 Platoon", "Platoon", alpha.id, "A2PLT001")
        a11 = s.insert_unit("A-1-1 Squad", "Squad", a1.id, "A11SQD01")
        b1 = s.insert_unit("B-1 Platoon", "Platoon", bravo.id, "B1PLT001")
        b11 = s.insert_unit("B-1-1 Squad", "Squad", b1.id, "B11SQD01")
        units = SimpleNamespace(bn=bn, alpha=alpha, bravo=bravo, a1=a1, a2=a2, a11=a11, b1=b1, b11=b11)

        people = [
            ("admin", "admin", bn, False),
            ("bn_cdr", "Commander", bn, True),
            ("alpha_cdr", "Commander", alpha, True),
            ("alpha_soldier", "Soldier", alpha, True),
            ("bravo_1sg", "First Sergeant", bravo, True),
            ("a1_pl", "Platoon Leader", a1, True),
            ("a1_soldier", "Soldier", a1, True),
            ("a11_sl", "Squad Leader", a11, True),
            ("b11_soldier", "Soldier", b11, False),
        ]
        users = {}
        for username, role, unit, with_record in people:
            user = s.insert_user(username, username.replace("_", " ").title(), "", role, unit.id)
            if with_record:
                s.write_assignment(
                    UnitAssignment(user_id=user.id, unit_id=unit.id, assignment_type=AssignmentType.PRIMARY)
                )
            users[username] = user
    return SimpleNamespace(units=units, users=SimpleNamespace(**users))


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "echelon.db")


@pytest.fixture
def repo(db):
    return HierarchyRepository(db)


@pytest.fixture
def service(repo):
    return HierarchyService(repo)


@pytest.fixture
def seeded(repo):
    return seed_battalion(repo)


def as_actor(user):
    return Actor.from_user(user)
