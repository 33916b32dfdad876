import secrets
import sys

from echelon.api.deps import get_db
from echelon.data.repositories import HierarchyRepository
from echelon.hierarchy import LevelOrder

if __name__ == "__main__":
    print("Initializing Database...")
    db = get_db()
    print(f"Database initialized at: {db.db_path.resolve()}")

    # Bootstrap a root unit and a system admin so the first commanders can be onboarded.
    name = sys.argv[1] if len(sys.argv) > 1 else "Headquarters"
    level = LevelOrder.from_settings().canonical(sys.argv[2] if len(sys.argv) > 2 else "Battalion")
    if level is None:
        sys.exit(f"Unknown unit level; expected one of {LevelOrder.from_settings().levels}")
    repo = HierarchyRepository(db)
    with repo.session(write=True) as s:
        if s.fetch_user_by_username("admin") is not None:
            print("Admin user already exists; nothing to do.")
        else:
            roots = [u for u in s.fetch_all_units() if u.parent_id is None]
            unit = roots[0] if roots else s.insert_unit(name, level, None, secrets.token_hex(4).upper())
            admin = s.insert_user("admin", "System Admin", "", "admin", unit.id)
            s.record_audit(None, "bootstrap", {"unit_id": unit.id, "admin_id": admin.id})
            print(f"Root unit {unit.name} (referral code {unit.referral_code}), admin user id {admin.id}")

    print("Done.")
