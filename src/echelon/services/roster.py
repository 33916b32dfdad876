from __future__ import annotations

from typing import Dict, List

import pandas as pd

from echelon.domain.models import Actor
from echelon.services.hierarchy import HierarchyService, HierarchyView


class RosterService:
    """
    Personnel roll-up over the actor's accessible subtree.
    Counts are by primary unit, so each person is counted once per branch.
    """

    def __init__(self, hierarchy: HierarchyService):
        self.hierarchy = hierarchy

    def rollup(self, actor: Actor) -> List[Dict]:
        view = self.hierarchy.view()
        units = view.index.compute_accessible_units(actor)
        if not units:
            return []
        unit_ids = [u.id for u in units]
        members = self._members_frame(view, unit_ids)

        rows = []
        for unit in units:
            branch = {unit.id, *(u.id for u in view.tree.get_descendant_subtree(unit.id))}
            direct = members[members["unit_id"] == unit.id]
            subtree = members[members["unit_id"].isin(branch)]
            leader = view.index.get_unit_leader(unit.id)
            rows.append(
                {
                    "unit_id": unit.id,
                    "name": unit.name,
                    "unit_level": unit.unit_level,
                    "parent_id": unit.parent_id,
                    "subordinate_units": len(view.tree.get_children(unit.id)),
                    "direct_members": int(len(direct)),
                    "total_members": int(len(subtree)),
                    "leader_id": leader.id if leader else None,
                    "leader_name": leader.name if leader else None,
                    "roles": {str(k): int(v) for k, v in direct["role"].value_counts().items()},
                    "secondary_assignments": int(direct["secondary"].sum()) if not direct.empty else 0,
                }
            )
        return rows

    @staticmethod
    def _members_frame(view: HierarchyView, unit_ids: List[int]) -> pd.DataFrame:
        records = []
        for user in view.index.all_users():
            primary = view.index.primary_unit_id(user.id)
            if primary not in unit_ids:
                continue
            records.append(
                {
                    "user_id": user.id,
                    "unit_id": primary,
                    "role": user.role,
                    "secondary": len(view.index.active_assignments(user.id)) - 1,
                }
            )
        if not records:
            return pd.DataFrame(columns=["user_id", "unit_id", "role", "secondary"])
        return pd.DataFrame.from_records(records)
