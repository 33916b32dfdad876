from __future__ import annotations

import logging
from collections import deque
from typing import Iterable, Optional

from echelon.domain.models import Unit
from echelon.exceptions import CycleDetected, UnitNotFound
from echelon.hierarchy.levels import LevelOrder

logger = logging.getLogger(__name__)


class UnitTree:
    """
    In-memory view of all live units and their parent/child edges.

    Every upward or downward walk in the codebase goes through this class so
    termination bounds and cycle guards live in one place. Tombstoned units are
    dropped at construction; a parent_id that points at a missing unit ends the
    upward walk there.
    """

    def __init__(self, units: Iterable[Unit], levels: Optional[LevelOrder] = None):
        self.levels = levels or LevelOrder.from_settings()
        self._units: dict[int, Unit] = {u.id: u for u in units if not u.is_deleted}
        self._children: dict[int, list[int]] = {uid: [] for uid in self._units}
        for unit in self._units.values():
            if unit.parent_id is not None and unit.parent_id in self._units:
                self._children[unit.parent_id].append(unit.id)
        for child_ids in self._children.values():
            child_ids.sort()

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, unit_id: object) -> bool:
        return unit_id in self._units

    def all_units(self) -> list[Unit]:
        return [self._units[uid] for uid in sorted(self._units)]

    def get_unit(self, unit_id: Optional[int]) -> Unit:
        unit = self._units.get(unit_id) if unit_id is not None else None
        if unit is None:
            raise UnitNotFound(unit_id)
        return unit

    def find_unit(self, unit_id: Optional[int]) -> Optional[Unit]:
        return self._units.get(unit_id) if unit_id is not None else None

    def get_children(self, unit_id: int) -> list[Unit]:
        self.get_unit(unit_id)
        return [self._units[cid] for cid in self._children.get(unit_id, [])]

    def get_ancestor_chain(self, unit_id: int) -> list[Unit]:
        """
        Unit first, root last. Raises CycleDetected when the walk revisits a
        unit or exceeds the total unit count.
        """
        current = self.get_unit(unit_id)
        chain = [current]
        seen = {current.id}
        limit = len(self._units)
        while current.parent_id is not None:
            parent = self._units.get(current.parent_id)
            if parent is None:
                logger.warning(
                    "unit parent missing; treating as root",
                    extra={"unit_id": current.id, "parent_id": current.parent_id},
                )
                break
            if parent.id in seen or len(chain) >= limit:
                path = [u.id for u in chain] + [parent.id]
                self._report_cycle(unit_id, path)
            chain.append(parent)
            seen.add(parent.id)
            current = parent
        return chain

    def get_ancestor_ids(self, unit_id: int) -> list[int]:
        return [u.id for u in self.get_ancestor_chain(unit_id)[1:]]

    def get_descendant_subtree(self, unit_id: int) -> list[Unit]:
        """All descendants of unit_id (excluding itself), breadth-first."""
        self.get_unit(unit_id)
        visited = {unit_id}
        result: list[Unit] = []
        queue = deque(self._children.get(unit_id, []))
        while queue:
            child_id = queue.popleft()
            if child_id in visited:
                self._report_cycle(unit_id, sorted(visited) + [child_id])
            visited.add(child_id)
            result.append(self._units[child_id])
            queue.extend(self._children.get(child_id, []))
        return result

    def get_root(self, unit_id: int) -> Unit:
        return self.get_ancestor_chain(unit_id)[-1]

    def is_descendant(self, unit_id: int, of_unit_id: int) -> bool:
        """Strict descendant check, walking upward from unit_id."""
        if unit_id == of_unit_id:
            return False
        return of_unit_id in self.get_ancestor_ids(unit_id)

    def integrity_report(self) -> dict:
        """
        Full scan for broken invariants: cycles, dangling parents, parent levels
        not strictly above their children, and unknown unit levels.
        """
        cycles: list[list[int]] = []
        cyclic_units: set[int] = set()
        dangling: list[dict] = []
        level_violations: list[dict] = []
        unknown_levels: list[dict] = []

        for unit in self.all_units():
            if not self.levels.is_valid(unit.unit_level):
                unknown_levels.append({"unit_id": unit.id, "unit_level": unit.unit_level})
            if unit.parent_id is None:
                continue
            parent = self._units.get(unit.parent_id)
            if parent is None:
                dangling.append({"unit_id": unit.id, "parent_id": unit.parent_id})
                continue
            if not self.levels.is_higher(parent.unit_level, unit.unit_level):
                level_violations.append(
                    {
                        "unit_id": unit.id,
                        "unit_level": unit.unit_level,
                        "parent_id": parent.id,
                        "parent_level": parent.unit_level,
                    }
                )
            if unit.id in cyclic_units:
                continue
            try:
                self.get_ancestor_chain(unit.id)
            except CycleDetected as exc:
                path = exc.details.get("path", [])
                cyclic_units.update(path)
                cycles.append(path)

        return {
            "units": len(self._units),
            "cycles": cycles,
            "dangling_parents": dangling,
            "level_violations": level_violations,
            "unknown_levels": unknown_levels,
            "ok": not (cycles or dangling or level_violations or unknown_levels),
        }

    @staticmethod
    def _report_cycle(unit_id: int, path: list[int]) -> None:
        logger.error(
            "hierarchy integrity fault: parent cycle detected",
            extra={"unit_id": unit_id, "path": path},
        )
        raise CycleDetected(unit_id, path)
