from __future__ import annotations

from typing import Iterable, Mapping, Optional

from echelon.config import HierarchySettings, settings


class LevelOrder:
    """
    Total order over unit levels plus the leadership vocabulary of each level.
    Rank 1 is the lowest echelon (Team by default).
    """

    def __init__(self, levels: Iterable[str], leadership_roles: Optional[Mapping[str, Iterable[str]]] = None):
        ordered = [str(level).strip() for level in levels if str(level).strip()]
        if len({level.lower() for level in ordered}) != len(ordered):
            raise ValueError("unit levels must be unique")
        self.levels = ordered
        self._rank = {level: idx + 1 for idx, level in enumerate(ordered)}
        self._lookup = {level.lower(): level for level in ordered}
        self._roles = {
            self.canonical(level) or level: tuple(roles)
            for level, roles in (leadership_roles or {}).items()
        }

    @classmethod
    def from_settings(cls, hierarchy: Optional[HierarchySettings] = None) -> "LevelOrder":
        cfg = hierarchy or settings.hierarchy
        return cls(cfg.unit_levels, cfg.leadership_roles)

    def canonical(self, level: Optional[str]) -> Optional[str]:
        if level is None:
            return None
        return self._lookup.get(str(level).strip().lower())

    def is_valid(self, level: Optional[str]) -> bool:
        return self.canonical(level) is not None

    def rank(self, level: Optional[str]) -> int:
        """0 for unknown levels, so they never outrank a known one."""
        canonical = self.canonical(level)
        return self._rank.get(canonical, 0) if canonical else 0

    def is_higher(self, level: Optional[str], than: Optional[str]) -> bool:
        """True iff `level` is strictly higher-order than `than` (both known)."""
        if not self.is_valid(level) or not self.is_valid(than):
            return False
        return self.rank(level) > self.rank(than)

    def leadership_vocabulary(self, level: Optional[str]) -> tuple[str, ...]:
        canonical = self.canonical(level)
        if not canonical:
            return ()
        return self._roles.get(canonical, ())

    def as_dict(self) -> dict[str, int]:
        return dict(self._rank)
