from echelon.hierarchy.access import AccessEvaluator
from echelon.hierarchy.guard import AssignmentPlan, MutationGuard
from echelon.hierarchy.index import HierarchyIndex
from echelon.hierarchy.levels import LevelOrder
from echelon.hierarchy.tree import UnitTree

__all__ = [
    "AccessEvaluator",
    "AssignmentPlan",
    "HierarchyIndex",
    "LevelOrder",
    "MutationGuard",
    "UnitTree",
]
