from echelon.services.hierarchy import HierarchyService, HierarchyView
from echelon.services.roster import RosterService

__all__ = ["HierarchyService", "HierarchyView", "RosterService"]
