from echelon.domain.models import (
    ROLE_AUTHORITY,
    Actor,
    AssignmentType,
    MilitaryRole,
    Unit,
    UnitAssignment,
    UnitLevel,
    User,
    role_authority,
)
from echelon.domain.records import AARContentItem, AARMetadataItem, ScopedAAR, ScopedEvent

__all__ = [
    "AARContentItem",
    "AARMetadataItem",
    "Actor",
    "AssignmentType",
    "MilitaryRole",
    "ROLE_AUTHORITY",
    "ScopedAAR",
    "ScopedEvent",
    "Unit",
    "UnitAssignment",
    "UnitLevel",
    "User",
    "role_authority",
]
