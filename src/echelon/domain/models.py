from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class MilitaryRole(str, Enum):
    COMMANDER = "Commander"
    XO = "XO"
    FIRST_SERGEANT = "First Sergeant"
    SECTION_SERGEANT = "Section Sergeant"
    PLATOON_LEADER = "Platoon Leader"
    PLATOON_SERGEANT = "Platoon Sergeant"
    SQUAD_LEADER = "Squad Leader"
    TEAM_LEADER = "Team Leader"
    SOLDIER = "Soldier"
    ADMIN = "admin"


# Command authority, highest first. ADMIN is a system role and is not part of it.
ROLE_AUTHORITY: tuple[MilitaryRole, ...] = (
    MilitaryRole.COMMANDER,
    MilitaryRole.XO,
    MilitaryRole.FIRST_SERGEANT,
    MilitaryRole.SECTION_SERGEANT,
    MilitaryRole.PLATOON_LEADER,
    MilitaryRole.PLATOON_SERGEANT,
    MilitaryRole.SQUAD_LEADER,
    MilitaryRole.TEAM_LEADER,
    MilitaryRole.SOLDIER,
)


def role_authority(role: Optional[str]) -> int:
    """
    Higher number = more authority. Soldier is 1, Commander is len(ROLE_AUTHORITY).
    Unknown roles and ADMIN score 0.
    """
    for idx, candidate in enumerate(ROLE_AUTHORITY):
        if candidate.value == role:
            return len(ROLE_AUTHORITY) - idx
    return 0


class UnitLevel(str, Enum):
    """Default echelon names; the effective ordering comes from HierarchySettings.unit_levels."""

    TEAM = "Team"
    SQUAD = "Squad"
    SECTION = "Section"
    PLATOON = "Platoon"
    COMPANY = "Company"
    BATTALION = "Battalion"
    BRIGADE = "Brigade"
    DIVISION = "Division"


class AssignmentType(str, Enum):
    PRIMARY = "PRIMARY"
    ATTACHED = "ATTACHED"
    TEMPORARY = "TEMPORARY"
    DUAL_HATTED = "DUAL_HATTED"


def normalize_leadership_role(value: Any) -> Optional[str]:
    """Blank and the UI sentinel "none" both mean no leadership role."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "none":
        return None
    return text


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class Unit(BaseModel):
    id: int
    name: str
    unit_level: str
    parent_id: Optional[int] = None
    referral_code: str = ""
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_ts(cls, value: Any) -> Optional[datetime]:
        return _coerce_datetime(value)


class User(BaseModel):
    """
    A person in the unit directory.
    unit_id is the legacy primary-unit pointer, mirrored from the PRIMARY assignment.
    """
    id: int
    username: str
    name: str = ""
    rank: str = ""
    role: str = MilitaryRole.SOLDIER.value
    unit_id: Optional[int] = None
    bio: Optional[str] = None
    is_deleted: bool = False


class UnitAssignment(BaseModel):
    # id is None for a synthesized legacy PRIMARY or a not-yet-written assignment.
    id: Optional[int] = None
    user_id: int
    unit_id: int
    assignment_type: AssignmentType = AssignmentType.PRIMARY
    leadership_role: Optional[str] = None
    assigned_by: Optional[int] = None
    start_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    end_date: Optional[datetime] = None

    @field_validator("start_date", mode="before")
    @classmethod
    def _coerce_start(cls, value: Any) -> datetime:
        return _coerce_datetime(value) or datetime.now(UTC)

    @field_validator("end_date", mode="before")
    @classmethod
    def _coerce_end(cls, value: Any) -> Optional[datetime]:
        return _coerce_datetime(value)

    @field_validator("leadership_role", mode="before")
    @classmethod
    def _blank_role(cls, value: Any) -> Optional[str]:
        return normalize_leadership_role(value)

    @property
    def is_active(self) -> bool:
        return self.end_date is None

    @property
    def is_primary(self) -> bool:
        return self.assignment_type == AssignmentType.PRIMARY


class Actor(BaseModel):
    """
    The authenticated user on whose behalf an operation runs.
    Supplied by the external auth layer and passed explicitly to every call.
    """
    id: Optional[int] = None
    role: str = MilitaryRole.SOLDIER.value
    unit_id: Optional[int] = None

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, role=user.role, unit_id=user.unit_id)


# ----- assignment batch operations (tagged by `kind`) ------------------------
class CreateAssignmentOp(BaseModel):
    kind: Literal["create"] = "create"
    unit_id: int
    assignment_type: AssignmentType = AssignmentType.ATTACHED
    leadership_role: Optional[str] = None


class PromoteAssignmentOp(BaseModel):
    """Make the active assignment at unit_id PRIMARY; the previous PRIMARY becomes ATTACHED."""
    kind: Literal["promote"] = "promote"
    unit_id: int


class EndAssignmentOp(BaseModel):
    kind: Literal["end"] = "end"
    unit_id: int


class SetLeadershipOp(BaseModel):
    kind: Literal["set_leadership"] = "set_leadership"
    unit_id: int
    leadership_role: Optional[str] = None


AssignmentOperation = Annotated[
    Union[CreateAssignmentOp, PromoteAssignmentOp, EndAssignmentOp, SetLeadershipOp],
    Field(discriminator="kind"),
]
