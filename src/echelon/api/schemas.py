from typing import List, Optional

from pydantic import BaseModel, Field

from echelon.domain.models import AssignmentOperation, MilitaryRole


class UnitCreate(BaseModel):
    name: str
    unit_level: str
    parent_id: Optional[int] = None


class UnitUpdate(BaseModel):
    """Only fields present in the request body are changed; parent_id=null detaches."""
    name: Optional[str] = None
    unit_level: Optional[str] = None
    parent_id: Optional[int] = None


class AssignmentBatch(BaseModel):
    operations: List[AssignmentOperation] = Field(min_length=1)


class PrimaryUnitChange(BaseModel):
    unit_id: int


class UserRegistration(BaseModel):
    username: str
    name: str
    rank: str = ""
    role: str = MilitaryRole.SOLDIER.value
    bio: Optional[str] = None
    referral_code: Optional[str] = None
    new_unit_name: Optional[str] = None
    new_unit_level: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Only fields present in the request body are changed."""
    name: Optional[str] = None
    rank: Optional[str] = None
    bio: Optional[str] = None
