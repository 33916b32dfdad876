from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class AARContentItem(BaseModel):
    """A genuine Sustain / Improve / Action comment."""
    kind: Literal["content"] = "content"
    id: str
    text: str
    author_id: int
    author_rank: str = ""
    unit_id: int
    unit_level: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AARMetadataItem(BaseModel):
    """Bookkeeping attached to an AAR section (e.g. analysis markers). Never summarized."""
    kind: Literal["metadata"] = "metadata"
    id: str
    key: str
    value: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


AARItem = Annotated[Union[AARContentItem, AARMetadataItem], Field(discriminator="kind")]


class ScopedEvent(BaseModel):
    id: int
    title: str
    unit_id: int
    created_by: int
    step: int = Field(default=1, ge=1, le=8)
    participating_units: list[int] = Field(default_factory=list)


class ScopedAAR(BaseModel):
    id: int
    event_id: int
    unit_id: int
    created_by: int
    sustain_items: list[AARItem] = Field(default_factory=list)
    improve_items: list[AARItem] = Field(default_factory=list)
    action_items: list[AARItem] = Field(default_factory=list)

    def content_items(self, section: Optional[str] = None) -> list[AARContentItem]:
        sections = {
            "sustain": self.sustain_items,
            "improve": self.improve_items,
            "action": self.action_items,
        }
        if section:
            chosen = [sections[section]]
        else:
            chosen = list(sections.values())
        return [item for items in chosen for item in items if isinstance(item, AARContentItem)]


def aar_unit_id(aar: ScopedAAR) -> int:
    return aar.unit_id


def event_unit_id(event: ScopedEvent) -> int:
    return event.unit_id
