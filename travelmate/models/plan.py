"""
travelmate/models/plan.py

Travel plan snapshot as seen by the matching engine.

Plans are owned by the plan service; matching only ever writes
current_size, recruiting and version (through the capacity ledger).
"""

from datetime import date, datetime
from typing import FrozenSet, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class TravelPlanSnapshot(BaseModel):
    """Read-only view of a travel plan"""

    model_config = ConfigDict(frozen=True)

    plan_id: str
    owner_id: str
    destination: str
    start_date: Optional[date] = Field(default=None, description="Inclusive")
    end_date: Optional[date] = Field(default=None, description="Inclusive")
    target_size: int = Field(gt=0, description="Desired group size")
    current_size: int = Field(default=1, ge=0, description="Committed headcount")
    recruiting: bool = True
    style_tags: Optional[FrozenSet[str]] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0)

    @field_validator("style_tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value):
        if value is None:
            return None
        return frozenset(str(tag).strip() for tag in value if str(tag).strip())

    @model_validator(mode="after")
    def _check_capacity(self):
        if self.current_size > self.target_size:
            raise ValueError(f"current_size {self.current_size} exceeds target_size {self.target_size}")
        if self.recruiting and self.is_full:
            raise ValueError("a full plan cannot be recruiting")
        return self

    @property
    def is_full(self) -> bool:
        return self.current_size >= self.target_size

    @property
    def duration_days(self) -> Optional[int]:
        if self.start_date is None or self.end_date is None:
            return None
        return (self.end_date - self.start_date).days + 1

    @property
    def open_seats(self) -> int:
        return max(0, self.target_size - self.current_size)
