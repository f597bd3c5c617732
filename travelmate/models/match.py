"""
travelmate/models/match.py

Match request models: request lifecycle, recommendations, statistics.
"""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from travelmate.models.plan import TravelPlanSnapshot
from travelmate.models.user import UserSummary


class MatchStatus(str, Enum):
    """Request lifecycle: pending -> accepted | rejected | cancelled; accepted -> cancelled"""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class CapacityMerge(BaseModel):
    """What the capacity ledger changed when a request was accepted"""

    model_config = ConfigDict(frozen=True)

    requester_plan_id: str
    receiver_plan_id: str
    merged_headcount: int = Field(ge=0)
    requester_was_recruiting: bool
    receiver_was_recruiting: bool


class MatchRequest(BaseModel):
    """Proposal from one plan owner to another"""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(description="UUID")
    requester_id: str
    receiver_id: str
    plan_id: str = Field(description="Plan the request refers to (normally the receiver's)")
    status: MatchStatus = Field(default=MatchStatus.PENDING)
    message: Optional[str] = None
    created_at: datetime
    responded_at: Optional[datetime] = None
    version: int = 0
    merge: Optional[CapacityMerge] = None

    @model_validator(mode="after")
    def _check_lifecycle(self):
        if self.requester_id == self.receiver_id:
            raise ValueError("requester and receiver must differ")
        if (self.status == MatchStatus.PENDING) != (self.responded_at is None):
            raise ValueError("responded_at is set exactly when the request is no longer pending")
        return self


class ScoredPlan(BaseModel):
    """A candidate plan with its compatibility score"""

    model_config = ConfigDict(frozen=True)

    candidate: TravelPlanSnapshot
    score: int = Field(ge=0, le=100)
    breakdown: dict = Field(default_factory=dict)


class ActiveMatch(BaseModel):
    """An accepted match from one participant's point of view"""

    model_config = ConfigDict(frozen=True)

    request_id: str
    partner: UserSummary
    plan: TravelPlanSnapshot
    matched_at: Optional[datetime] = None


class MatchStatistics(BaseModel):
    """Aggregate view over all match requests (admin only)"""

    model_config = ConfigDict(frozen=True)

    total: int
    accepted: int
    rejected: int
    pending: int
    cancelled: int
    active: int
    success_rate_percent: float
    average_response_time_hours: Optional[float] = None
    most_popular_destination: Optional[str] = None
    generated_at: datetime


class SearchCriteria(BaseModel):
    """Ad-hoc partner search parameters"""

    destination: str = Field(min_length=1)
    start_date: date
    end_date: date
    style_tags: List[str] = Field(default_factory=list)
    max_group_size: Optional[int] = Field(default=None, gt=0)
    date_tolerance_days: int = Field(default=0, ge=0, le=365)
    page: int = Field(default=0, ge=0)
    size: int = Field(default=20, ge=1, le=100)


class SendMatchRequest(BaseModel):
    """Request body for sending a match request"""

    receiver_id: str = Field(min_length=1)
    plan_id: str = Field(min_length=1)
    message: Optional[str] = None


class RespondMatchRequest(BaseModel):
    """Request body for accepting or rejecting a match request"""

    accept: bool
