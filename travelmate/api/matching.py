"""
travelmate/api/matching.py
Matching API: recommendations, search, match requests, active matches, statistics.

Caller identity comes from the X-User-Id header (set by the auth gateway).
Domain errors propagate to the AppError handlers registered in main.py.
"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import ValidationError as PydanticValidationError

from travelmate.core.errors import ForbiddenError, ValidationError
from travelmate.features.matching.service import MatchingEngine, get_matching_engine
from travelmate.models.match import MatchStatus, RespondMatchRequest, SearchCriteria, SendMatchRequest
from travelmate.models.user import UserRole

router = APIRouter(prefix="/v1/match", tags=["matching"])


def current_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def _dump(items) -> list:
    return [item.model_dump(mode="json") for item in items]


@router.get("/recommendations")
def recommendations_endpoint(
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Recruiting plans ranked against the caller's most recent plan"""
    results = engine.recommend(user_id)
    return {"success": True, "data": _dump(results), "count": len(results)}


@router.get("/search")
def search_endpoint(
    destination: str,
    start_date: date,
    end_date: date,
    style_tags: List[str] = Query(default=[]),
    max_group_size: Optional[int] = None,
    date_tolerance_days: int = 0,
    page: int = 0,
    size: int = 20,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Ad-hoc partner search"""
    try:
        criteria = SearchCriteria(
            destination=destination,
            start_date=start_date,
            end_date=end_date,
            style_tags=style_tags,
            max_group_size=max_group_size,
            date_tolerance_days=date_tolerance_days,
            page=page,
            size=size,
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid search criteria: {e.errors()[0]['msg']}") from e
    results = engine.search(user_id, criteria)
    return {"success": True, "data": _dump(results), "page": criteria.page, "size": criteria.size}


@router.post("/requests", status_code=201)
def send_request_endpoint(
    body: SendMatchRequest,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Send a match request to another plan owner"""
    request = engine.send_request(user_id, body.receiver_id, body.plan_id, body.message)
    return {"success": True, "data": request.model_dump(mode="json")}


@router.get("/requests/received")
def received_requests_endpoint(
    status: Optional[MatchStatus] = None,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    requests = engine.get_received(user_id, status)
    return {"success": True, "data": _dump(requests), "count": len(requests)}


@router.get("/requests/sent")
def sent_requests_endpoint(
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    requests = engine.get_sent(user_id)
    return {"success": True, "data": _dump(requests), "count": len(requests)}


@router.post("/requests/{request_id}/respond")
def respond_endpoint(
    request_id: str,
    body: RespondMatchRequest,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Accept or reject a received request (receiver only)"""
    request = engine.respond(request_id, user_id, body.accept)
    return {"success": True, "data": request.model_dump(mode="json")}


@router.post("/requests/{request_id}/cancel")
def cancel_request_endpoint(
    request_id: str,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Withdraw a pending request (requester only)"""
    request = engine.cancel_request(request_id, user_id)
    return {"success": True, "data": request.model_dump(mode="json")}


@router.post("/requests/{request_id}/cancel-accepted")
def cancel_accepted_endpoint(
    request_id: str,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Undo an accepted match (either participant)"""
    request = engine.cancel_accepted_match(request_id, user_id)
    return {"success": True, "data": request.model_dump(mode="json")}


@router.post("/plans/{plan_id}/reject")
def reject_plan_endpoint(
    plan_id: str,
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Hide a recommended plan from the caller's recommendations"""
    request = engine.reject_plan(user_id, plan_id)
    return {"success": True, "data": request.model_dump(mode="json")}


@router.get("/active")
def active_matches_endpoint(
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    matches = engine.get_active_matches(user_id)
    return {"success": True, "data": _dump(matches), "count": len(matches)}


@router.get("/statistics")
def statistics_endpoint(
    user_id: str = Depends(current_user_id),
    engine: MatchingEngine = Depends(get_matching_engine),
):
    """Aggregate match statistics (admin only)"""
    caller = engine.users.get(user_id)
    if caller is None or caller.role != UserRole.ADMIN:
        raise ForbiddenError("Admin role required")
    return {"success": True, "data": engine.get_statistics().model_dump(mode="json")}
