"""
travelmate/features/matching/store.py

Match request storage.

- InMemoryMatchRequestStore: dict-backed
- SqlMatchRequestStore: match_requests table, bound to the caller's session

Both enforce one pending request per (requester, receiver) on insert and
compare-and-set on version for updates.
"""

from collections import Counter
from typing import Dict, List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from travelmate.core.database import match_requests
from travelmate.core.errors import ConflictError, DuplicateRequestError, NotFoundError
from travelmate.models.match import CapacityMerge, MatchRequest, MatchStatus


def _newest_first(requests: List[MatchRequest]) -> List[MatchRequest]:
    return sorted(requests, key=lambda r: (r.created_at.timestamp(), r.request_id), reverse=True)


class InMemoryMatchRequestStore:

    def __init__(self):
        self._requests: Dict[str, MatchRequest] = {}

    def add(self, request: MatchRequest) -> MatchRequest:
        if request.request_id in self._requests:
            raise ConflictError(f"Match request already exists: {request.request_id}")
        if request.status == MatchStatus.PENDING and self.find_pending(request.requester_id, request.receiver_id):
            raise DuplicateRequestError(
                f"A pending request from {request.requester_id} to {request.receiver_id} already exists"
            )
        self._requests[request.request_id] = request
        return request

    def get(self, request_id: str) -> Optional[MatchRequest]:
        return self._requests.get(request_id)

    def update(self, request: MatchRequest) -> MatchRequest:
        stored = self._requests.get(request.request_id)
        if stored is None:
            raise NotFoundError(f"Match request not found: {request.request_id}")
        if stored.version != request.version:
            raise ConflictError(
                f"Match request {request.request_id} changed concurrently "
                f"(expected v{request.version}, found v{stored.version})"
            )
        saved = MatchRequest.model_validate({**request.model_dump(), "version": request.version + 1})
        self._requests[request.request_id] = saved
        return saved

    def find_pending(self, requester_id: str, receiver_id: str) -> Optional[MatchRequest]:
        for r in self._requests.values():
            if (
                r.requester_id == requester_id
                and r.receiver_id == receiver_id
                and r.status == MatchStatus.PENDING
            ):
                return r
        return None

    def list_by_requester(self, user_id: str) -> List[MatchRequest]:
        return _newest_first([r for r in self._requests.values() if r.requester_id == user_id])

    def list_by_receiver(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchRequest]:
        return _newest_first([
            r for r in self._requests.values()
            if r.receiver_id == user_id and (status is None or r.status == status)
        ])

    def list_for_participant(self, user_id: str, status: MatchStatus) -> List[MatchRequest]:
        return _newest_first([
            r for r in self._requests.values()
            if user_id in (r.requester_id, r.receiver_id) and r.status == status
        ])

    def status_counts(self) -> Dict[str, int]:
        return dict(Counter(r.status.value for r in self._requests.values()))

    def plan_request_counts(self) -> Dict[str, int]:
        return dict(Counter(r.plan_id for r in self._requests.values()))

    def response_times_seconds(self) -> List[float]:
        return [
            (r.responded_at - r.created_at).total_seconds()
            for r in self._requests.values()
            if r.responded_at is not None
        ]

    def active_pair_count(self) -> int:
        return len({
            frozenset((r.requester_id, r.receiver_id))
            for r in self._requests.values()
            if r.status == MatchStatus.ACCEPTED
        })

    def snapshot(self) -> Dict[str, MatchRequest]:
        return dict(self._requests)

    def restore(self, state: Dict[str, MatchRequest]) -> None:
        self._requests = dict(state)


def _is_pending_pair_violation(exc: IntegrityError) -> bool:
    text = str(exc.orig)
    # Postgres names the index; SQLite names the columns
    return (
        "uq_match_requests_pending_pair" in text
        or "match_requests.requester_id, match_requests.receiver_id" in text
    )


class SqlMatchRequestStore:

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _to_request(row) -> MatchRequest:
        merge = None
        if row.merged_headcount is not None:
            merge = CapacityMerge(
                requester_plan_id=row.requester_plan_id,
                receiver_plan_id=row.receiver_plan_id,
                merged_headcount=row.merged_headcount,
                requester_was_recruiting=row.requester_was_recruiting,
                receiver_was_recruiting=row.receiver_was_recruiting,
            )
        return MatchRequest(
            request_id=row.request_id,
            requester_id=row.requester_id,
            receiver_id=row.receiver_id,
            plan_id=row.plan_id,
            status=MatchStatus(row.status),
            message=row.message,
            created_at=row.created_at,
            responded_at=row.responded_at,
            version=row.version,
            merge=merge,
        )

    @staticmethod
    def _merge_columns(merge: Optional[CapacityMerge]) -> dict:
        if merge is None:
            return {
                "requester_plan_id": None,
                "receiver_plan_id": None,
                "merged_headcount": None,
                "requester_was_recruiting": None,
                "receiver_was_recruiting": None,
            }
        return merge.model_dump()

    def add(self, request: MatchRequest) -> MatchRequest:
        try:
            self.session.execute(
                insert(match_requests).values(
                    request_id=request.request_id,
                    requester_id=request.requester_id,
                    receiver_id=request.receiver_id,
                    plan_id=request.plan_id,
                    status=request.status.value,
                    message=request.message,
                    created_at=request.created_at,
                    responded_at=request.responded_at,
                    version=request.version,
                    **self._merge_columns(request.merge),
                )
            )
        except IntegrityError as exc:
            if _is_pending_pair_violation(exc):
                raise DuplicateRequestError(
                    f"A pending request from {request.requester_id} to {request.receiver_id} already exists"
                ) from exc
            raise
        return request

    def get(self, request_id: str) -> Optional[MatchRequest]:
        row = self.session.execute(
            select(match_requests).where(match_requests.c.request_id == request_id)
        ).first()
        return self._to_request(row) if row else None

    def update(self, request: MatchRequest) -> MatchRequest:
        saved = MatchRequest.model_validate({**request.model_dump(), "version": request.version + 1})
        result = self.session.execute(
            update(match_requests)
            .where(
                match_requests.c.request_id == request.request_id,
                match_requests.c.version == request.version,
            )
            .values(
                status=request.status.value,
                responded_at=request.responded_at,
                version=request.version + 1,
                **self._merge_columns(request.merge),
            )
        )
        if result.rowcount == 0:
            if self.get(request.request_id) is None:
                raise NotFoundError(f"Match request not found: {request.request_id}")
            raise ConflictError(f"Match request {request.request_id} changed concurrently (expected v{request.version})")
        return saved

    def find_pending(self, requester_id: str, receiver_id: str) -> Optional[MatchRequest]:
        row = self.session.execute(
            select(match_requests).where(
                match_requests.c.requester_id == requester_id,
                match_requests.c.receiver_id == receiver_id,
                match_requests.c.status == MatchStatus.PENDING.value,
            )
        ).first()
        return self._to_request(row) if row else None

    def _list(self, *conditions) -> List[MatchRequest]:
        rows = self.session.execute(
            select(match_requests)
            .where(*conditions)
            .order_by(match_requests.c.created_at.desc(), match_requests.c.request_id.desc())
        ).all()
        return [self._to_request(r) for r in rows]

    def list_by_requester(self, user_id: str) -> List[MatchRequest]:
        return self._list(match_requests.c.requester_id == user_id)

    def list_by_receiver(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchRequest]:
        conditions = [match_requests.c.receiver_id == user_id]
        if status is not None:
            conditions.append(match_requests.c.status == status.value)
        return self._list(*conditions)

    def list_for_participant(self, user_id: str, status: MatchStatus) -> List[MatchRequest]:
        return self._list(
            (match_requests.c.requester_id == user_id) | (match_requests.c.receiver_id == user_id),
            match_requests.c.status == status.value,
        )

    def status_counts(self) -> Dict[str, int]:
        rows = self.session.execute(
            select(match_requests.c.status, func.count()).group_by(match_requests.c.status)
        ).all()
        return {status: count for status, count in rows}

    def plan_request_counts(self) -> Dict[str, int]:
        rows = self.session.execute(
            select(match_requests.c.plan_id, func.count()).group_by(match_requests.c.plan_id)
        ).all()
        return {plan_id: count for plan_id, count in rows}

    def response_times_seconds(self) -> List[float]:
        rows = self.session.execute(
            select(match_requests.c.created_at, match_requests.c.responded_at)
            .where(match_requests.c.responded_at.isnot(None))
        ).all()
        return [(responded - created).total_seconds() for created, responded in rows]

    def active_pair_count(self) -> int:
        rows = self.session.execute(
            select(match_requests.c.requester_id, match_requests.c.receiver_id)
            .where(match_requests.c.status == MatchStatus.ACCEPTED.value)
            .distinct()
        ).all()
        return len({frozenset(pair) for pair in rows})
