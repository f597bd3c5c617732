"""
travelmate/features/matching/service.py
Matching engine: recommendations, search, match request lifecycle, statistics.

All mutating operations run in one repository transaction. Notifications
are dispatched after the transaction commits; a failing sink is logged and
never undoes the committed change.
"""

import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from travelmate.core.config import settings
from travelmate.core.errors import (
    AlreadyRespondedError,
    ConflictError,
    DuplicateRequestError,
    ForbiddenError,
    InvalidStateError,
    NoActivePlanError,
    NotFoundError,
    SelfRequestError,
    ValidationError,
)
from travelmate.core.logging import log_event
from travelmate.features.matching.ledger import CapacityLedger
from travelmate.features.matching.scorer import CompatibilityScorer, overlapping_days
from travelmate.models.match import (
    ActiveMatch,
    MatchRequest,
    MatchStatistics,
    MatchStatus,
    ScoredPlan,
    SearchCriteria,
)
from travelmate.models.notification import NotificationKind
from travelmate.models.plan import TravelPlanSnapshot
from travelmate.models.user import UserSummary


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ranked(scored: List[ScoredPlan]) -> List[ScoredPlan]:
    return sorted(scored, key=lambda s: (-s.score, s.candidate.plan_id))


class MatchingEngine:
    """Travel partner matching over a MatchingRepository unit of work."""

    def __init__(
        self,
        repository,
        users,
        notifications,
        scorer: Optional[CompatibilityScorer] = None,
        ledger: Optional[CapacityLedger] = None,
        min_score: Optional[int] = None,
        message_max_length: Optional[int] = None,
        conflict_retries: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.users = users
        self.notifications = notifications
        self.scorer = scorer or CompatibilityScorer()
        self.ledger = ledger or CapacityLedger()
        self.min_score = settings.MATCH_MIN_SCORE if min_score is None else min_score
        self.message_max_length = (
            settings.MATCH_MESSAGE_MAX_LENGTH if message_max_length is None else message_max_length
        )
        self.conflict_retries = settings.MATCH_CONFLICT_RETRIES if conflict_retries is None else conflict_retries
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _with_retry(self, operation: str, fn):
        attempt = 0
        while True:
            try:
                return fn()
            except ConflictError as e:
                if attempt >= self.conflict_retries:
                    raise
                attempt += 1
                log_event(
                    "warning",
                    f"{operation}: concurrent modification, retrying",
                    event_type=operation,
                    error_code=e.code,
                    extra={"attempt": attempt},
                )

    def _notify(self, target_user_id: str, sender_name: str, message: str) -> None:
        try:
            self.notifications.send(target_user_id, sender_name, NotificationKind.MATCH_REQUEST, message)
        except Exception as e:
            log_event(
                "error",
                "notification dispatch failed",
                user_id=target_user_id,
                event_type="notification.failed",
                extra={"error": str(e)},
            )

    def _user_or_placeholder(self, user_id: str) -> UserSummary:
        return self.users.get(user_id) or UserSummary(user_id=user_id)

    @staticmethod
    def _resolve_plan(tx, owner_id: str, plan_id: str) -> TravelPlanSnapshot:
        """The referenced plan when owner_id owns it, else owner_id's most recent plan."""
        plan = tx.plans.get(plan_id)
        if plan is not None and plan.owner_id == owner_id:
            return plan
        latest = tx.plans.latest_for_user(owner_id)
        if latest is None:
            raise NoActivePlanError(f"User {owner_id} has no travel plan")
        return latest

    def _score_candidates(self, reference: TravelPlanSnapshot, candidates) -> List[ScoredPlan]:
        scored = []
        for candidate in candidates:
            try:
                result = self.scorer.score(reference, candidate)
            except ValidationError as e:
                # Candidates with unusable dates are skipped, not fatal
                log_event("warning", "skipping unscorable plan", plan_id=candidate.plan_id, extra={"reason": e.message})
                continue
            if result.score < self.min_score:
                continue
            scored.append(ScoredPlan(candidate=candidate, score=result.score, breakdown=result.breakdown.to_dict()))
        return _ranked(scored)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def recommend(self, user_id: str) -> List[ScoredPlan]:
        """
        Rank other users' recruiting plans against the caller's most recent plan.

        Plans the caller already has a live (non-cancelled) request for are
        excluded, as are plans that cannot seat the caller's group.

        Raises:
            NoActivePlanError: caller has no plan
            ValidationError: caller's plan has no usable date range
        """
        with self.repository.transaction() as tx:
            reference = tx.plans.latest_for_user(user_id)
            if reference is None:
                raise NoActivePlanError(f"User {user_id} has no travel plan")
            self.scorer.check_dates(reference)

            requested = {
                r.plan_id for r in tx.requests.list_by_requester(user_id)
                if r.status != MatchStatus.CANCELLED
            }
            candidates = [
                p for p in tx.plans.list_excluding_user(user_id)
                if p.recruiting
                and p.plan_id not in requested
                and p.current_size + reference.current_size <= p.target_size
            ]

        results = self._score_candidates(reference, candidates)
        log_event(
            "info",
            "recommendations computed",
            user_id=user_id,
            plan_id=reference.plan_id,
            event_type="match.recommend",
            extra={"candidates": len(candidates), "returned": len(results)},
        )
        return results

    def search(self, user_id: str, criteria: SearchCriteria) -> List[ScoredPlan]:
        """Score recruiting plans against an ad-hoc plan built from the criteria, one page at a time."""
        if criteria.start_date > criteria.end_date:
            raise ValidationError("start_date must not be after end_date")

        tolerance = timedelta(days=criteria.date_tolerance_days)
        window_start = criteria.start_date - tolerance
        window_end = criteria.end_date + tolerance

        with self.repository.transaction() as tx:
            own_plan = tx.plans.latest_for_user(user_id)
            if criteria.max_group_size is not None:
                group_size = criteria.max_group_size
            elif own_plan is not None:
                group_size = own_plan.target_size
            else:
                group_size = 1

            reference = TravelPlanSnapshot(
                plan_id=f"search:{user_id}",
                owner_id=user_id,
                destination=criteria.destination,
                start_date=criteria.start_date,
                end_date=criteria.end_date,
                target_size=group_size,
                current_size=0,
                style_tags=criteria.style_tags,
            )
            candidates = [
                p for p in tx.plans.list_excluding_user(user_id)
                if p.recruiting
                and p.start_date is not None
                and p.end_date is not None
                and overlapping_days(window_start, window_end, p.start_date, p.end_date) > 0
                and (criteria.max_group_size is None or p.target_size <= criteria.max_group_size)
            ]

        results = self._score_candidates(reference, candidates)
        offset = criteria.page * criteria.size
        return results[offset:offset + criteria.size]

    # ------------------------------------------------------------------
    # Request lifecycle
    # ------------------------------------------------------------------

    def send_request(
        self,
        requester_id: str,
        receiver_id: str,
        plan_id: str,
        message: Optional[str] = None,
    ) -> MatchRequest:
        """
        Create a pending request and notify the receiver.

        Raises:
            SelfRequestError: requester and receiver are the same user
            DuplicateRequestError: a pending request between the pair already exists
            NotFoundError: unknown requester, receiver or plan
            ValidationError: message too long
        """
        if requester_id == receiver_id:
            raise SelfRequestError("Cannot send a match request to yourself")

        def _create():
            with self.repository.transaction() as tx:
                if tx.requests.find_pending(requester_id, receiver_id) is not None:
                    raise DuplicateRequestError(
                        f"A pending request from {requester_id} to {receiver_id} already exists"
                    )
                requester = self.users.get(requester_id)
                if requester is None:
                    raise NotFoundError(f"User not found: {requester_id}")
                if self.users.get(receiver_id) is None:
                    raise NotFoundError(f"User not found: {receiver_id}")
                if tx.plans.get(plan_id) is None:
                    raise NotFoundError(f"Plan not found: {plan_id}")
                if message is not None and len(message) > self.message_max_length:
                    raise ValidationError(f"Message exceeds {self.message_max_length} characters")

                request = MatchRequest(
                    request_id=str(uuid.uuid4()),
                    requester_id=requester_id,
                    receiver_id=receiver_id,
                    plan_id=plan_id,
                    status=MatchStatus.PENDING,
                    message=message,
                    created_at=self.clock(),
                )
                return tx.requests.add(request), requester

        request, requester = self._with_retry("match.send", _create)
        log_event(
            "info",
            "match request sent",
            user_id=requester_id,
            plan_id=plan_id,
            match_request_id=request.request_id,
            event_type="match.requested",
        )
        self._notify(receiver_id, requester.name, f"{requester.name} sent you a match request.")
        return request

    def respond(self, request_id: str, responder_id: str, accept: bool) -> MatchRequest:
        """
        Accept or reject a pending request. Only the receiver may respond.

        Accepting merges the requester's seat block into the receiver's plan
        in the same transaction as the status change.

        Raises:
            NotFoundError, ForbiddenError, AlreadyRespondedError,
            NoActivePlanError, CapacityExceededError
        """

        def _respond():
            with self.repository.transaction() as tx:
                request = tx.requests.get(request_id)
                if request is None:
                    raise NotFoundError(f"Match request not found: {request_id}")
                if request.receiver_id != responder_id:
                    raise ForbiddenError("Only the receiver can respond to a match request")
                if request.status != MatchStatus.PENDING:
                    raise AlreadyRespondedError(f"Match request {request_id} is already {request.status.value}")

                changes = {"responded_at": self.clock()}
                if accept:
                    sender_plan = self._resolve_plan(tx, request.requester_id, request.plan_id)
                    receiver_plan = self._resolve_plan(tx, request.receiver_id, request.plan_id)
                    merged_sender, merged_receiver, record = self.ledger.merge(sender_plan, receiver_plan)
                    tx.plans.save(merged_sender)
                    tx.plans.save(merged_receiver)
                    changes.update(status=MatchStatus.ACCEPTED, merge=record)
                else:
                    changes.update(status=MatchStatus.REJECTED)
                return tx.requests.update(request.model_copy(update=changes))

        updated = self._with_retry("match.respond", _respond)
        log_event(
            "info",
            f"match request {updated.status.value}",
            user_id=responder_id,
            plan_id=updated.plan_id,
            match_request_id=request_id,
            event_type=f"match.{updated.status.value}",
        )

        responder = self._user_or_placeholder(responder_id)
        if accept:
            text = f"{responder.name} accepted your match request. Start chatting!"
        else:
            text = f"{responder.name} declined your match request."
        self._notify(updated.requester_id, responder.name, text)
        return updated

    def cancel_request(self, request_id: str, caller_id: str) -> MatchRequest:
        """Withdraw a pending request (requester only). No capacity effect."""

        def _cancel():
            with self.repository.transaction() as tx:
                request = tx.requests.get(request_id)
                if request is None:
                    raise NotFoundError(f"Match request not found: {request_id}")
                if request.requester_id != caller_id:
                    raise ForbiddenError("Only the requester can cancel a match request")
                if request.status != MatchStatus.PENDING:
                    raise AlreadyRespondedError(f"Match request {request_id} is already {request.status.value}")
                return tx.requests.update(request.model_copy(update={
                    "status": MatchStatus.CANCELLED,
                    "responded_at": self.clock(),
                }))

        cancelled = self._with_retry("match.cancel", _cancel)
        log_event(
            "info",
            "match request cancelled",
            user_id=caller_id,
            match_request_id=request_id,
            event_type="match.cancelled",
        )
        return cancelled

    def cancel_accepted_match(self, request_id: str, caller_id: str) -> MatchRequest:
        """
        Undo an accepted match. Either participant may cancel.

        The recorded capacity merge is reversed and the counterparty notified.

        Raises:
            NotFoundError, ForbiddenError, InvalidStateError
        """

        def _cancel():
            with self.repository.transaction() as tx:
                request = tx.requests.get(request_id)
                if request is None:
                    raise NotFoundError(f"Match request not found: {request_id}")
                if caller_id not in (request.requester_id, request.receiver_id):
                    raise ForbiddenError("Only a participant can cancel a match")
                if request.status != MatchStatus.ACCEPTED:
                    raise InvalidStateError(f"Match request {request_id} is {request.status.value}, not accepted")
                record = request.merge
                if record is None:
                    raise InvalidStateError(f"Match request {request_id} has no recorded capacity merge")

                sender_plan = tx.plans.get(record.requester_plan_id)
                receiver_plan = tx.plans.get(record.receiver_plan_id)
                if sender_plan is None or receiver_plan is None:
                    raise NotFoundError("A plan from the recorded merge no longer exists")
                restored_sender, restored_receiver = self.ledger.reverse(sender_plan, receiver_plan, record)
                tx.plans.save(restored_sender)
                tx.plans.save(restored_receiver)
                # responded_at keeps the original acceptance time
                return tx.requests.update(request.model_copy(update={"status": MatchStatus.CANCELLED}))

        cancelled = self._with_retry("match.cancel_accepted", _cancel)
        log_event(
            "info",
            "accepted match cancelled",
            user_id=caller_id,
            match_request_id=request_id,
            event_type="match.unmatched",
        )

        counterparty_id = cancelled.receiver_id if caller_id == cancelled.requester_id else cancelled.requester_id
        caller = self._user_or_placeholder(caller_id)
        self._notify(counterparty_id, caller.name, f"{caller.name} cancelled your match.")
        return cancelled

    def reject_plan(self, sender_id: str, plan_id: str) -> MatchRequest:
        """
        Record that sender_id is not interested in plan_id.

        Stored as a rejected request to the plan owner so the plan drops out
        of recommendations. Idempotent; sends no notification.
        """

        def _reject():
            with self.repository.transaction() as tx:
                plan = tx.plans.get(plan_id)
                if plan is None:
                    raise NotFoundError(f"Plan not found: {plan_id}")
                if plan.owner_id == sender_id:
                    raise SelfRequestError("Cannot reject your own plan")
                if tx.requests.find_pending(sender_id, plan.owner_id) is not None:
                    raise DuplicateRequestError(
                        f"A pending request from {sender_id} to {plan.owner_id} already exists"
                    )
                for existing in tx.requests.list_by_requester(sender_id):
                    if existing.plan_id == plan_id and existing.status == MatchStatus.REJECTED:
                        return existing

                now = self.clock()
                return tx.requests.add(MatchRequest(
                    request_id=str(uuid.uuid4()),
                    requester_id=sender_id,
                    receiver_id=plan.owner_id,
                    plan_id=plan_id,
                    status=MatchStatus.REJECTED,
                    created_at=now,
                    responded_at=now,
                ))

        rejected = self._with_retry("match.reject_plan", _reject)
        log_event("info", "plan rejected", user_id=sender_id, plan_id=plan_id, event_type="match.plan_rejected")
        return rejected

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def get_received(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchRequest]:
        with self.repository.transaction() as tx:
            return tx.requests.list_by_receiver(user_id, status)

    def get_sent(self, user_id: str) -> List[MatchRequest]:
        with self.repository.transaction() as tx:
            return tx.requests.list_by_requester(user_id)

    def get_active_matches(self, user_id: str) -> List[ActiveMatch]:
        """Accepted matches where user_id is either party, with the partner and the joined plan."""
        with self.repository.transaction() as tx:
            accepted = tx.requests.list_for_participant(user_id, MatchStatus.ACCEPTED)
            pairs = []
            for request in accepted:
                plan_id = request.merge.receiver_plan_id if request.merge else request.plan_id
                plan = tx.plans.get(plan_id)
                if plan is not None:
                    pairs.append((request, plan))

        matches = []
        for request, plan in pairs:
            partner_id = request.receiver_id if request.requester_id == user_id else request.requester_id
            partner = self._user_or_placeholder(partner_id)
            matches.append(ActiveMatch(
                request_id=request.request_id,
                partner=partner.model_copy(update={"display_name": partner.name}),
                plan=plan,
                matched_at=request.responded_at,
            ))
        return matches

    def get_statistics(self) -> MatchStatistics:
        with self.repository.transaction() as tx:
            counts = tx.requests.status_counts()
            active = tx.requests.active_pair_count()
            response_times = tx.requests.response_times_seconds()
            per_plan = tx.requests.plan_request_counts()
            destinations = Counter()
            for plan_id, count in per_plan.items():
                plan = tx.plans.get(plan_id)
                if plan is not None:
                    destinations[plan.destination] += count

        total = sum(counts.values())
        accepted = counts.get(MatchStatus.ACCEPTED.value, 0)
        success_rate = round(accepted / total * 100, 1) if total else 0.0
        average_hours = (
            round(sum(response_times) / len(response_times) / 3600, 2) if response_times else None
        )
        most_popular = None
        if destinations:
            most_popular = min(destinations.items(), key=lambda kv: (-kv[1], kv[0]))[0]

        return MatchStatistics(
            total=total,
            accepted=accepted,
            rejected=counts.get(MatchStatus.REJECTED.value, 0),
            pending=counts.get(MatchStatus.PENDING.value, 0),
            cancelled=counts.get(MatchStatus.CANCELLED.value, 0),
            active=active,
            success_rate_percent=success_rate,
            average_response_time_hours=average_hours,
            most_popular_destination=most_popular,
            generated_at=self.clock(),
        )


_engine: Optional[MatchingEngine] = None


def build_matching_engine(database_url: Optional[str] = None) -> MatchingEngine:
    """In-memory engine when no DATABASE_URL is configured, SQL-backed otherwise."""
    from travelmate.features.matching.repository import InMemoryMatchingRepository, SqlMatchingRepository
    from travelmate.features.notifications.sink import build_notification_sink
    from travelmate.features.users.directory import InMemoryUserDirectory, SqlUserDirectory

    url = database_url if database_url is not None else settings.DATABASE_URL
    notifications = build_notification_sink(settings.NOTIFICATIONS_BACKEND)
    if url:
        from travelmate.core.database import get_session_factory, init_engine

        init_engine(url)
        session_factory = get_session_factory()
        return MatchingEngine(SqlMatchingRepository(session_factory), SqlUserDirectory(session_factory), notifications)
    return MatchingEngine(InMemoryMatchingRepository(), InMemoryUserDirectory(), notifications)


def get_matching_engine() -> MatchingEngine:
    """Process-wide engine, FastAPI dependency."""
    global _engine
    if _engine is None:
        _engine = build_matching_engine()
    return _engine


def set_matching_engine(engine: Optional[MatchingEngine]) -> None:
    global _engine
    _engine = engine
