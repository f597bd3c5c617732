"""
Matching Engine Guardrail Tests

Verify:
1. Requests: self guard, duplicate guard, re-send after reject/cancel
2. Respond: receiver only, one-shot, accept merges capacity atomically
3. Cancel: pending withdraw, accepted match reversal restores plans
4. reject_plan: idempotent, hides plan from recommendations
5. Recommendations: exclusions, threshold, ordering, NoActivePlanError
6. Search: tolerance window, group size filter, paging
7. Statistics: counts and success rate
8. Notifications: best effort, never roll back
9. Conflicts: retried once, then surfaced with nothing applied
"""

from datetime import date, timedelta

import pytest

from travelmate.core.errors import (
    AlreadyRespondedError,
    CapacityExceededError,
    ConflictError,
    DuplicateRequestError,
    ForbiddenError,
    InvalidStateError,
    NoActivePlanError,
    NotFoundError,
    SelfRequestError,
    ValidationError,
)
from travelmate.features.matching.ledger import CapacityLedger
from travelmate.features.matching.repository import InMemoryMatchingRepository
from travelmate.features.matching.service import MatchingEngine
from travelmate.features.plans.store import InMemoryPlanStore
from travelmate.models.match import MatchRequest, MatchStatus, SearchCriteria
from travelmate.models.notification import NotificationKind


class TestSendRequest:
    def test_send_creates_pending_request(self, engine, seeded, clock):
        request = engine.send_request("alice", "bob", "plan-bob", "Let's travel together")

        assert request.status == MatchStatus.PENDING
        assert request.requester_id == "alice"
        assert request.receiver_id == "bob"
        assert request.created_at == clock.now
        assert request.responded_at is None
        assert seeded.requests.get(request.request_id) is not None

    def test_send_notifies_receiver(self, engine, seeded, sink):
        engine.send_request("alice", "bob", "plan-bob")

        assert len(sink.sent) == 1
        notification = sink.sent[0]
        assert notification.target_user_id == "bob"
        assert notification.sender_name == "Alice"
        assert notification.kind == NotificationKind.MATCH_REQUEST
        assert "Alice" in notification.message

    def test_self_request_rejected(self, engine, seeded):
        with pytest.raises(SelfRequestError):
            engine.send_request("alice", "alice", "plan-alice")

    def test_self_guard_runs_before_lookups(self, engine, seeded):
        with pytest.raises(SelfRequestError):
            engine.send_request("ghost", "ghost", "missing-plan")

    def test_duplicate_pending_rejected(self, engine, seeded):
        engine.send_request("alice", "bob", "plan-bob")
        with pytest.raises(DuplicateRequestError):
            engine.send_request("alice", "bob", "plan-bob")

    def test_reverse_direction_is_separate_pair(self, engine, seeded):
        engine.send_request("alice", "bob", "plan-bob")
        request = engine.send_request("bob", "alice", "plan-alice")
        assert request.status == MatchStatus.PENDING

    def test_resend_allowed_after_reject(self, engine, seeded):
        first = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(first.request_id, "bob", accept=False)

        second = engine.send_request("alice", "bob", "plan-bob")
        assert second.request_id != first.request_id

    def test_resend_allowed_after_cancel(self, engine, seeded):
        first = engine.send_request("alice", "bob", "plan-bob")
        engine.cancel_request(first.request_id, "alice")

        second = engine.send_request("alice", "bob", "plan-bob")
        assert second.status == MatchStatus.PENDING

    def test_unknown_receiver(self, engine, seeded):
        with pytest.raises(NotFoundError):
            engine.send_request("alice", "zed", "plan-bob")

    def test_unknown_plan(self, engine, seeded):
        with pytest.raises(NotFoundError):
            engine.send_request("alice", "bob", "plan-missing")

    def test_message_length_limit(self, engine, seeded):
        engine.send_request("alice", "bob", "plan-bob", "x" * 500)
        with pytest.raises(ValidationError):
            engine.send_request("alice", "carol", "plan-carol", "x" * 501)
        assert engine.get_sent("alice")[0].receiver_id == "bob"

    def test_configured_limit_above_default(self, seeded, directory, sink, clock):
        engine = MatchingEngine(seeded, directory, sink, message_max_length=1000, clock=clock)

        request = engine.send_request("alice", "bob", "plan-bob", "x" * 600)

        assert len(request.message) == 600
        with pytest.raises(ValidationError):
            engine.send_request("alice", "carol", "plan-carol", "x" * 1001)


class TestRespond:
    def test_accept_merges_capacity(self, engine, seeded, clock):
        request = engine.send_request("alice", "bob", "plan-bob")
        clock.advance(hours=3)

        accepted = engine.respond(request.request_id, "bob", accept=True)

        assert accepted.status == MatchStatus.ACCEPTED
        assert accepted.responded_at == clock.now
        assert accepted.merge is not None
        assert accepted.merge.merged_headcount == 1

        bob_plan = seeded.plans.get("plan-bob")
        alice_plan = seeded.plans.get("plan-alice")
        assert bob_plan.current_size == 2
        assert bob_plan.recruiting is True
        assert alice_plan.recruiting is False
        assert bob_plan.current_size <= bob_plan.target_size

    def test_accept_fills_plan(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice", current_size=2))
        repository.plans.add(make_plan("plan-bob", "bob", current_size=2, target_size=4))
        request = engine.send_request("alice", "bob", "plan-bob")

        engine.respond(request.request_id, "bob", accept=True)

        bob_plan = repository.plans.get("plan-bob")
        assert bob_plan.current_size == 4
        assert bob_plan.recruiting is False

    def test_accept_notifies_requester(self, engine, seeded, sink):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)

        notification = sink.for_user("alice")[-1]
        assert notification.sender_name == "Bob"
        assert "accepted" in notification.message

    def test_reject_leaves_capacity_alone(self, engine, seeded, sink):
        request = engine.send_request("alice", "bob", "plan-bob")
        rejected = engine.respond(request.request_id, "bob", accept=False)

        assert rejected.status == MatchStatus.REJECTED
        assert rejected.responded_at is not None
        assert seeded.plans.get("plan-bob").current_size == 1
        assert seeded.plans.get("plan-alice").recruiting is True
        assert sink.for_user("alice")

    def test_only_receiver_may_respond(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        with pytest.raises(ForbiddenError):
            engine.respond(request.request_id, "alice", accept=True)
        with pytest.raises(ForbiddenError):
            engine.respond(request.request_id, "carol", accept=True)

    def test_respond_is_one_shot(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)

        with pytest.raises(AlreadyRespondedError):
            engine.respond(request.request_id, "bob", accept=True)
        with pytest.raises(AlreadyRespondedError):
            engine.respond(request.request_id, "bob", accept=False)
        assert seeded.plans.get("plan-bob").current_size == 2

    def test_missing_request(self, engine, seeded):
        with pytest.raises(NotFoundError):
            engine.respond("nope", "bob", accept=True)

    def test_overflow_applies_nothing(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice", current_size=2))
        repository.plans.add(make_plan("plan-bob", "bob", current_size=3, target_size=4))
        request = engine.send_request("alice", "bob", "plan-bob")

        with pytest.raises(CapacityExceededError):
            engine.respond(request.request_id, "bob", accept=True)

        assert repository.requests.get(request.request_id).status == MatchStatus.PENDING
        assert repository.plans.get("plan-bob").current_size == 3
        assert repository.plans.get("plan-alice").recruiting is True

    def test_requester_without_plan(self, engine, seeded):
        request = engine.send_request("dave", "bob", "plan-bob")

        with pytest.raises(NoActivePlanError):
            engine.respond(request.request_id, "bob", accept=True)
        assert seeded.requests.get(request.request_id).status == MatchStatus.PENDING

    def test_request_plan_used_when_owned(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("bob-old", "bob", start_date=date(2025, 7, 1), end_date=date(2025, 7, 4)))
        repository.plans.add(make_plan("bob-new", "bob", start_date=date(2025, 9, 1), end_date=date(2025, 9, 4)))
        request = engine.send_request("alice", "bob", "bob-old")

        engine.respond(request.request_id, "bob", accept=True)

        assert repository.plans.get("bob-old").current_size == 2
        assert repository.plans.get("bob-new").current_size == 1


class TestCancel:
    def test_requester_cancels_pending(self, engine, seeded, clock):
        request = engine.send_request("alice", "bob", "plan-bob")
        clock.advance(minutes=5)

        cancelled = engine.cancel_request(request.request_id, "alice")

        assert cancelled.status == MatchStatus.CANCELLED
        assert cancelled.responded_at == clock.now

    def test_only_requester_cancels(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        with pytest.raises(ForbiddenError):
            engine.cancel_request(request.request_id, "bob")

    def test_cannot_cancel_answered_request(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=False)
        with pytest.raises(AlreadyRespondedError):
            engine.cancel_request(request.request_id, "alice")

    def test_cancel_accepted_restores_plans(self, engine, seeded, sink):
        before_alice = seeded.plans.get("plan-alice")
        before_bob = seeded.plans.get("plan-bob")
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)

        cancelled = engine.cancel_accepted_match(request.request_id, "bob")

        assert cancelled.status == MatchStatus.CANCELLED
        after_alice = seeded.plans.get("plan-alice")
        after_bob = seeded.plans.get("plan-bob")
        assert (after_alice.current_size, after_alice.recruiting) == (before_alice.current_size, before_alice.recruiting)
        assert (after_bob.current_size, after_bob.recruiting) == (before_bob.current_size, before_bob.recruiting)
        assert "cancelled" in sink.for_user("alice")[-1].message

    def test_either_party_may_cancel_match(self, engine, seeded, sink):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)

        engine.cancel_accepted_match(request.request_id, "alice")

        assert sink.for_user("bob")[-1].sender_name == "Alice"

    def test_outsider_cannot_cancel_match(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)
        with pytest.raises(ForbiddenError):
            engine.cancel_accepted_match(request.request_id, "carol")

    def test_cancel_match_requires_accepted(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        with pytest.raises(InvalidStateError):
            engine.cancel_accepted_match(request.request_id, "alice")

    def test_cancel_match_twice(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)
        engine.cancel_accepted_match(request.request_id, "alice")
        with pytest.raises(InvalidStateError):
            engine.cancel_accepted_match(request.request_id, "alice")
        assert seeded.plans.get("plan-bob").current_size == 1


class TestRejectPlan:
    def test_reject_plan_records_rejection(self, engine, seeded, sink):
        rejected = engine.reject_plan("alice", "plan-bob")

        assert rejected.status == MatchStatus.REJECTED
        assert rejected.receiver_id == "bob"
        assert rejected.responded_at is not None
        assert sink.sent == []

    def test_reject_plan_is_idempotent(self, engine, seeded):
        first = engine.reject_plan("alice", "plan-bob")
        second = engine.reject_plan("alice", "plan-bob")

        assert first.request_id == second.request_id
        assert len(engine.get_sent("alice")) == 1

    def test_reject_plan_hides_recommendation(self, engine, seeded):
        engine.reject_plan("alice", "plan-bob")
        plan_ids = [s.candidate.plan_id for s in engine.recommend("alice")]
        assert "plan-bob" not in plan_ids
        assert "plan-carol" in plan_ids

    def test_reject_plan_with_pending_request(self, engine, seeded):
        engine.send_request("alice", "bob", "plan-bob")
        with pytest.raises(DuplicateRequestError):
            engine.reject_plan("alice", "plan-bob")

    def test_reject_own_plan(self, engine, seeded):
        with pytest.raises(SelfRequestError):
            engine.reject_plan("alice", "plan-alice")


class TestRecommend:
    def test_no_plan_raises(self, engine, seeded):
        with pytest.raises(NoActivePlanError):
            engine.recommend("dave")

    def test_ranked_by_score(self, engine, seeded):
        results = engine.recommend("alice")

        assert [s.candidate.plan_id for s in results] == ["plan-bob", "plan-carol"]
        assert results[0].score == 100
        assert results[1].score == 95
        assert results[0].breakdown["destination"] == 50

    def test_ties_broken_by_plan_id(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-z", "bob"))
        repository.plans.add(make_plan("plan-a", "carol"))

        results = engine.recommend("alice")
        assert [s.candidate.plan_id for s in results] == ["plan-a", "plan-z"]

    def test_excludes_requested_and_restores_after_cancel(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        assert "plan-bob" not in [s.candidate.plan_id for s in engine.recommend("alice")]

        engine.cancel_request(request.request_id, "alice")
        assert "plan-bob" in [s.candidate.plan_id for s in engine.recommend("alice")]

    def test_excludes_non_recruiting(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-bob", "bob", recruiting=False))
        assert engine.recommend("alice") == []

    def test_below_threshold_dropped(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan(
            "plan-bob", "bob",
            destination="Busan",
            start_date=date(2025, 8, 1),
            end_date=date(2025, 8, 3),
        ))
        assert engine.recommend("alice") == []

    def test_capacity_blocks_candidate(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice", current_size=2))
        repository.plans.add(make_plan("plan-bob", "bob", current_size=3, target_size=4))
        repository.plans.add(make_plan("plan-carol", "carol", current_size=2, target_size=4))

        assert [s.candidate.plan_id for s in engine.recommend("alice")] == ["plan-carol"]

    def test_latest_plan_is_reference(self, engine, repository, make_plan):
        repository.plans.add(make_plan("alice-seoul", "alice"))
        repository.plans.add(make_plan(
            "alice-busan", "alice",
            destination="Busan",
            start_date=date(2025, 10, 1),
            end_date=date(2025, 10, 4),
        ))
        repository.plans.add(make_plan("plan-bob", "bob"))

        assert engine.recommend("alice") == []

    def test_unscorable_candidate_skipped(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-bob", "bob", start_date=None, end_date=None))
        repository.plans.add(make_plan("plan-carol", "carol"))

        assert [s.candidate.plan_id for s in engine.recommend("alice")] == ["plan-carol"]

    def test_threshold_is_configurable(self, repository, directory, sink, make_plan):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-bob", "bob", destination="Incheon"))
        strict = MatchingEngine(repository, directory, sink, min_score=95)
        lenient = MatchingEngine(repository, directory, sink, min_score=0)

        assert strict.recommend("alice") == []
        assert len(lenient.recommend("alice")) == 1


class TestSearch:
    def criteria(self, **overrides):
        fields = dict(destination="Seoul", start_date=date(2025, 7, 1), end_date=date(2025, 7, 4))
        fields.update(overrides)
        return SearchCriteria(**fields)

    def test_search_pages(self, engine, seeded):
        first = engine.search("dave", self.criteria(max_group_size=4, size=2))
        second = engine.search("dave", self.criteria(max_group_size=4, size=2, page=1))

        assert [s.candidate.plan_id for s in first] == ["plan-alice", "plan-bob"]
        assert [s.candidate.plan_id for s in second] == ["plan-carol"]
        assert first[0].score == 90

    def test_search_excludes_own_plans(self, engine, seeded):
        results = engine.search("alice", self.criteria())
        assert "plan-alice" not in [s.candidate.plan_id for s in results]

    def test_tolerance_widens_window(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-bob", "bob", start_date=date(2025, 7, 6), end_date=date(2025, 7, 8)))

        assert engine.search("dave", self.criteria(max_group_size=4)) == []
        results = engine.search("dave", self.criteria(max_group_size=4, date_tolerance_days=2))
        assert [s.candidate.plan_id for s in results] == ["plan-bob"]
        assert results[0].breakdown["dates"] == 0

    def test_group_size_filter(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-bob", "bob", target_size=6))
        repository.plans.add(make_plan("plan-carol", "carol", target_size=3))

        results = engine.search("dave", self.criteria(max_group_size=4))
        assert [s.candidate.plan_id for s in results] == ["plan-carol"]

    def test_group_size_defaults_to_own_plan(self, engine, seeded):
        results = engine.search("alice", self.criteria())
        assert all(s.breakdown["group_size"] == 15 for s in results)

    def test_inverted_window_rejected(self, engine, seeded):
        with pytest.raises(ValidationError):
            engine.search("alice", self.criteria(start_date=date(2025, 7, 9)))


class TestListings:
    def test_received_newest_first_with_filter(self, engine, seeded, clock):
        first = engine.send_request("alice", "bob", "plan-bob")
        clock.advance(minutes=1)
        second = engine.send_request("carol", "bob", "plan-bob")
        engine.respond(first.request_id, "bob", accept=False)

        received = engine.get_received("bob")
        assert [r.request_id for r in received] == [second.request_id, first.request_id]

        pending = engine.get_received("bob", MatchStatus.PENDING)
        assert [r.request_id for r in pending] == [second.request_id]

    def test_sent(self, engine, seeded):
        engine.send_request("alice", "bob", "plan-bob")
        engine.send_request("alice", "carol", "plan-carol")
        assert {r.receiver_id for r in engine.get_sent("alice")} == {"bob", "carol"}
        assert engine.get_sent("bob") == []

    def test_active_matches_both_sides(self, engine, seeded):
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)

        for_alice = engine.get_active_matches("alice")
        for_bob = engine.get_active_matches("bob")

        assert len(for_alice) == 1
        assert for_alice[0].partner.user_id == "bob"
        assert for_alice[0].plan.plan_id == "plan-bob"
        assert for_bob[0].partner.user_id == "alice"
        assert engine.get_active_matches("carol") == []

    def test_partner_without_display_name_gets_handle(self, engine, repository, make_plan):
        repository.plans.add(make_plan("plan-dave", "dave"))
        repository.plans.add(make_plan("plan-bob", "bob"))
        request = engine.send_request("dave", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)

        partner = engine.get_active_matches("bob")[0].partner
        assert partner.display_name.startswith("@u_")


class TestStatistics:
    def test_empty_statistics(self, engine):
        stats = engine.get_statistics()
        assert stats.total == 0
        assert stats.success_rate_percent == 0.0
        assert stats.average_response_time_hours is None
        assert stats.most_popular_destination is None

    def test_success_rate_sixty_percent(self, engine, seeded, clock):
        start = clock.now
        for i in range(100):
            status = MatchStatus.ACCEPTED if i < 60 else MatchStatus.REJECTED
            seeded.requests.add(MatchRequest(
                request_id=f"req-{i:03d}",
                requester_id=f"user-{i}",
                receiver_id="bob",
                plan_id="plan-bob",
                status=status,
                created_at=start,
                responded_at=start + timedelta(hours=2),
            ))

        stats = engine.get_statistics()

        assert stats.total == 100
        assert stats.accepted == 60
        assert stats.rejected == 40
        assert stats.pending == 0
        assert stats.active == 60
        assert stats.success_rate_percent == 60.0
        assert stats.average_response_time_hours == 2.0
        assert stats.most_popular_destination == "Seoul"
        assert stats.generated_at == clock.now

    def test_counts_follow_lifecycle(self, engine, seeded):
        a = engine.send_request("alice", "bob", "plan-bob")
        b = engine.send_request("carol", "bob", "plan-bob")
        engine.send_request("alice", "carol", "plan-carol")
        engine.respond(a.request_id, "bob", accept=True)
        engine.cancel_request(b.request_id, "carol")

        stats = engine.get_statistics()
        assert (stats.total, stats.accepted, stats.pending, stats.cancelled) == (3, 1, 1, 1)
        assert stats.success_rate_percent == 33.3


class ExplodingSink:
    def send(self, *args, **kwargs):
        raise RuntimeError("notification transport down")


class TestNotificationFailure:
    def test_failure_does_not_roll_back(self, repository, directory, make_plan, caplog):
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-bob", "bob"))
        engine = MatchingEngine(repository, directory, ExplodingSink())

        request = engine.send_request("alice", "bob", "plan-bob")
        accepted = engine.respond(request.request_id, "bob", accept=True)

        assert accepted.status == MatchStatus.ACCEPTED
        assert repository.plans.get("plan-bob").current_size == 2
        assert any(r.getMessage() == "notification dispatch failed" for r in caplog.records)


class FlakyPlanStore(InMemoryPlanStore):
    """Raises ConflictError on the next N saves."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    def save(self, plan):
        if self.failures > 0:
            self.failures -= 1
            raise ConflictError(f"Plan {plan.plan_id} changed concurrently")
        return super().save(plan)


class TestConflictRetry:
    def _engine(self, failures, directory, sink, make_plan):
        repository = InMemoryMatchingRepository(plans=FlakyPlanStore(failures))
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-bob", "bob"))
        return repository, MatchingEngine(repository, directory, sink, conflict_retries=1)

    def test_single_conflict_retried(self, directory, sink, make_plan):
        repository, engine = self._engine(1, directory, sink, make_plan)
        request = engine.send_request("alice", "bob", "plan-bob")

        accepted = engine.respond(request.request_id, "bob", accept=True)

        assert accepted.status == MatchStatus.ACCEPTED
        assert repository.plans.get("plan-bob").current_size == 2
        assert repository.plans.get("plan-bob").version == 1

    def test_repeated_conflict_surfaces(self, directory, sink, make_plan):
        repository, engine = self._engine(2, directory, sink, make_plan)
        request = engine.send_request("alice", "bob", "plan-bob")

        with pytest.raises(ConflictError):
            engine.respond(request.request_id, "bob", accept=True)

        assert repository.requests.get(request.request_id).status == MatchStatus.PENDING
        assert repository.plans.get("plan-bob").current_size == 1
        assert repository.plans.get("plan-alice").recruiting is True

    def test_ledger_errors_not_retried(self, directory, sink, make_plan):
        calls = []

        class CountingLedger(CapacityLedger):
            def reverse(self, sender_plan, receiver_plan, record):
                calls.append(record.receiver_plan_id)
                return CapacityLedger.reverse(sender_plan, receiver_plan, record)

        repository = InMemoryMatchingRepository()
        repository.plans.add(make_plan("plan-alice", "alice"))
        repository.plans.add(make_plan("plan-bob", "bob"))
        engine = MatchingEngine(repository, directory, sink, ledger=CountingLedger(), conflict_retries=3)
        request = engine.send_request("alice", "bob", "plan-bob")
        engine.respond(request.request_id, "bob", accept=True)
        drained = repository.plans.get("plan-bob").model_copy(update={"current_size": 0})
        repository.plans.save(drained)

        with pytest.raises(InvalidStateError):
            engine.cancel_accepted_match(request.request_id, "alice")

        assert calls == ["plan-bob"]
        assert repository.requests.get(request.request_id).status == MatchStatus.ACCEPTED
        assert repository.plans.get("plan-alice").recruiting is False

    def test_stale_version_rejected_by_store(self, make_plan):
        store = InMemoryPlanStore()
        plan = store.add(make_plan("plan-bob", "bob"))
        store.save(plan.model_copy(update={"current_size": 2}))

        with pytest.raises(ConflictError):
            store.save(plan.model_copy(update={"current_size": 3}))
