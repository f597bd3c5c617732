"""
travelmate/features/plans/store.py

Travel plan storage as consumed by matching.

Two backends share one contract:
- InMemoryPlanStore: dict-backed, used when DATABASE_URL is unset and in tests
- SqlPlanStore: travel_plans table, bound to the caller's session

save() is compare-and-set on version; a stale write raises ConflictError.
"""

from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.orm import Session

from travelmate.core.database import travel_plans
from travelmate.core.errors import ConflictError, NotFoundError
from travelmate.models.plan import TravelPlanSnapshot


def _recency_key(plan: TravelPlanSnapshot):
    created = plan.created_at.timestamp() if plan.created_at else 0.0
    return (plan.start_date or date.min, created, plan.plan_id)


class InMemoryPlanStore:

    def __init__(self):
        self._plans: Dict[str, TravelPlanSnapshot] = {}

    def add(self, plan: TravelPlanSnapshot) -> TravelPlanSnapshot:
        if plan.plan_id in self._plans:
            raise ConflictError(f"Plan already exists: {plan.plan_id}")
        self._plans[plan.plan_id] = plan
        return plan

    def get(self, plan_id: str) -> Optional[TravelPlanSnapshot]:
        return self._plans.get(plan_id)

    def latest_for_user(self, user_id: str) -> Optional[TravelPlanSnapshot]:
        owned = self.list_for_user(user_id)
        if not owned:
            return None
        return max(owned, key=_recency_key)

    def list_for_user(self, user_id: str) -> List[TravelPlanSnapshot]:
        return [p for p in self._plans.values() if p.owner_id == user_id]

    def list_excluding_user(self, user_id: str) -> List[TravelPlanSnapshot]:
        return sorted(
            (p for p in self._plans.values() if p.owner_id != user_id),
            key=lambda p: p.plan_id,
        )

    def save(self, plan: TravelPlanSnapshot) -> TravelPlanSnapshot:
        stored = self._plans.get(plan.plan_id)
        if stored is None:
            raise NotFoundError(f"Plan not found: {plan.plan_id}")
        if stored.version != plan.version:
            raise ConflictError(
                f"Plan {plan.plan_id} changed concurrently (expected v{plan.version}, found v{stored.version})"
            )
        saved = TravelPlanSnapshot.model_validate({**plan.model_dump(), "version": plan.version + 1})
        self._plans[plan.plan_id] = saved
        return saved

    def snapshot(self) -> Dict[str, TravelPlanSnapshot]:
        return dict(self._plans)

    def restore(self, state: Dict[str, TravelPlanSnapshot]) -> None:
        self._plans = dict(state)


class SqlPlanStore:

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _to_snapshot(row) -> TravelPlanSnapshot:
        return TravelPlanSnapshot(
            plan_id=row.plan_id,
            owner_id=row.owner_id,
            destination=row.destination,
            start_date=row.start_date,
            end_date=row.end_date,
            target_size=row.target_size,
            current_size=row.current_size,
            recruiting=row.recruiting,
            style_tags=row.style_tags,
            description=row.description,
            created_at=row.created_at,
            version=row.version,
        )

    def add(self, plan: TravelPlanSnapshot) -> TravelPlanSnapshot:
        self.session.execute(
            insert(travel_plans).values(
                plan_id=plan.plan_id,
                owner_id=plan.owner_id,
                destination=plan.destination,
                start_date=plan.start_date,
                end_date=plan.end_date,
                target_size=plan.target_size,
                current_size=plan.current_size,
                recruiting=plan.recruiting,
                style_tags=sorted(plan.style_tags) if plan.style_tags is not None else None,
                description=plan.description,
                version=plan.version,
                created_at=plan.created_at or datetime.now(timezone.utc),
            )
        )
        return plan

    def get(self, plan_id: str) -> Optional[TravelPlanSnapshot]:
        row = self.session.execute(
            select(travel_plans).where(travel_plans.c.plan_id == plan_id)
        ).first()
        return self._to_snapshot(row) if row else None

    def latest_for_user(self, user_id: str) -> Optional[TravelPlanSnapshot]:
        row = self.session.execute(
            select(travel_plans)
            .where(travel_plans.c.owner_id == user_id)
            .order_by(
                travel_plans.c.start_date.desc(),
                travel_plans.c.created_at.desc(),
                travel_plans.c.plan_id.desc(),
            )
            .limit(1)
        ).first()
        return self._to_snapshot(row) if row else None

    def list_for_user(self, user_id: str) -> List[TravelPlanSnapshot]:
        rows = self.session.execute(
            select(travel_plans)
            .where(travel_plans.c.owner_id == user_id)
            .order_by(travel_plans.c.plan_id)
        ).all()
        return [self._to_snapshot(r) for r in rows]

    def list_excluding_user(self, user_id: str) -> List[TravelPlanSnapshot]:
        rows = self.session.execute(
            select(travel_plans)
            .where(travel_plans.c.owner_id != user_id)
            .order_by(travel_plans.c.plan_id)
        ).all()
        return [self._to_snapshot(r) for r in rows]

    def save(self, plan: TravelPlanSnapshot) -> TravelPlanSnapshot:
        saved = TravelPlanSnapshot.model_validate({**plan.model_dump(), "version": plan.version + 1})
        result = self.session.execute(
            update(travel_plans)
            .where(
                travel_plans.c.plan_id == plan.plan_id,
                travel_plans.c.version == plan.version,
            )
            .values(
                current_size=plan.current_size,
                recruiting=plan.recruiting,
                version=plan.version + 1,
            )
        )
        if result.rowcount == 0:
            if self.get(plan.plan_id) is None:
                raise NotFoundError(f"Plan not found: {plan.plan_id}")
            raise ConflictError(f"Plan {plan.plan_id} changed concurrently (expected v{plan.version})")
        return saved
