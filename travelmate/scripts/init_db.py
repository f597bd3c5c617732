#!/usr/bin/env python3
"""Create matching tables, optionally seed demo data, and print the resulting indexes.

Usage:
    DATABASE_URL=sqlite:///./travelmate.db python -m travelmate.scripts.init_db --seed
"""

import argparse
from datetime import date, datetime, timezone

from sqlalchemy import inspect, insert

from travelmate.core.database import create_all_tables, get_db_session, get_engine, init_engine, users
from travelmate.features.plans.store import SqlPlanStore
from travelmate.models.plan import TravelPlanSnapshot

DEMO_USERS = [
    {"user_id": "demo-minji", "display_name": "Minji", "role": "user"},
    {"user_id": "demo-junho", "display_name": "Junho", "role": "user"},
    {"user_id": "demo-admin", "display_name": "Admin", "role": "admin"},
]

DEMO_PLANS = [
    TravelPlanSnapshot(
        plan_id="demo-plan-seoul", owner_id="demo-minji", destination="서울",
        start_date=date(2025, 6, 1), end_date=date(2025, 6, 5), target_size=2,
        style_tags={"CULTURAL"},
    ),
    TravelPlanSnapshot(
        plan_id="demo-plan-seoul-2", owner_id="demo-junho", destination="서울",
        start_date=date(2025, 6, 3), end_date=date(2025, 6, 7), target_size=2,
        style_tags={"CULTURAL", "FOOD"},
    ),
]


def seed() -> None:
    now = datetime.now(timezone.utc)
    with get_db_session() as session:
        session.execute(insert(users), [dict(u, created_at=now) for u in DEMO_USERS])
        store = SqlPlanStore(session)
        for plan in DEMO_PLANS:
            store.add(plan.model_copy(update={"created_at": now}))
    print(f"Seeded {len(DEMO_USERS)} users and {len(DEMO_PLANS)} plans")


def main() -> None:
    parser = argparse.ArgumentParser(description="Initialise the TravelMate matching schema")
    parser.add_argument("--seed", action="store_true", help="Insert demo users and plans")
    args = parser.parse_args()

    init_engine()
    create_all_tables()
    if args.seed:
        seed()

    inspector = inspect(get_engine())
    for table in ("app_users", "travel_plans", "match_requests"):
        print(f"\n=== {table} ===")
        for idx in inspector.get_indexes(table):
            print(f"  {idx['name']}: {idx['column_names']}")


if __name__ == "__main__":
    main()
