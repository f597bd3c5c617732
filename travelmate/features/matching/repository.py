"""
travelmate/features/matching/repository.py

Unit of work over plan and match request storage.

Every mutating matching operation runs inside one transaction():
- InMemoryMatchingRepository serialises transactions on a re-entrant lock
  and restores a snapshot of both stores when the block raises
- SqlMatchingRepository opens one session per transaction (get_db_session
  commits on success, rolls back on error)
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from travelmate.core.database import get_db_session
from travelmate.features.matching.store import InMemoryMatchRequestStore, SqlMatchRequestStore
from travelmate.features.plans.store import InMemoryPlanStore, SqlPlanStore


@dataclass
class MatchingTransaction:
    plans: object
    requests: object


class InMemoryMatchingRepository:

    def __init__(self, plans: InMemoryPlanStore = None, requests: InMemoryMatchRequestStore = None):
        self.plans = plans or InMemoryPlanStore()
        self.requests = requests or InMemoryMatchRequestStore()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[MatchingTransaction]:
        with self._lock:
            plans_state = self.plans.snapshot()
            requests_state = self.requests.snapshot()
            try:
                yield MatchingTransaction(plans=self.plans, requests=self.requests)
            except Exception:
                self.plans.restore(plans_state)
                self.requests.restore(requests_state)
                raise


class SqlMatchingRepository:

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[MatchingTransaction]:
        with get_db_session(self._session_factory) as session:
            yield MatchingTransaction(
                plans=SqlPlanStore(session),
                requests=SqlMatchRequestStore(session),
            )
