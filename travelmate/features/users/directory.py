"""
User directory as seen by matching: id -> display name, email, role.

Profiles are owned elsewhere; this is read-only.
"""

from typing import Dict, Optional

from sqlalchemy import select

from travelmate.core.database import get_db_session, users as app_users
from travelmate.models.user import UserRole, UserSummary


class InMemoryUserDirectory:

    def __init__(self):
        self._users: Dict[str, UserSummary] = {}

    def add(self, user: UserSummary) -> UserSummary:
        self._users[user.user_id] = user
        return user

    def get(self, user_id: str) -> Optional[UserSummary]:
        return self._users.get(user_id)


class SqlUserDirectory:

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def get(self, user_id: str) -> Optional[UserSummary]:
        with get_db_session(self._session_factory) as session:
            row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
            if not row:
                return None
            return UserSummary(
                user_id=row.user_id,
                display_name=UserSummary.normalized_display_name(row.user_id, row.display_name),
                email=row.email,
                role=UserRole(row.role),
            )
