"""
travelmate/models/notification.py

Notification kinds shared by every feature that alerts a user.
"""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict


class NotificationKind(str, Enum):
    FOLLOW = "FOLLOW"
    COMMENT = "COMMENT"
    MATCH_REQUEST = "MATCH_REQUEST"


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_user_id: str
    sender_name: str
    kind: NotificationKind
    message: str
    created_at: datetime
