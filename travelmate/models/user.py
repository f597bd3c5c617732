from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class UserSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.USER

    @staticmethod
    def normalized_display_name(user_id: str, display_name: Optional[str] = None) -> str:
        if display_name and display_name.strip():
            return display_name.strip()
        # Deterministic fallback handle
        import hashlib
        h = hashlib.sha1(user_id.encode("utf-8")).hexdigest()
        return f"@u_{h[-6:]}"

    @property
    def name(self) -> str:
        return UserSummary.normalized_display_name(self.user_id, self.display_name)
