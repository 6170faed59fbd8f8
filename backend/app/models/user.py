from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, EmailStr

UserRole = Literal["user", "admin", "superadmin"]

ADMIN_ROLES = ("admin", "superadmin")
SYSTEM_ACTOR_ID = "SYSTEM"


class UserInDB(BaseModel):
    """User profile document as stored in MongoDB."""
    email: EmailStr
    display_name: str | None = None
    role: UserRole = "user"
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Actor:
    """Who performs a lifecycle or settlement action.

    Passed explicitly into every service call instead of being read from
    request/session state.
    """
    id: str
    display_name: str = ""
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def label(self) -> str:
        return self.display_name or self.id

    @classmethod
    def system(cls) -> "Actor":
        return cls(id=SYSTEM_ACTOR_ID, display_name="System", role="superadmin")

    @classmethod
    def from_user(cls, user: dict) -> "Actor":
        return cls(
            id=str(user["_id"]),
            display_name=user.get("display_name") or "",
            role=user.get("role", "user"),
        )
