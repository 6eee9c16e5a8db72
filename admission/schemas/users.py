"""User schemas for the acting principal."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    """Staff role enumeration."""

    ADMIN = "admin"
    DOCTOR = "doctor"
    RECEPTION = "reception"
    ASSISTANT = "assistant"


class Actor(BaseModel):
    """Authenticated staff member performing a change."""

    id: UUID
    email: EmailStr
    full_name: str | None = None
    role: UserRole

    model_config = {"from_attributes": True, "frozen": True}

    def has_role(self, role: UserRole | None) -> bool:
        """Return True when the actor holds ``role``; admins hold every role."""
        if role is None:
            return True
        return self.role in (role, UserRole.ADMIN)
