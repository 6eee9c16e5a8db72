"""User lookups for the acting principal."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from admission.models.users import users


class UserService:
    """Service for user operations."""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: UUID) -> dict | None:
        """Get user by internal ID."""
        query = select(users).where(users.c.id == user_id)
        result = await db.execute(query)
        user = result.mappings().first()

        if not user:
            return None

        return dict(user)
