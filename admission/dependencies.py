"""FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from admission.config import settings
from admission.core.redis_client import CacheManager, get_redis_client
from admission.core.security import decode_access_token
from admission.database import get_db
from admission.schemas.users import Actor, UserRole
from admission.services.appointment_service import AppointmentService
from admission.services.transition_rules import TransitionRuleRegistry
from admission.services.user_service import UserService

# Security
security = HTTPBearer()

# Process-wide transition table; built lazily so importing never touches Redis
_transition_rules: TransitionRuleRegistry | None = None


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    token = credentials.credentials
    payload = decode_access_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_actor(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Actor:
    """
    Load the acting staff member from the database.

    Args:
        user_id: User ID from JWT token
        db: Database session

    Returns:
        Acting principal with role

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService.get_user_by_id(db, user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    structlog.contextvars.bind_contextvars(actor_id=str(user["id"]))
    return Actor.model_validate(user)


async def get_admin_actor(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """Require the admin role."""
    if actor.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return actor


def get_transition_rules() -> TransitionRuleRegistry:
    """Get the shared transition rule registry backed by Redis."""
    global _transition_rules

    if _transition_rules is None:
        _transition_rules = TransitionRuleRegistry(
            cache_manager=CacheManager(get_redis_client()),
            ttl=settings.transition_rules_cache_ttl,
        )

    return _transition_rules


def get_appointment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    rules: Annotated[TransitionRuleRegistry, Depends(get_transition_rules)],
) -> AppointmentService:
    """Build the lifecycle service for the request's session."""
    return AppointmentService(db, rules)


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
AdminActor = Annotated[Actor, Depends(get_admin_actor)]
TransitionRules = Annotated[TransitionRuleRegistry, Depends(get_transition_rules)]
Appointments = Annotated[AppointmentService, Depends(get_appointment_service)]
