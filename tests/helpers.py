"""Shared helpers for the test suite."""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.security import create_access_token
from admission.models.appointments import appointment_history, appointments
from admission.schemas.users import Actor

MakeAppointment = Callable[..., Awaitable[UUID]]


def auth_headers(actor: Actor) -> dict[str, str]:
    """Bearer header for ``actor``."""
    token = create_access_token({"sub": str(actor.id)}, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}


def in_days(days: int, hour: int = 10) -> datetime:
    """A whole-hour UTC datetime ``days`` from today."""
    base = datetime.now(UTC).replace(hour=hour, minute=0, second=0, microsecond=0)
    return base + timedelta(days=days)


async def fetch_appointment(db: AsyncSession, appointment_id: UUID) -> dict[str, Any]:
    """Read the stored appointment row as a plain dict."""
    result = await db.execute(select(appointments).where(appointments.c.id == appointment_id))
    return dict(result.mappings().one())


async def count_history(db: AsyncSession, appointment_id: UUID) -> int:
    """Number of audit records for an appointment."""
    result = await db.execute(
        select(func.count())
        .select_from(appointment_history)
        .where(appointment_history.c.appointment_id == appointment_id)
    )
    return result.scalar_one()
