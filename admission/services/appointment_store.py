"""Storage primitives for appointment mutations."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, insert, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncSession

from admission.models.appointments import appointment_history, appointments
from admission.schemas.appointments import ACTIVE_STATUSES


class AppointmentStore:
    """
    Thin layer over the appointments and history tables.

    Nothing here commits; the caller owns the transaction so a state change
    and its history row are committed together.
    """

    def __init__(self, db: AsyncSession):
        """Initialize store with database session."""
        self.db = db

    async def fetch(self, appointment_id: UUID) -> RowMapping | None:
        """Get a non-deleted appointment row."""
        stmt = select(appointments).where(
            and_(
                appointments.c.id == appointment_id,
                appointments.c.deleted_at.is_(None),
            )
        )
        result = await self.db.execute(stmt)
        return result.mappings().first()

    async def update_if(
        self,
        appointment_id: UUID,
        expected_version: int,
        patch: dict[str, Any],
        expected_status: str | None = None,
    ) -> RowMapping | None:
        """
        Apply ``patch`` only if the stored version equals ``expected_version``.

        The version check and the write are one UPDATE statement, so two
        writers holding the same version cannot both succeed.

        Args:
            appointment_id: Appointment ID
            expected_version: Version the caller last observed
            patch: Column values to set
            expected_status: When given, the stored status must also match

        Returns:
            Updated row, or None when no row matched (stale version or status, or missing)
        """
        conditions = [
            appointments.c.id == appointment_id,
            appointments.c.version == expected_version,
            appointments.c.deleted_at.is_(None),
        ]
        if expected_status is not None:
            conditions.append(appointments.c.status == expected_status)

        stmt = (
            update(appointments)
            .where(and_(*conditions))
            .values(
                **patch,
                version=appointments.c.version + 1,
                modification_count=appointments.c.modification_count + 1,
            )
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        return result.mappings().first()

    async def append_history(
        self,
        appointment_id: UUID,
        field_changed: str,
        value_before: str | None,
        value_after: str,
        change_reason: str | None,
        changed_by: UUID | None,
        changed_at: datetime,
    ) -> None:
        """Append one audit record."""
        await self.db.execute(
            insert(appointment_history).values(
                appointment_id=appointment_id,
                field_changed=field_changed,
                value_before=value_before,
                value_after=value_after,
                change_reason=change_reason,
                changed_by=changed_by,
                changed_at=changed_at,
            )
        )

    async def find_slot_conflict(
        self,
        doctor_id: UUID,
        scheduled_at: datetime,
        exclude_id: UUID | None = None,
    ) -> UUID | None:
        """
        Return the ID of another active appointment the doctor holds at ``scheduled_at``.

        A fast pre-check for a friendly error; the ``uq_appointments_doctor_slot``
        index is what enforces the rule under concurrent writers.
        """
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.scheduled_at == scheduled_at,
            appointments.c.status.in_([s.value for s in ACTIVE_STATUSES]),
            appointments.c.deleted_at.is_(None),
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        result = await self.db.execute(select(appointments.c.id).where(and_(*conditions)).limit(1))
        return result.scalar_one_or_none()
