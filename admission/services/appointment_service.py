"""Appointment lifecycle service: status transitions and rescheduling."""

import asyncio
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.config import settings
from admission.core.exceptions import (
    ForbiddenException,
    IllegalTransitionException,
    IndeterminateOutcomeException,
    InvalidStateForOperationException,
    MissingReasonException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
    VersionConflictException,
)
from admission.models.appointments import appointment_history, appointments
from admission.schemas.appointments import (
    TERMINAL_STATUSES,
    AppointmentFilters,
    AppointmentHistoryResponse,
    AppointmentListResponse,
    AppointmentMutationResponse,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusCounts,
)
from admission.schemas.users import Actor
from admission.services.appointment_store import AppointmentStore
from admission.services.transition_rules import TransitionRule, TransitionRuleRegistry

logger = structlog.get_logger()

T = TypeVar("T")


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class AppointmentService:
    """
    Sole authority for changing an appointment's status or schedule.

    Every accepted mutation bumps ``version`` and ``modification_count`` by
    one and appends exactly one history row in the same transaction.
    Rejected requests leave no trace.
    """

    def __init__(
        self,
        db: AsyncSession,
        rules: TransitionRuleRegistry,
        store: AppointmentStore | None = None,
        timeout: float | None = None,
    ):
        """Initialize service with database session and transition rules."""
        self.db = db
        self.rules = rules
        self.store = store or AppointmentStore(db)
        self.timeout = timeout if timeout is not None else settings.storage_timeout_seconds

    async def get_appointment(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await self.store.fetch(appointment_id)
        if row is None:
            raise NotFoundException(
                "Appointment not found", details={"appointment_id": str(appointment_id)}
            )
        return AppointmentResponse.model_validate(dict(row))

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments
        """
        conditions = [appointments.c.deleted_at.is_(None)]

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.from_date:
            conditions.append(appointments.c.scheduled_at >= as_utc(filters.from_date))

        if filters.to_date:
            conditions.append(appointments.c.scheduled_at <= as_utc(filters.to_date))

        count_stmt = select(func.count()).select_from(appointments).where(and_(*conditions))
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.scheduled_at.asc())
            .limit(filters.page_size)
            .offset(offset)
        )
        rows = (await self.db.execute(stmt)).mappings().all()

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[AppointmentResponse.model_validate(dict(row)) for row in rows],
        )

    async def count_by_status(self) -> AppointmentStatusCounts:
        """Count non-deleted appointments per status, zero-filled."""
        stmt = (
            select(appointments.c.status, func.count())
            .where(appointments.c.deleted_at.is_(None))
            .group_by(appointments.c.status)
        )
        found = {status: count for status, count in (await self.db.execute(stmt)).all()}
        counts = {status: found.get(status.value, 0) for status in AppointmentStatus}
        return AppointmentStatusCounts(total=sum(counts.values()), counts=counts)

    async def get_history(self, appointment_id: UUID) -> list[AppointmentHistoryResponse]:
        """Audit records of an appointment, newest first."""
        await self.get_appointment(appointment_id)

        stmt = (
            select(appointment_history)
            .where(appointment_history.c.appointment_id == appointment_id)
            .order_by(appointment_history.c.changed_at.desc())
        )
        rows = (await self.db.execute(stmt)).mappings().all()
        return [AppointmentHistoryResponse.model_validate(dict(row)) for row in rows]

    async def available_transitions(self, appointment_id: UUID) -> list[TransitionRule]:
        """Rules leaving the appointment's current status."""
        appointment = await self.get_appointment(appointment_id)
        table = await self.rules.get_table(self.db)
        return table.allowed_from(appointment.status)

    async def request_status_change(
        self,
        appointment_id: UUID,
        expected_version: int,
        new_status: AppointmentStatus,
        actor: Actor,
        reason: str | None = None,
    ) -> AppointmentMutationResponse:
        """
        Move an appointment to ``new_status``.

        Checks run in this order: existence, version, transition rule, reason,
        role, then the guarded write. The write repeats the version check and
        also requires the status the rule was evaluated against.

        Args:
            appointment_id: Appointment ID
            expected_version: Version the caller last read
            new_status: Requested status
            actor: Staff member performing the change
            reason: Justification, mandatory when the rule says so

        Returns:
            New version and updated appointment

        Raises:
            NotFoundException: Appointment missing or deleted
            VersionConflictException: Another writer advanced the version
            IllegalTransitionException: No rule allows current -> new_status
            MissingReasonException: Rule requires a reason and none was given
            ForbiddenException: Actor lacks the rule's role
            SlotUnavailableException: Leaving a terminal status would double-book the doctor
            IndeterminateOutcomeException: Storage timed out mid-write
        """
        reason = (reason or "").strip() or None

        async with self._rejections():
            row = await self.store.fetch(appointment_id)
            if row is None:
                raise NotFoundException(
                    "Appointment not found", details={"appointment_id": str(appointment_id)}
                )

            self._check_version(row, expected_version, "status_change")

            current = AppointmentStatus(row["status"])
            table = await self.rules.get_table(self.db)
            rule = table.find(current, new_status)

            if rule is None:
                raise IllegalTransitionException(appointment_id, current.value, new_status.value)

            if rule.requires_reason and not reason:
                raise MissingReasonException(
                    f"A reason is required to move an appointment to '{new_status.value}'",
                    details={
                        "appointment_id": str(appointment_id),
                        "current_status": current.value,
                        "requested_status": new_status.value,
                    },
                )

            if not actor.has_role(rule.role_required):
                raise ForbiddenException(
                    f"Role '{rule.role_required.value}' is required for this transition",
                    details={
                        "appointment_id": str(appointment_id),
                        "current_status": current.value,
                        "requested_status": new_status.value,
                        "role_required": rule.role_required.value,
                    },
                )

            changed_at = datetime.now(UTC)
            patch: dict[str, Any] = {"status": new_status.value, "updated_at": changed_at}
            if new_status == AppointmentStatus.CANCELLED:
                patch["cancelled_at"] = changed_at

            updated = await self._write(
                appointment_id,
                expected_version,
                patch,
                expected_status=current.value,
                slot=(row["doctor_id"], as_utc(row["scheduled_at"])),
                field_changed="status",
                value_before=current.value,
                value_after=new_status.value,
                reason=reason,
                actor=actor,
                changed_at=changed_at,
                operation="status_change",
            )

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            from_status=current.value,
            to_status=new_status.value,
            version=updated["version"],
            actor_id=str(actor.id),
        )
        return self._mutation_response(updated)

    async def reschedule_appointment(
        self,
        appointment_id: UUID,
        expected_version: int,
        new_scheduled_at: datetime,
        reason: str | None,
        actor: Actor,
    ) -> AppointmentMutationResponse:
        """
        Move an appointment to a new date and time.

        Does not consult the transition table; the status is left as is.

        Raises:
            NotFoundException: Appointment missing or deleted
            InvalidStateForOperationException: Appointment is completed, cancelled or a no-show
            MissingReasonException: No reason given
            ValidationException: New time is in the past or unchanged
            SlotUnavailableException: The doctor is already booked at that time
            VersionConflictException: Another writer advanced the version
            IndeterminateOutcomeException: Storage timed out mid-write
        """
        reason = (reason or "").strip() or None
        new_scheduled_at = as_utc(new_scheduled_at)

        async with self._rejections():
            row = await self.store.fetch(appointment_id)
            if row is None:
                raise NotFoundException(
                    "Appointment not found", details={"appointment_id": str(appointment_id)}
                )

            self._check_version(row, expected_version, "reschedule")

            current = AppointmentStatus(row["status"])
            if current in TERMINAL_STATUSES:
                raise InvalidStateForOperationException(appointment_id, current.value, "reschedule")

            if not reason:
                raise MissingReasonException(
                    "A reason is required to reschedule an appointment",
                    details={"appointment_id": str(appointment_id)},
                )

            previous_at = as_utc(row["scheduled_at"])
            changed_at = datetime.now(UTC)

            if new_scheduled_at <= changed_at:
                raise ValidationException(
                    "Appointments cannot be rescheduled into the past",
                    details={"scheduled_at": new_scheduled_at.isoformat()},
                )

            if new_scheduled_at == previous_at:
                raise ValidationException(
                    "Appointment is already scheduled at that time",
                    details={"scheduled_at": new_scheduled_at.isoformat()},
                )

            if row["doctor_id"] is not None:
                conflict_id = await self.store.find_slot_conflict(
                    row["doctor_id"], new_scheduled_at, exclude_id=appointment_id
                )
                if conflict_id is not None:
                    raise self._slot_unavailable(row["doctor_id"], new_scheduled_at)

            updated = await self._write(
                appointment_id,
                expected_version,
                {"scheduled_at": new_scheduled_at, "updated_at": changed_at},
                expected_status=current.value,
                slot=(row["doctor_id"], new_scheduled_at),
                field_changed="scheduled_at",
                value_before=previous_at.isoformat(),
                value_after=new_scheduled_at.isoformat(),
                reason=reason,
                actor=actor,
                changed_at=changed_at,
                operation="reschedule",
            )

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            scheduled_from=previous_at.isoformat(),
            scheduled_to=new_scheduled_at.isoformat(),
            version=updated["version"],
            actor_id=str(actor.id),
        )
        return self._mutation_response(updated)

    async def _write(
        self,
        appointment_id: UUID,
        expected_version: int,
        patch: dict[str, Any],
        *,
        expected_status: str,
        slot: tuple[UUID | None, datetime],
        field_changed: str,
        value_before: str | None,
        value_after: str,
        reason: str | None,
        actor: Actor,
        changed_at: datetime,
        operation: str,
    ) -> RowMapping:
        """
        Guarded update plus its history row, committed together.

        The update matches only the version and status the checks ran
        against. ``slot`` is the doctor and time the row occupies afterwards;
        it is reported when the update collides with another active booking.
        """
        try:
            try:
                updated = await self._bounded(
                    self.store.update_if(appointment_id, expected_version, patch, expected_status)
                )
            except IntegrityError as e:
                logger.info(
                    "appointment_slot_collision",
                    appointment_id=str(appointment_id),
                    operation=operation,
                )
                raise self._slot_unavailable(*slot) from e

            if updated is None:
                self._log_version_conflict(appointment_id, expected_version, operation)
                raise VersionConflictException(appointment_id, expected_version)

            await self._bounded(
                self.store.append_history(
                    appointment_id=appointment_id,
                    field_changed=field_changed,
                    value_before=value_before,
                    value_after=value_after,
                    change_reason=reason,
                    changed_by=actor.id,
                    changed_at=changed_at,
                )
            )
        except TimeoutError as e:
            raise await self._indeterminate(appointment_id, operation, e) from e

        try:
            await self._bounded(self.db.commit())
        except (TimeoutError, DBAPIError) as e:
            # The commit may have reached the server before the failure
            raise await self._indeterminate(appointment_id, operation, e) from e

        return updated

    def _check_version(self, row: RowMapping, expected_version: int, operation: str) -> None:
        """Reject a stale version before any rule is evaluated."""
        if row["version"] != expected_version:
            self._log_version_conflict(row["id"], expected_version, operation)
            raise VersionConflictException(row["id"], expected_version)

    @staticmethod
    def _log_version_conflict(appointment_id: UUID, expected_version: int, operation: str) -> None:
        logger.info(
            "appointment_version_conflict",
            appointment_id=str(appointment_id),
            expected_version=expected_version,
            operation=operation,
        )

    @staticmethod
    def _slot_unavailable(
        doctor_id: UUID | None, scheduled_at: datetime
    ) -> SlotUnavailableException:
        return SlotUnavailableException(
            "The doctor already has an active appointment at that time",
            details={
                "doctor_id": str(doctor_id) if doctor_id else None,
                "scheduled_at": scheduled_at.isoformat(),
            },
        )

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    async def _indeterminate(
        self,
        appointment_id: UUID,
        operation: str,
        error: BaseException,
    ) -> IndeterminateOutcomeException:
        logger.error(
            "appointment_write_indeterminate",
            appointment_id=str(appointment_id),
            operation=operation,
            error=repr(error),
        )
        await self._rollback()
        return IndeterminateOutcomeException(appointment_id, operation)

    async def _rollback(self) -> None:
        try:
            await asyncio.wait_for(self.db.rollback(), timeout=self.timeout)
        except (TimeoutError, SQLAlchemyError) as e:
            logger.error("appointment_rollback_failed", error=repr(e))

    @asynccontextmanager
    async def _rejections(self) -> AsyncIterator[None]:
        """Roll back the read transaction when a request is rejected."""
        try:
            yield
        except IndeterminateOutcomeException:
            raise
        except Exception:
            await self._rollback()
            raise

    @staticmethod
    def _mutation_response(row: RowMapping) -> AppointmentMutationResponse:
        return AppointmentMutationResponse(
            version=row["version"],
            appointment=AppointmentResponse.model_validate(dict(row)),
        )

