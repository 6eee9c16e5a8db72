"""Tests for appointment status changes, rescheduling and optimistic concurrency."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

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
from admission.schemas.appointments import AppointmentFilters, AppointmentStatus
from admission.schemas.users import Actor, UserRole
from admission.services.appointment_service import AppointmentService, as_utc
from admission.services.appointment_store import AppointmentStore
from admission.services.transition_rules import (
    DEFAULT_TRANSITION_RULES,
    TransitionRule,
    TransitionRuleRegistry,
    seed_transition_rules,
)
from tests.helpers import MakeAppointment, count_history, fetch_appointment, in_days

S = AppointmentStatus

DEFAULT_EDGES = {(r.from_status, r.to_status) for r in DEFAULT_TRANSITION_RULES}
ILLEGAL_EDGES = [
    (current, target)
    for current in AppointmentStatus
    for target in AppointmentStatus
    if (current, target) not in DEFAULT_EDGES
]


@pytest.fixture
def service(db_session: AsyncSession, rule_registry: TransitionRuleRegistry) -> AppointmentService:
    """Lifecycle service over the test session."""
    return AppointmentService(db_session, rule_registry)


@pytest.mark.asyncio
class TestStatusChange:
    """Tests for request_status_change."""

    async def test_confirm_bumps_version_and_writes_history(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a legal change bumps version by one and records one audit row."""
        appointment_id = await make_appointment(version=1)

        result = await service.request_status_change(
            appointment_id, 1, S.CONFIRMED, actor=reception_user
        )

        assert result.version == 2
        assert result.appointment.status == S.CONFIRMED
        assert result.appointment.modification_count == 1

        row = await fetch_appointment(db_session, appointment_id)
        assert row["status"] == "confirmed"
        assert row["version"] == 2

        history = await service.get_history(appointment_id)
        assert len(history) == 1
        assert history[0].field_changed == "status"
        assert history[0].value_before == "scheduled"
        assert history[0].value_after == "confirmed"
        assert history[0].changed_by == reception_user.id
        assert history[0].change_reason is None

    async def test_cancel_with_reason_stamps_cancelled_at(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test cancelling records the reason and the cancellation time."""
        appointment_id = await make_appointment()

        result = await service.request_status_change(
            appointment_id, 1, S.CANCELLED, actor=reception_user, reason="Patient called"
        )

        assert result.appointment.status == S.CANCELLED
        assert result.appointment.cancelled_at is not None
        history = await service.get_history(appointment_id)
        assert history[0].change_reason == "Patient called"

    async def test_missing_reason_then_success(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test that a rule requiring a reason rejects blank reasons and accepts real ones."""
        appointment_id = await make_appointment(version=1)

        with pytest.raises(MissingReasonException):
            await service.request_status_change(appointment_id, 1, S.CANCELLED, reception_user)

        with pytest.raises(MissingReasonException):
            await service.request_status_change(
                appointment_id, 1, S.CANCELLED, reception_user, reason="   "
            )

        row = await fetch_appointment(db_session, appointment_id)
        assert row["version"] == 1
        assert await count_history(db_session, appointment_id) == 0

        result = await service.request_status_change(
            appointment_id, 1, S.CANCELLED, reception_user, reason="Patient called"
        )
        assert result.version == 2

    @pytest.mark.parametrize("current,target", ILLEGAL_EDGES)
    async def test_illegal_transitions_rejected_for_everyone(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        admin_user: Actor,
        current: AppointmentStatus,
        target: AppointmentStatus,
    ):
        """Test pairs outside the table fail regardless of role or reason."""
        appointment_id = await make_appointment(status=current, version=4)
        before = await fetch_appointment(db_session, appointment_id)

        with pytest.raises(IllegalTransitionException) as exc_info:
            await service.request_status_change(
                appointment_id, 4, target, admin_user, reason="Because"
            )

        assert exc_info.value.details["current_status"] == current.value
        assert exc_info.value.details["requested_status"] == target.value
        assert await fetch_appointment(db_session, appointment_id) == before
        assert await count_history(db_session, appointment_id) == 0

    async def test_completion_requires_doctor(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
        doctor_user: Actor,
    ):
        """Test role-restricted transitions."""
        appointment_id = await make_appointment(status=S.ARRIVED, version=3)

        with pytest.raises(ForbiddenException):
            await service.request_status_change(appointment_id, 3, S.COMPLETED, reception_user)

        assert (await fetch_appointment(db_session, appointment_id))["version"] == 3

        result = await service.request_status_change(
            appointment_id, 3, S.COMPLETED, doctor_user
        )
        assert result.version == 4
        assert result.appointment.status == S.COMPLETED

    async def test_admin_satisfies_any_role(
        self,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        admin_user: Actor,
    ):
        """Test admins can perform role-restricted transitions."""
        appointment_id = await make_appointment(status=S.ARRIVED)

        result = await service.request_status_change(appointment_id, 1, S.COMPLETED, admin_user)

        assert result.appointment.status == S.COMPLETED

    async def test_unknown_appointment(
        self,
        service: AppointmentService,
        default_rules: int,
        reception_user: Actor,
    ):
        """Test changing a missing appointment."""
        with pytest.raises(NotFoundException):
            await service.request_status_change(uuid4(), 1, S.CONFIRMED, reception_user)

    async def test_stale_version_reported_before_rule_checks(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a stale version is a conflict even when the request is also illegal."""
        appointment_id = await make_appointment(status=S.COMPLETED, version=5)

        with pytest.raises(VersionConflictException) as exc_info:
            await service.request_status_change(appointment_id, 1, S.CONFIRMED, reception_user)

        assert exc_info.value.details["expected_version"] == 1
        assert (await fetch_appointment(db_session, appointment_id))["version"] == 5

        with pytest.raises(IllegalTransitionException):
            await service.request_status_change(appointment_id, 5, S.CONFIRMED, reception_user)

    async def test_stale_version_reported_before_missing_reason(
        self,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a stale caller is told to refresh rather than to add a reason."""
        appointment_id = await make_appointment(status=S.CONFIRMED, version=4)

        with pytest.raises(VersionConflictException):
            await service.request_status_change(appointment_id, 3, S.CANCELLED, reception_user)

    async def test_reason_checked_before_role(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a missing reason is reported before a missing role."""
        await seed_transition_rules(
            db_session,
            [
                TransitionRule(
                    S.ARRIVED,
                    S.COMPLETED,
                    requires_reason=True,
                    role_required=UserRole.DOCTOR,
                )
            ],
        )
        appointment_id = await make_appointment(status=S.ARRIVED)

        with pytest.raises(MissingReasonException):
            await service.request_status_change(appointment_id, 1, S.COMPLETED, reception_user)

        with pytest.raises(ForbiddenException):
            await service.request_status_change(
                appointment_id, 1, S.COMPLETED, reception_user, reason="Visit done"
            )

    async def test_wildcard_rule_applies_from_any_status(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a rule with no source status."""
        await seed_transition_rules(
            db_session, [TransitionRule(None, S.CANCELLED, requires_reason=True)]
        )
        appointment_id = await make_appointment(status=S.ARRIVED)

        with pytest.raises(MissingReasonException):
            await service.request_status_change(appointment_id, 1, S.CANCELLED, reception_user)

        result = await service.request_status_change(
            appointment_id, 1, S.CANCELLED, reception_user, reason="Left the clinic"
        )
        assert result.appointment.status == S.CANCELLED

    async def test_empty_rule_table_rejects_everything(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        admin_user: Actor,
    ):
        """Test that no rule means no transition."""
        appointment_id = await make_appointment()

        with pytest.raises(IllegalTransitionException):
            await service.request_status_change(appointment_id, 1, S.CONFIRMED, admin_user)


@pytest.mark.asyncio
class TestConcurrency:
    """Tests for version-guarded writes."""

    async def test_second_writer_with_same_version_conflicts(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test two staff members acting on the same loaded version."""
        appointment_id = await make_appointment(status=S.SCHEDULED, version=3)

        first = await service.request_status_change(
            appointment_id, 3, S.CONFIRMED, reception_user
        )
        assert first.version == 4

        # The second writer sends no reason; the stale version wins over that too
        with pytest.raises(VersionConflictException) as exc_info:
            await service.request_status_change(appointment_id, 3, S.CANCELLED, reception_user)

        assert exc_info.value.status_code == 409
        assert exc_info.value.retryable is True
        assert exc_info.value.details["expected_version"] == 3

        row = await fetch_appointment(db_session, appointment_id)
        assert row["status"] == "confirmed"
        assert row["version"] == 4
        assert await count_history(db_session, appointment_id) == 1

    async def test_identical_request_replayed_with_old_version(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test resending an applied change is a conflict, not an illegal transition."""
        appointment_id = await make_appointment(status=S.SCHEDULED, version=3)
        await service.request_status_change(appointment_id, 3, S.CONFIRMED, reception_user)

        for _ in range(3):
            with pytest.raises(VersionConflictException):
                await service.request_status_change(
                    appointment_id, 3, S.CONFIRMED, reception_user
                )

        row = await fetch_appointment(db_session, appointment_id)
        assert row["version"] == 4
        assert await count_history(db_session, appointment_id) == 1

    async def test_write_requires_status_rules_were_checked_against(
        self,
        db_session: AsyncSession,
        make_appointment: MakeAppointment,
    ):
        """Test the conditional update also matches the expected status."""
        appointment_id = await make_appointment(status=S.CONFIRMED, version=2)
        store = AppointmentStore(db_session)

        missed = await store.update_if(
            appointment_id, 2, {"status": S.ARRIVED.value}, expected_status=S.SCHEDULED.value
        )
        assert missed is None

        applied = await store.update_if(
            appointment_id, 2, {"status": S.ARRIVED.value}, expected_status=S.CONFIRMED.value
        )
        await db_session.commit()

        assert applied is not None
        assert applied["version"] == 3
        assert (await fetch_appointment(db_session, appointment_id))["status"] == "arrived"

    async def test_status_changed_after_checks_is_a_conflict(
        self,
        db_session: AsyncSession,
        rule_registry: TransitionRuleRegistry,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a status that moved between the read and the write is not overwritten."""
        appointment_id = await make_appointment(status=S.ARRIVED, version=2)

        class StaleReadStore(AppointmentStore):
            async def fetch(self, appointment_id):
                row = dict(await super().fetch(appointment_id))
                row["status"] = S.CONFIRMED.value
                return row

        service = AppointmentService(db_session, rule_registry, store=StaleReadStore(db_session))

        with pytest.raises(VersionConflictException):
            await service.request_status_change(
                appointment_id, 2, S.CANCELLED, reception_user, reason="Patient called"
            )

        row = await fetch_appointment(db_session, appointment_id)
        assert row["status"] == "arrived"
        assert row["version"] == 2
        assert await count_history(db_session, appointment_id) == 0

    async def test_stale_version_never_succeeds(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test retrying with the same stale version keeps failing."""
        appointment_id = await make_appointment(version=2)
        await service.request_status_change(appointment_id, 2, S.CONFIRMED, reception_user)

        for _ in range(3):
            with pytest.raises(VersionConflictException):
                await service.request_status_change(appointment_id, 2, S.ARRIVED, reception_user)

        row = await fetch_appointment(db_session, appointment_id)
        assert row["version"] == 3
        assert row["modification_count"] == 1

    async def test_refresh_and_retry_succeeds(
        self,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test the client recovery path after a conflict."""
        appointment_id = await make_appointment(version=1)
        await service.request_status_change(appointment_id, 1, S.CONFIRMED, reception_user)

        with pytest.raises(VersionConflictException):
            await service.request_status_change(appointment_id, 1, S.ARRIVED, reception_user)

        fresh = await service.get_appointment(appointment_id)
        result = await service.request_status_change(
            appointment_id, fresh.version, S.ARRIVED, reception_user
        )
        assert result.version == 3

    async def test_version_increments_once_per_change(
        self,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
        doctor_user: Actor,
    ):
        """Test a full visit walks the version forward by one per step."""
        appointment_id = await make_appointment(version=1)

        result = await service.request_status_change(appointment_id, 1, S.CONFIRMED, reception_user)
        result = await service.request_status_change(
            appointment_id, result.version, S.ARRIVED, reception_user
        )
        result = await service.request_status_change(
            appointment_id, result.version, S.COMPLETED, doctor_user
        )

        assert result.version == 4
        assert result.appointment.modification_count == 3
        history = await service.get_history(appointment_id)
        assert [h.value_after for h in history] == ["completed", "arrived", "confirmed"]

    async def test_storage_timeout_is_indeterminate(
        self,
        db_session: AsyncSession,
        rule_registry: TransitionRuleRegistry,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a write that does not finish in time is neither success nor conflict."""

        class SlowStore(AppointmentStore):
            async def update_if(self, *args, **kwargs):
                await asyncio.sleep(1)
                return await super().update_if(*args, **kwargs)

        service = AppointmentService(
            db_session, rule_registry, store=SlowStore(db_session), timeout=0.05
        )
        appointment_id = await make_appointment(version=1)

        with pytest.raises(IndeterminateOutcomeException) as exc_info:
            await service.request_status_change(appointment_id, 1, S.CONFIRMED, reception_user)

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True
        row = await fetch_appointment(db_session, appointment_id)
        assert row["version"] == 1
        assert await count_history(db_session, appointment_id) == 0

    async def test_commit_failure_is_indeterminate(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
        reception_user: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test a driver error while committing is not reported as a plain failure."""
        appointment_id = await make_appointment(version=1)
        monkeypatch.setattr(
            db_session,
            "commit",
            AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("connection lost"))),
        )

        with pytest.raises(IndeterminateOutcomeException):
            await service.request_status_change(appointment_id, 1, S.CONFIRMED, reception_user)

        monkeypatch.undo()
        row = await fetch_appointment(db_session, appointment_id)
        assert row["version"] == 1


@pytest.mark.asyncio
class TestReschedule:
    """Tests for reschedule_appointment."""

    async def test_reschedule_moves_time_and_keeps_status(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        doctor: UUID,
        reception_user: Actor,
    ):
        """Test a valid reschedule."""
        original = in_days(3)
        new_time = in_days(5, hour=15)
        appointment_id = await make_appointment(
            status=S.CONFIRMED, version=2, doctor_id=doctor, scheduled_at=original
        )

        result = await service.reschedule_appointment(
            appointment_id, 2, new_time, "Doctor on leave", actor=reception_user
        )

        assert result.version == 3
        assert result.appointment.status == S.CONFIRMED
        assert as_utc(result.appointment.scheduled_at) == new_time

        history = await service.get_history(appointment_id)
        assert len(history) == 1
        assert history[0].field_changed == "scheduled_at"
        assert history[0].value_before == original.isoformat()
        assert history[0].value_after == new_time.isoformat()
        assert history[0].change_reason == "Doctor on leave"

    @pytest.mark.parametrize("terminal", [S.COMPLETED, S.CANCELLED, S.NO_SHOW])
    async def test_terminal_appointments_cannot_be_rescheduled(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
        terminal: AppointmentStatus,
    ):
        """Test rescheduling a finished appointment."""
        appointment_id = await make_appointment(status=terminal)

        with pytest.raises(InvalidStateForOperationException) as exc_info:
            await service.reschedule_appointment(
                appointment_id, 1, in_days(7), "Try again", actor=reception_user
            )

        assert exc_info.value.details["current_status"] == terminal.value
        assert await count_history(db_session, appointment_id) == 0

    async def test_reschedule_requires_reason(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a reason is mandatory."""
        appointment_id = await make_appointment()

        with pytest.raises(MissingReasonException):
            await service.reschedule_appointment(
                appointment_id, 1, in_days(7), None, actor=reception_user
            )

    async def test_reschedule_into_past_rejected(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test the new time must be in the future."""
        appointment_id = await make_appointment()

        with pytest.raises(ValidationException):
            await service.reschedule_appointment(
                appointment_id, 1, in_days(-1), "Mistake", actor=reception_user
            )

    async def test_reschedule_to_same_time_rejected(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test a no-op reschedule."""
        when = in_days(3)
        appointment_id = await make_appointment(scheduled_at=when)

        with pytest.raises(ValidationException):
            await service.reschedule_appointment(
                appointment_id, 1, when, "Same slot", actor=reception_user
            )

    async def test_reschedule_onto_booked_slot(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        doctor: UUID,
        reception_user: Actor,
    ):
        """Test the doctor cannot be double-booked."""
        taken = in_days(4, hour=9)
        await make_appointment(doctor_id=doctor, scheduled_at=taken)
        appointment_id = await make_appointment(doctor_id=doctor, scheduled_at=in_days(4, hour=11))

        with pytest.raises(SlotUnavailableException):
            await service.reschedule_appointment(
                appointment_id, 1, taken, "Earlier slot", actor=reception_user
            )

        assert (await fetch_appointment(db_session, appointment_id))["version"] == 1

    async def test_slot_taken_after_check_is_rejected_by_index(
        self,
        db_session: AsyncSession,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        doctor: UUID,
        reception_user: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test a booking that lands between the slot check and the write."""
        taken = in_days(4, hour=9)
        original = in_days(4, hour=11)
        appointment_id = await make_appointment(doctor_id=doctor, scheduled_at=original)
        # The competing booking commits after our check has seen a free slot
        monkeypatch.setattr(service.store, "find_slot_conflict", AsyncMock(return_value=None))
        await make_appointment(doctor_id=doctor, scheduled_at=taken)

        with pytest.raises(SlotUnavailableException) as exc_info:
            await service.reschedule_appointment(
                appointment_id, 1, taken, "Earlier slot", actor=reception_user
            )

        assert exc_info.value.details["doctor_id"] == str(doctor)
        row = await fetch_appointment(db_session, appointment_id)
        assert row["version"] == 1
        assert as_utc(row["scheduled_at"]) == original
        assert await count_history(db_session, appointment_id) == 0

    async def test_cancelled_appointment_frees_slot(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        doctor: UUID,
        reception_user: Actor,
    ):
        """Test only active appointments hold a slot."""
        freed = in_days(4, hour=9)
        await make_appointment(status=S.CANCELLED, doctor_id=doctor, scheduled_at=freed)
        appointment_id = await make_appointment(doctor_id=doctor, scheduled_at=in_days(4, hour=11))

        result = await service.reschedule_appointment(
            appointment_id, 1, freed, "Earlier slot", actor=reception_user
        )

        assert result.version == 2

    async def test_reschedule_with_stale_version(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        reception_user: Actor,
    ):
        """Test rescheduling is version-guarded too."""
        appointment_id = await make_appointment(version=6)

        with pytest.raises(VersionConflictException):
            await service.reschedule_appointment(
                appointment_id, 5, in_days(9), "Moved", actor=reception_user
            )


@pytest.mark.asyncio
class TestQueries:
    """Tests for read operations."""

    async def test_counts_are_zero_filled(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
    ):
        """Test status counts."""
        await make_appointment()
        await make_appointment()
        await make_appointment(status=S.CANCELLED)

        result = await service.count_by_status()

        assert result.total == 3
        assert result.counts[S.SCHEDULED] == 2
        assert result.counts[S.CANCELLED] == 1
        assert result.counts[S.COMPLETED] == 0
        assert set(result.counts) == set(AppointmentStatus)

    async def test_available_transitions(
        self,
        service: AppointmentService,
        default_rules: int,
        make_appointment: MakeAppointment,
    ):
        """Test the next statuses offered for an arrived appointment."""
        appointment_id = await make_appointment(status=S.ARRIVED)

        rules = await service.available_transitions(appointment_id)

        assert [r.to_status for r in rules] == [S.COMPLETED]

    async def test_get_missing_appointment(self, service: AppointmentService):
        """Test reading an unknown appointment."""
        with pytest.raises(NotFoundException):
            await service.get_appointment(uuid4())

    async def test_history_for_missing_appointment(self, service: AppointmentService):
        """Test history of an unknown appointment."""
        with pytest.raises(NotFoundException):
            await service.get_history(uuid4())

    async def test_list_filters_and_orders(
        self,
        service: AppointmentService,
        make_appointment: MakeAppointment,
        doctor: UUID,
    ):
        """Test listing by doctor, soonest first."""
        later = await make_appointment(doctor_id=doctor, scheduled_at=in_days(6))
        sooner = await make_appointment(doctor_id=doctor, scheduled_at=in_days(2))
        await make_appointment(scheduled_at=in_days(1))

        result = await service.list_appointments(AppointmentFilters(doctor_id=doctor))

        assert result.total == 2
        assert [a.id for a in result.items] == [sooner, later]

        windowed = await service.list_appointments(
            AppointmentFilters(from_date=in_days(5) - timedelta(hours=1))
        )
        assert [a.id for a in windowed.items] == [later]
