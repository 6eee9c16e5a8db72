"""Patient admission: creates a patient and the first appointment together."""

from datetime import UTC, datetime

import structlog
from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.exceptions import ConflictException, NotFoundException, SlotUnavailableException
from admission.models.appointments import appointments
from admission.models.doctors import doctors
from admission.models.patients import patients
from admission.schemas.appointments import AppointmentStatus
from admission.schemas.patients import PatientAdmission, PatientAdmissionResponse
from admission.schemas.users import Actor
from admission.services.appointment_service import as_utc
from admission.services.appointment_store import AppointmentStore

logger = structlog.get_logger()


class AdmissionService:
    """Service for admitting patients."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db
        self.store = AppointmentStore(db)

    async def create_patient_and_appointment(
        self,
        data: PatientAdmission,
        actor: Actor,
    ) -> PatientAdmissionResponse:
        """
        Create a patient and their initial appointment in one transaction.

        The appointment starts in ``scheduled`` at version 1. If any check
        fails nothing is written.

        Args:
            data: Demographics and initial appointment fields
            actor: Staff member admitting the patient

        Returns:
            Created patient and appointment IDs

        Raises:
            ConflictException: Patient with same name and birth date exists
            NotFoundException: Doctor does not exist or is inactive
            SlotUnavailableException: Doctor already booked at that time
        """
        scheduled_at = as_utc(data.scheduled_at)

        try:
            if data.birth_date is not None:
                duplicate = await self.db.execute(
                    select(patients.c.id)
                    .where(
                        and_(
                            patients.c.first_name == data.first_name,
                            patients.c.last_name == data.last_name,
                            patients.c.birth_date == data.birth_date,
                        )
                    )
                    .limit(1)
                )
                existing_id = duplicate.scalar_one_or_none()
                if existing_id is not None:
                    raise ConflictException(
                        "A patient with the same name and birth date already exists",
                        details={"patient_id": str(existing_id)},
                    )

            if data.doctor_id is not None:
                doctor = await self.db.execute(
                    select(doctors.c.id).where(
                        and_(doctors.c.id == data.doctor_id, doctors.c.is_active.is_(True))
                    )
                )
                if doctor.scalar_one_or_none() is None:
                    raise NotFoundException(
                        "Doctor not found", details={"doctor_id": str(data.doctor_id)}
                    )

                if await self.store.find_slot_conflict(data.doctor_id, scheduled_at):
                    raise self._slot_unavailable(data, scheduled_at)

            now = datetime.now(UTC)
            patient_result = await self.db.execute(
                insert(patients)
                .values(
                    first_name=data.first_name,
                    last_name=data.last_name,
                    phone=data.phone,
                    email=data.email,
                    birth_date=data.birth_date,
                    gender=data.gender,
                    registration_notes=data.registration_notes,
                    created_by=actor.id,
                    created_at=now,
                    updated_at=now,
                )
                .returning(patients.c.id)
            )
            patient_id = patient_result.scalar_one()

            try:
                appointment_result = await self.db.execute(
                    insert(appointments)
                    .values(
                        patient_id=patient_id,
                        doctor_id=data.doctor_id,
                        scheduled_at=scheduled_at,
                        reason=data.reason,
                        notes=data.notes,
                        status=AppointmentStatus.SCHEDULED.value,
                        version=1,
                        modification_count=0,
                        created_at=now,
                        updated_at=now,
                    )
                    .returning(appointments.c.id, appointments.c.version)
                )
            except IntegrityError as e:
                # Another admission took the slot after the check above
                raise self._slot_unavailable(data, scheduled_at) from e

            appointment = appointment_result.one()

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "patient_admitted",
            patient_id=str(patient_id),
            appointment_id=str(appointment.id),
            actor_id=str(actor.id),
        )

        return PatientAdmissionResponse(
            patient_id=patient_id,
            appointment_id=appointment.id,
            version=appointment.version,
        )

    @staticmethod
    def _slot_unavailable(
        data: PatientAdmission, scheduled_at: datetime
    ) -> SlotUnavailableException:
        return SlotUnavailableException(
            "The doctor already has an active appointment at that time",
            details={
                "doctor_id": str(data.doctor_id),
                "scheduled_at": scheduled_at.isoformat(),
            },
        )
