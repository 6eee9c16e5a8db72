"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from admission.dependencies import Appointments, CurrentActor
from admission.schemas.appointments import (
    AppointmentFilters,
    AppointmentHistoryResponse,
    AppointmentListResponse,
    AppointmentMutationResponse,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentStatus,
    AppointmentStatusChange,
    AppointmentStatusCounts,
    TransitionRuleResponse,
)

router = APIRouter()


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    current_actor: CurrentActor,
    service: Appointments,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering, soonest first.

    Args:
        current_actor: Authenticated staff member
        service: Appointment service
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        patient_id: Filter by patient ID
        from_date: Filter by start date
        to_date: Filter by end date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(filters)


@router.get(
    "/counts",
    response_model=AppointmentStatusCounts,
    status_code=status.HTTP_200_OK,
    summary="Count appointments per status",
)
async def count_appointments(
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentStatusCounts:
    """Counts for the admission dashboard."""
    return await service.count_by_status()


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentResponse:
    """
    Get a specific appointment, including the version to send back on change.

    Raises:
        NotFoundException: If appointment not found
    """
    return await service.get_appointment(appointment_id)


@router.get(
    "/{appointment_id}/history",
    response_model=list[AppointmentHistoryResponse],
    status_code=status.HTTP_200_OK,
    summary="Get appointment change history",
)
async def get_appointment_history(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> list[AppointmentHistoryResponse]:
    """Audit records for an appointment, newest first."""
    return await service.get_history(appointment_id)


@router.get(
    "/{appointment_id}/transitions",
    response_model=list[TransitionRuleResponse],
    status_code=status.HTTP_200_OK,
    summary="List transitions available from the current status",
)
async def get_available_transitions(
    appointment_id: UUID,
    current_actor: CurrentActor,
    service: Appointments,
) -> list[TransitionRuleResponse]:
    """Statuses the appointment may move to next."""
    rules = await service.available_transitions(appointment_id)
    return [TransitionRuleResponse.model_validate(rule) for rule in rules]


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_200_OK,
    summary="Change appointment status",
)
async def change_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusChange,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentMutationResponse:
    """
    Change appointment status (confirm, check in, cancel, complete, ...).

    The request must carry the version the caller last read. A 409 means
    someone else changed the appointment first; refresh and retry.

    Args:
        appointment_id: Appointment ID
        data: Expected version, new status and optional reason
        current_actor: Authenticated staff member
        service: Appointment service

    Returns:
        New version and updated appointment
    """
    return await service.request_status_change(
        appointment_id,
        data.expected_version,
        data.status,
        actor=current_actor,
        reason=data.reason,
    )


@router.patch(
    "/{appointment_id}/schedule",
    response_model=AppointmentMutationResponse,
    status_code=status.HTTP_200_OK,
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: AppointmentReschedule,
    current_actor: CurrentActor,
    service: Appointments,
) -> AppointmentMutationResponse:
    """
    Move an appointment to a new date and time. A reason is always required.

    Args:
        appointment_id: Appointment ID
        data: Expected version, new date-time and reason
        current_actor: Authenticated staff member
        service: Appointment service

    Returns:
        New version and updated appointment
    """
    return await service.reschedule_appointment(
        appointment_id,
        data.expected_version,
        data.scheduled_at,
        data.reason,
        actor=current_actor,
    )
