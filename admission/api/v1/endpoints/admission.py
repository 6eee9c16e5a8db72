"""Patient admission endpoint."""

from fastapi import APIRouter, status

from admission.dependencies import CurrentActor, DatabaseSession
from admission.schemas.patients import PatientAdmission, PatientAdmissionResponse
from admission.services.admission_service import AdmissionService

router = APIRouter()


@router.post(
    "/",
    response_model=PatientAdmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Admit a patient with their first appointment",
)
async def admit_patient(
    data: PatientAdmission,
    current_actor: CurrentActor,
    db: DatabaseSession,
) -> PatientAdmissionResponse:
    """
    Create a patient and their initial appointment atomically.

    Args:
        data: Patient demographics and appointment fields
        current_actor: Authenticated staff member
        db: Database session

    Returns:
        Created patient and appointment IDs
    """
    service = AdmissionService(db)
    return await service.create_patient_and_appointment(data, current_actor)
