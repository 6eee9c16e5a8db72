"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from admission.schemas.users import UserRole


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"


# Statuses that can no longer be rescheduled
TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)

# Statuses that hold a doctor's time slot
ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.SCHEDULED,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.ARRIVED,
        AppointmentStatus.RESCHEDULED,
    }
)


def _blank_to_none(v: str | None) -> str | None:
    if v is None:
        return None
    v = v.strip()
    return v or None


class AppointmentStatusChange(BaseModel):
    """Schema for requesting a status transition."""

    expected_version: int = Field(..., ge=0, description="Version the caller last read")
    status: AppointmentStatus
    reason: str | None = Field(None, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str | None) -> str | None:
        """Treat whitespace-only reasons as missing."""
        return _blank_to_none(v)


class AppointmentReschedule(BaseModel):
    """Schema for moving an appointment to a new date and time."""

    expected_version: int = Field(..., ge=0, description="Version the caller last read")
    scheduled_at: datetime
    reason: str | None = Field(None, max_length=500)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str | None) -> str | None:
        """Treat whitespace-only reasons as missing."""
        return _blank_to_none(v)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    doctor_id: UUID | None = None
    scheduled_at: datetime
    reason: str | None = None
    notes: str | None = None
    status: AppointmentStatus
    version: int
    modification_count: int
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None
    deleted_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentMutationResponse(BaseModel):
    """Result of an accepted lifecycle mutation."""

    version: int
    appointment: AppointmentResponse


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AppointmentStatusCounts(BaseModel):
    """Number of appointments per status."""

    total: int
    counts: dict[AppointmentStatus, int]


class AppointmentHistoryResponse(BaseModel):
    """One audit record."""

    id: UUID
    appointment_id: UUID
    field_changed: str
    value_before: str | None = None
    value_after: str
    change_reason: str | None = None
    changed_by: UUID | None = None
    changed_at: datetime

    model_config = {"from_attributes": True}


class TransitionRuleResponse(BaseModel):
    """One allowed edge of the status graph."""

    from_status: AppointmentStatus | None = None
    to_status: AppointmentStatus
    requires_reason: bool
    role_required: UserRole | None = None

    model_config = {"from_attributes": True}
