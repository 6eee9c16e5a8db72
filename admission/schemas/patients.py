"""Patient admission schemas."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


class PatientAdmission(BaseModel):
    """Patient demographics plus the first appointment, created together."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=150)
    phone: str = Field(..., min_length=7, max_length=20)
    email: EmailStr | None = None
    birth_date: date | None = None
    gender: str | None = Field(None, max_length=20)
    registration_notes: str | None = Field(None, max_length=1000)
    # Initial appointment
    scheduled_at: datetime
    doctor_id: UUID | None = None
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=1000)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_names(cls, v: str) -> str:
        """Normalize surrounding whitespace so duplicate checks match."""
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate phone number format."""
        # Remove common separators
        cleaned = (
            v.replace("-", "").replace(" ", "").replace("(", "").replace(")", "").replace("+", "")
        )
        if not cleaned.isdigit():
            raise ValueError("Phone number must contain only digits and separators")
        if len(cleaned) < 7:
            raise ValueError("Phone number must have at least 7 digits")
        return v

    @field_validator("birth_date")
    @classmethod
    def validate_birth_date(cls, v: date | None) -> date | None:
        """Reject birth dates in the future."""
        if v and v > date.today():
            raise ValueError("Birth date cannot be in the future")
        return v


class PatientAdmissionResponse(BaseModel):
    """Identifiers of the rows created by an admission."""

    patient_id: UUID
    appointment_id: UUID
    version: int
