"""Database models."""

from admission.models.appointments import (
    appointment_history,
    appointment_state_transitions,
    appointments,
)
from admission.models.base import metadata
from admission.models.doctors import doctors
from admission.models.patients import patients
from admission.models.users import users

__all__ = [
    "appointment_history",
    "appointment_state_transitions",
    "appointments",
    "doctors",
    "metadata",
    "patients",
    "users",
]
