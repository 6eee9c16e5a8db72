"""API v1 router configuration."""

from fastapi import APIRouter

from admission.api.v1.endpoints import (
    admission,
    appointments,
    health,
    transitions,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(admission.router, prefix="/admission", tags=["Admission"])
api_router.include_router(appointments.router, prefix="/appointments", tags=["Appointments"])
api_router.include_router(transitions.router, prefix="/transitions", tags=["Transitions"])
