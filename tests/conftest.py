import os
from collections.abc import AsyncGenerator
from datetime import datetime
from typing import Any
from uuid import UUID

# Settings are read at import time; give the app a throwaway environment
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from admission.database import get_db
from admission.dependencies import get_transition_rules
from admission.main import app
from admission.models import metadata
from admission.models.appointments import appointments
from admission.models.doctors import doctors
from admission.models.patients import patients
from admission.models.users import users
from admission.schemas.appointments import AppointmentStatus
from admission.schemas.users import Actor, UserRole
from admission.services.transition_rules import TransitionRuleRegistry, seed_transition_rules
from tests.helpers import MakeAppointment, auth_headers, in_days

# Tests run against an in-memory SQLite database; point TEST_DATABASE_URL at
# a disposable Postgres database to run them against the production driver.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
TEST_DATABASE_URL = TEST_DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

if TEST_DATABASE_URL.startswith("sqlite"):
    # One shared connection so every session sees the same in-memory database
    test_engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
else:
    test_engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh schema."""
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def rule_registry() -> TransitionRuleRegistry:
    """Transition rule registry without Redis."""
    return TransitionRuleRegistry()


@pytest_asyncio.fixture
async def default_rules(db_session: AsyncSession) -> int:
    """Seed the default status graph."""
    return await seed_transition_rules(db_session)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    rule_registry: TransitionRuleRegistry,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transition_rules] = lambda: rule_registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _create_user(db: AsyncSession, email: str, role: UserRole, **extra: Any) -> Actor:
    result = await db.execute(
        insert(users)
        .values(email=email, full_name=email.split("@")[0].title(), role=role.value, **extra)
        .returning(users)
    )
    row = result.mappings().one()
    await db.commit()
    return Actor.model_validate(dict(row))


@pytest_asyncio.fixture
async def reception_user(db_session: AsyncSession) -> Actor:
    """Front-desk staff member."""
    return await _create_user(db_session, "reception@example.com", UserRole.RECEPTION)


@pytest_asyncio.fixture
async def doctor_user(db_session: AsyncSession) -> Actor:
    """Staff member with the doctor role."""
    return await _create_user(db_session, "doctor@example.com", UserRole.DOCTOR)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> Actor:
    """Administrator."""
    return await _create_user(db_session, "admin@example.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def inactive_user(db_session: AsyncSession) -> Actor:
    """Deactivated staff account."""
    return await _create_user(
        db_session, "former@example.com", UserRole.RECEPTION, is_active=False
    )


@pytest.fixture
def reception_headers(reception_user: Actor) -> dict[str, str]:
    return auth_headers(reception_user)


@pytest.fixture
def doctor_headers(doctor_user: Actor) -> dict[str, str]:
    return auth_headers(doctor_user)


@pytest.fixture
def admin_headers(admin_user: Actor) -> dict[str, str]:
    return auth_headers(admin_user)


@pytest_asyncio.fixture
async def doctor(db_session: AsyncSession) -> UUID:
    """An active doctor."""
    result = await db_session.execute(
        insert(doctors)
        .values(full_name="Dr. Ana Ruiz", specialization="General Medicine")
        .returning(doctors.c.id)
    )
    doctor_id = result.scalar_one()
    await db_session.commit()
    return doctor_id


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> UUID:
    """A registered patient."""
    result = await db_session.execute(
        insert(patients)
        .values(first_name="Maria", last_name="Lopez", phone="+34 600 123 456")
        .returning(patients.c.id)
    )
    patient_id = result.scalar_one()
    await db_session.commit()
    return patient_id


@pytest_asyncio.fixture
async def make_appointment(db_session: AsyncSession, patient: UUID) -> MakeAppointment:
    """Factory inserting an appointment directly in a given state."""

    async def _make(
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        version: int = 1,
        doctor_id: UUID | None = None,
        scheduled_at: datetime | None = None,
    ) -> UUID:
        result = await db_session.execute(
            insert(appointments)
            .values(
                patient_id=patient,
                doctor_id=doctor_id,
                scheduled_at=scheduled_at or in_days(3),
                reason="Annual checkup",
                status=status.value,
                version=version,
            )
            .returning(appointments.c.id)
        )
        appointment_id = result.scalar_one()
        await db_session.commit()
        return appointment_id

    return _make

