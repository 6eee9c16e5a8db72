"""Appointment, transition rule and history tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)

from admission.models.base import metadata

STATUS_VALUES = (
    "'scheduled', 'confirmed', 'arrived', 'completed', 'cancelled', 'rescheduled', 'no_show'"
)

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column(
        "patient_id",
        Uuid,
        ForeignKey("patients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "doctor_id",
        Uuid,
        ForeignKey("doctors.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    ),
    # Appointment details
    Column("scheduled_at", DateTime(timezone=True), nullable=False, index=True),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # Status management
    Column(
        "status",
        Text,
        nullable=False,
        server_default=text("'scheduled'"),
        index=True,
    ),
    # Optimistic concurrency: bumped by exactly one on every accepted mutation
    Column("version", Integer, nullable=False, server_default=text("1")),
    Column("modification_count", Integer, nullable=False, server_default=text("0")),
    # Audit fields
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Soft delete (healthcare compliance)
    Column("deleted_at", DateTime(timezone=True), nullable=True),
    # Constraints
    CheckConstraint(f"status IN ({STATUS_VALUES})", name="status_check"),
    CheckConstraint("version >= 1", name="version_check"),
)

# One active booking per doctor and time; inactive and deleted rows free the slot
ACTIVE_SLOT_CONDITION = text(
    "status IN ('scheduled', 'confirmed', 'arrived', 'rescheduled') AND deleted_at IS NULL"
)
Index(
    "uq_appointments_doctor_slot",
    appointments.c.doctor_id,
    appointments.c.scheduled_at,
    unique=True,
    postgresql_where=ACTIVE_SLOT_CONDITION,
    sqlite_where=ACTIVE_SLOT_CONDITION,
)

# Allowed status edges; a NULL from_status matches any current status
appointment_state_transitions = Table(
    "appointment_state_transitions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("from_status", Text, nullable=True),
    Column("to_status", Text, nullable=False),
    Column("requires_reason", Boolean, nullable=False, server_default=text("false")),
    Column("role_required", Text, nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    ),
    UniqueConstraint("from_status", "to_status", name="uq_transition_edge"),
    CheckConstraint(f"to_status IN ({STATUS_VALUES})", name="to_status_check"),
    CheckConstraint(
        f"from_status IS NULL OR from_status IN ({STATUS_VALUES})",
        name="from_status_check",
    ),
)

# NULLs are distinct in uq_transition_edge, so wildcard targets need their own index
Index(
    "uq_transition_wildcard_target",
    appointment_state_transitions.c.to_status,
    unique=True,
    postgresql_where=text("from_status IS NULL"),
    sqlite_where=text("from_status IS NULL"),
)

# Append-only audit trail, one row per accepted mutation
appointment_history = Table(
    "appointment_history",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("field_changed", Text, nullable=False),
    Column("value_before", Text, nullable=True),
    Column("value_after", Text, nullable=False),
    Column("change_reason", Text, nullable=True),
    Column(
        "changed_by",
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("changed_at", DateTime(timezone=True), nullable=False),
)
