"""Patient model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from admission.models.base import metadata

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Demographics captured at admission
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("phone", String(20), nullable=False),
    Column("email", Text),
    Column("birth_date", Date),
    Column("gender", String(20)),
    Column("registration_notes", Text),
    # Staff member who admitted the patient
    Column(
        "created_by",
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    ),
    # Metadata
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
    # Duplicate admission lookups
    Index("ix_patients_identity", "first_name", "last_name", "birth_date"),
)
