"""User model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Table,
    Text,
    Uuid,
    text,
)

from admission.models.base import metadata

# Staff accounts acting on appointments
users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("email", Text, nullable=False, unique=True, index=True),
    Column("full_name", Text),
    Column("role", Text, nullable=False, server_default=text("'reception'")),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
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
    CheckConstraint(
        "role IN ('admin', 'doctor', 'reception', 'assistant')",
        name="role_check",
    ),
)
