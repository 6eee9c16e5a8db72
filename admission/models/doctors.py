"""Doctor model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from admission.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
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
)
