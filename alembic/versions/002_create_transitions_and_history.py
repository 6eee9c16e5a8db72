"""Create appointment_state_transitions and appointment_history tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STATUS_VALUES = (
    "'scheduled', 'confirmed', 'arrived', 'completed', 'cancelled', 'rescheduled', 'no_show'"
)
ACTIVE_SLOT_CONDITION = (
    "status IN ('scheduled', 'confirmed', 'arrived', 'rescheduled') AND deleted_at IS NULL"
)

# (from_status, to_status, requires_reason, role_required)
DEFAULT_RULES = [
    ("scheduled", "confirmed", False, None),
    ("scheduled", "arrived", False, None),
    ("scheduled", "cancelled", True, None),
    ("scheduled", "rescheduled", True, None),
    ("scheduled", "no_show", False, None),
    ("confirmed", "arrived", False, None),
    ("confirmed", "cancelled", True, None),
    ("confirmed", "rescheduled", True, None),
    ("confirmed", "no_show", False, None),
    ("rescheduled", "confirmed", False, None),
    ("rescheduled", "arrived", False, None),
    ("rescheduled", "cancelled", True, None),
    ("rescheduled", "no_show", False, None),
    ("arrived", "completed", False, "doctor"),
]


def upgrade() -> None:
    """Create rule and audit tables, seed the default status graph."""
    transitions = op.create_table(
        "appointment_state_transitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("from_status", sa.Text(), nullable=True),
        sa.Column("to_status", sa.Text(), nullable=False),
        sa.Column(
            "requires_reason", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("role_required", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            f"to_status IN ({STATUS_VALUES})",
            name="appointment_state_transitions_to_status_check",
        ),
        sa.CheckConstraint(
            f"from_status IS NULL OR from_status IN ({STATUS_VALUES})",
            name="appointment_state_transitions_from_status_check",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_appointment_state_transitions"),
        sa.UniqueConstraint("from_status", "to_status", name="uq_transition_edge"),
    )
    op.create_index(
        "uq_transition_wildcard_target",
        "appointment_state_transitions",
        ["to_status"],
        unique=True,
        postgresql_where=sa.text("from_status IS NULL"),
    )
    op.create_index(
        "uq_appointments_doctor_slot",
        "appointments",
        ["doctor_id", "scheduled_at"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_SLOT_CONDITION),
    )

    op.bulk_insert(
        transitions,
        [
            {
                "from_status": from_status,
                "to_status": to_status,
                "requires_reason": requires_reason,
                "role_required": role_required,
            }
            for from_status, to_status, requires_reason, role_required in DEFAULT_RULES
        ],
    )

    op.create_table(
        "appointment_history",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("appointment_id", postgresql.UUID(), nullable=False),
        sa.Column("field_changed", sa.Text(), nullable=False),
        sa.Column("value_before", sa.Text(), nullable=True),
        sa.Column("value_after", sa.Text(), nullable=False),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("changed_by", postgresql.UUID(), nullable=True),
        sa.Column("changed_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["appointment_id"],
            ["appointments.id"],
            name="fk_appointment_history_appointment_id",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["changed_by"],
            ["users.id"],
            name="fk_appointment_history_changed_by",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_appointment_history"),
    )
    op.create_index(
        "ix_appointment_history_appointment_id", "appointment_history", ["appointment_id"]
    )

    # History is append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION appointment_history_block_changes()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'appointment_history is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER appointment_history_append_only
        BEFORE UPDATE OR DELETE ON appointment_history
        FOR EACH ROW EXECUTE FUNCTION appointment_history_block_changes();
        """
    )


def downgrade() -> None:
    """Drop rule and audit tables."""
    op.execute("DROP TRIGGER IF EXISTS appointment_history_append_only ON appointment_history")
    op.execute("DROP FUNCTION IF EXISTS appointment_history_block_changes()")
    op.drop_index("ix_appointment_history_appointment_id", table_name="appointment_history")
    op.drop_table("appointment_history")
    op.drop_index("uq_appointments_doctor_slot", table_name="appointments")
    op.drop_index("uq_transition_wildcard_target", table_name="appointment_state_transitions")
    op.drop_table("appointment_state_transitions")
