"""Create queue_entries table.

Revision ID: 002
Revises: 001
Create Date: 2026-10-12 00:10:00.000000

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


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "queue_entries",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="waiting", nullable=False),
        sa.Column("priority", sa.VARCHAR(length=10), server_default="normal", nullable=False),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("estimated_wait_minutes", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column("consultation_start_time", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("consultation_end_time", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("actual_wait_minutes", sa.Integer(), nullable=True),
        sa.CheckConstraint(
            "status IN ('waiting', 'in_consultation', 'completed', 'skipped', 'left')",
            name="queue_entries_status_check",
        ),
        sa.CheckConstraint(
            "priority IN ('low', 'normal', 'high')",
            name="queue_entries_priority_check",
        ),
        sa.CheckConstraint(
            "consultation_end_time IS NULL OR consultation_start_time IS NULL "
            "OR consultation_start_time <= consultation_end_time",
            name="queue_entries_consultation_times_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index(
        "idx_queue_entries_doctor_status_position",
        "queue_entries",
        ["doctor_id", "status", "position"],
    )
    op.create_index("idx_queue_entries_patient_status", "queue_entries", ["patient_id", "status"])
    op.create_index(
        "idx_queue_entries_status_created_at", "queue_entries", ["status", "created_at"]
    )

    # One active entry per doctor and patient, one consultation per doctor
    op.create_index(
        "uq_queue_entries_active_pair",
        "queue_entries",
        ["doctor_id", "patient_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('waiting', 'in_consultation')"),
    )
    op.create_index(
        "uq_queue_entries_one_consultation",
        "queue_entries",
        ["doctor_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_consultation'"),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("uq_queue_entries_one_consultation", table_name="queue_entries")
    op.drop_index("uq_queue_entries_active_pair", table_name="queue_entries")
    op.drop_index("idx_queue_entries_status_created_at", table_name="queue_entries")
    op.drop_index("idx_queue_entries_patient_status", table_name="queue_entries")
    op.drop_index("idx_queue_entries_doctor_status_position", table_name="queue_entries")
    op.drop_table("queue_entries")
