"""Create doctors table.

Revision ID: 001
Revises:
Create Date: 2026-10-12 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Enable pgcrypto extension
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "doctors",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("specialization", sa.VARCHAR(length=200), nullable=True),
        sa.Column("city", sa.VARCHAR(length=100), nullable=True),
        sa.Column("is_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_available", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("avg_consultation_minutes", sa.Integer(), nullable=True),
        sa.Column("max_queue_size", sa.Integer(), server_default=sa.text("50"), nullable=False),
        sa.Column("working_days", postgresql.JSON(), nullable=True),
        sa.Column("working_hours_start", sa.Time(), nullable=True),
        sa.Column("working_hours_end", sa.Time(), nullable=True),
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
        sa.CheckConstraint(
            "avg_consultation_minutes IS NULL OR avg_consultation_minutes BETWEEN 5 AND 60",
            name="doctors_avg_consultation_check",
        ),
        sa.CheckConstraint("max_queue_size > 0", name="doctors_max_queue_size_check"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_doctors_specialization", "doctors", ["specialization"])
    op.create_index("ix_doctors_is_verified", "doctors", ["is_verified"])


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("ix_doctors_is_verified", table_name="doctors")
    op.drop_index("ix_doctors_specialization", table_name="doctors")
    op.drop_table("doctors")
