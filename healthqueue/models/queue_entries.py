"""Queue entries table using SQLAlchemy Core.

One row per patient occupancy of a doctor's queue. Terminal rows
(completed, skipped, left) are kept for history.
"""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Table,
    Text,
    Uuid,
    text,
)

from healthqueue.models.base import metadata

ACTIVE_STATUS_SQL = "status IN ('waiting', 'in_consultation')"

queue_entries = Table(
    "queue_entries",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Parties (immutable after creation)
    Column("doctor_id", Uuid, nullable=False),
    Column("patient_id", Uuid, nullable=False),
    # State
    Column("status", String(20), nullable=False, server_default="waiting"),
    Column("priority", String(10), nullable=False, server_default="normal"),
    # Derived, rewritten on every mutation of the doctor's queue
    Column("position", Integer, nullable=True),
    Column("estimated_wait_minutes", Integer, nullable=True),
    Column("notes", Text, nullable=True),
    # Timestamps
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("consultation_start_time", DateTime(timezone=True), nullable=True),
    Column("consultation_end_time", DateTime(timezone=True), nullable=True),
    Column("actual_wait_minutes", Integer, nullable=True),
    # Constraints
    CheckConstraint(
        "status IN ('waiting', 'in_consultation', 'completed', 'skipped', 'left')",
        name="queue_entries_status_check",
    ),
    CheckConstraint(
        "priority IN ('low', 'normal', 'high')",
        name="queue_entries_priority_check",
    ),
    CheckConstraint(
        "consultation_end_time IS NULL OR consultation_start_time IS NULL "
        "OR consultation_start_time <= consultation_end_time",
        name="queue_entries_consultation_times_check",
    ),
    Index("idx_queue_entries_doctor_status_position", "doctor_id", "status", "position"),
    Index("idx_queue_entries_patient_status", "patient_id", "status"),
    Index("idx_queue_entries_status_created_at", "status", "created_at"),
    # A patient holds at most one active entry per doctor
    Index(
        "uq_queue_entries_active_pair",
        "doctor_id",
        "patient_id",
        unique=True,
        postgresql_where=text(ACTIVE_STATUS_SQL),
        sqlite_where=text(ACTIVE_STATUS_SQL),
    ),
    # A doctor consults one patient at a time
    Index(
        "uq_queue_entries_one_consultation",
        "doctor_id",
        unique=True,
        postgresql_where=text("status = 'in_consultation'"),
        sqlite_where=text("status = 'in_consultation'"),
    ),
)
