"""Doctor profile table using SQLAlchemy Core.

Owned by the doctor profile/verification service. The queue engine only
reads it to decide whether a doctor is accepting patients and how long a
consultation usually takes.
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Table,
    Text,
    Time,
    Uuid,
    func,
    text,
)

from healthqueue.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    Column("city", String(100)),
    # Verification gates queue visibility
    Column("is_verified", Boolean, nullable=False, server_default=text("false"), index=True),
    Column("is_available", Boolean, nullable=False, server_default=text("true")),
    # Queue parameters
    Column("avg_consultation_minutes", Integer, nullable=True),
    Column("max_queue_size", Integer, nullable=False, server_default=text("50")),
    # Working schedule, e.g. ["monday", "tuesday"]
    Column("working_days", JSON),
    Column("working_hours_start", Time),
    Column("working_hours_end", Time),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "avg_consultation_minutes IS NULL OR avg_consultation_minutes BETWEEN 5 AND 60",
        name="doctors_avg_consultation_check",
    ),
    CheckConstraint("max_queue_size > 0", name="doctors_max_queue_size_check"),
)
