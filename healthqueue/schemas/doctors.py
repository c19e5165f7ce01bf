"""Doctor profile schemas (read-only view used by the queue engine)."""

from datetime import time
from uuid import UUID

from pydantic import BaseModel


class DoctorAvailability(BaseModel):
    """Availability facts about a doctor, owned by the profile service."""

    id: UUID
    full_name: str
    specialization: str | None = None
    is_verified: bool
    is_available: bool
    avg_consultation_minutes: int | None = None
    max_queue_size: int = 50
    working_days: list[str] | None = None
    working_hours_start: time | None = None
    working_hours_end: time | None = None

    model_config = {"from_attributes": True}
