"""Queue schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class QueueStatus(str, Enum):
    """Queue entry status enumeration."""

    WAITING = "waiting"
    IN_CONSULTATION = "in_consultation"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    LEFT = "left"

    @property
    def is_active(self) -> bool:
        """Active entries occupy the doctor's queue."""
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Terminal entries are kept for history only."""
        return not self.is_active


ACTIVE_STATUSES = frozenset({QueueStatus.WAITING, QueueStatus.IN_CONSULTATION})
TERMINAL_STATUSES = frozenset({QueueStatus.COMPLETED, QueueStatus.SKIPPED, QueueStatus.LEFT})


class QueuePriority(str, Enum):
    """Triage priority, high is served first."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class QueueChangeReason(str, Enum):
    """Why a doctor's queue changed."""

    JOINED = "joined"
    LEFT = "left"
    STARTED = "started"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class QueueJoinRequest(BaseModel):
    """Schema for joining a doctor's queue.

    ``patient_id`` defaults to the caller; only admins may join on behalf of
    another patient.
    """

    doctor_id: UUID
    patient_id: UUID | None = None
    priority: QueuePriority = QueuePriority.NORMAL
    notes: str | None = Field(None, max_length=1000, description="Symptom description")


class QueueEntryAction(BaseModel):
    """Schema for operations addressed to a single entry."""

    entry_id: UUID


class QueueStatusUpdate(BaseModel):
    """Schema for a direct status change (only ``skipped`` is accepted)."""

    status: QueueStatus


class QueueEntryResponse(BaseModel):
    """Schema for a queue entry."""

    id: UUID
    doctor_id: UUID
    patient_id: UUID
    status: QueueStatus
    priority: QueuePriority
    position: int | None = None
    estimated_wait_minutes: int | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    consultation_start_time: datetime | None = None
    consultation_end_time: datetime | None = None
    actual_wait_minutes: int | None = None

    model_config = {"from_attributes": True}


class DoctorQueueResponse(BaseModel):
    """A doctor's live queue: the running consultation first, then waiting by position."""

    doctor_id: UUID
    entries: list[QueueEntryResponse]
    in_consultation: QueueEntryResponse | None = None
    total_waiting: int
    average_consultation_minutes: int


class PatientQueueStatusResponse(BaseModel):
    """A patient's current entry (most recently joined) and all active entries."""

    patient_id: UUID
    entry: QueueEntryResponse | None = None
    active_entries: list[QueueEntryResponse] = []


class QueueHistoryResponse(BaseModel):
    """Paginated terminal entries for a patient."""

    total: int
    page: int
    page_size: int
    items: list[QueueEntryResponse]


class DoctorQueueStatsResponse(BaseModel):
    """Today's queue statistics for a doctor."""

    doctor_id: UUID
    date: str
    total: int
    by_status: dict[str, int]
    average_wait_minutes: float | None = None
    average_consultation_minutes: float | None = None
    current_average_consultation_minutes: int


class QueueOverviewResponse(BaseModel):
    """System-wide queue activity for administrators."""

    active_entries: int
    waiting_entries: int
    in_consultation_entries: int
    completed_consultations: int
    waiting_by_doctor: dict[str, int]
    connected_subscribers: dict[str, int]


class QueueChangedEvent(BaseModel):
    """Push notification that a doctor's queue changed.

    Clients treat it as an invalidation hint and re-fetch their view.
    """

    type: Literal["queue_changed"] = "queue_changed"
    doctor_id: UUID
    patient_id: UUID
    entry_id: UUID
    reason: QueueChangeReason
    status: QueueStatus
    timestamp: datetime
