"""Position and ETA calculation for a single doctor's queue.

Everything here is a pure function of its arguments: no database, no clock
unless ``now`` is omitted. The queue service is the only caller and persists
the results.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from healthqueue.schemas.queue import QueuePriority, QueueStatus

# Lower rank is served first
PRIORITY_RANK: dict[QueuePriority, int] = {
    QueuePriority.HIGH: 0,
    QueuePriority.NORMAL: 1,
    QueuePriority.LOW: 2,
}


@dataclass(frozen=True)
class CalculatorEntry:
    """The fields of a queue entry that ordering and ETA depend on."""

    id: UUID
    status: QueueStatus
    priority: QueuePriority
    created_at: datetime
    consultation_start_time: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "CalculatorEntry":
        """Build from a ``queue_entries`` row mapping."""
        return cls(
            id=row["id"],
            status=QueueStatus(row["status"]),
            priority=QueuePriority(row["priority"]),
            created_at=row["created_at"],
            consultation_start_time=row["consultation_start_time"],
        )


@dataclass(frozen=True)
class QueueSlot:
    """Computed rank and wait estimate for one waiting entry."""

    entry_id: UUID
    position: int
    estimated_wait_minutes: int


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def sort_key(entry: CalculatorEntry) -> tuple[int, datetime, str]:
    """Priority first, then join time, then id for determinism."""
    return (PRIORITY_RANK[entry.priority], as_utc(entry.created_at), str(entry.id))


def remaining_consultation_minutes(
    consultation: CalculatorEntry | None,
    average_consultation_minutes: int,
    now: datetime,
    elapsed_aware: bool = True,
) -> int:
    """
    Estimate how long the running consultation still takes.

    Args:
        consultation: The doctor's in-consultation entry, if any
        average_consultation_minutes: Expected consultation length
        now: Reference time
        elapsed_aware: When False the full average is always assumed

    Returns:
        Minutes left, never negative. Zero when nobody is being seen.
    """
    if consultation is None:
        return 0
    if not elapsed_aware or consultation.consultation_start_time is None:
        return average_consultation_minutes

    elapsed = as_utc(now) - as_utc(consultation.consultation_start_time)
    elapsed_minutes = int(elapsed.total_seconds() // 60)
    return max(0, average_consultation_minutes - elapsed_minutes)


def recompute(
    entries: Iterable[CalculatorEntry],
    average_consultation_minutes: int,
    now: datetime | None = None,
    elapsed_aware: bool = True,
) -> list[QueueSlot]:
    """
    Rank a doctor's waiting entries and estimate their wait.

    Entries in any status may be passed; only ``waiting`` ones get a slot and
    the ``in_consultation`` one (if present) contributes its remaining time
    as a constant offset. ETA is ``position * average + remaining``.

    Args:
        entries: The doctor's entries
        average_consultation_minutes: Expected consultation length
        now: Reference time for the running consultation (defaults to now)
        elapsed_aware: Whether elapsed consultation time reduces the offset

    Returns:
        Slots ordered by position, positions dense from 1
    """
    if average_consultation_minutes <= 0:
        raise ValueError("average_consultation_minutes must be positive")

    entries = list(entries)
    waiting = sorted(
        (e for e in entries if e.status == QueueStatus.WAITING),
        key=sort_key,
    )
    consulting = [e for e in entries if e.status == QueueStatus.IN_CONSULTATION]
    current = min(
        consulting,
        key=lambda e: as_utc(e.consultation_start_time or e.created_at),
        default=None,
    )

    offset = remaining_consultation_minutes(
        current,
        average_consultation_minutes,
        now or datetime.now(UTC),
        elapsed_aware=elapsed_aware,
    )

    return [
        QueueSlot(
            entry_id=entry.id,
            position=position,
            estimated_wait_minutes=position * average_consultation_minutes + offset,
        )
        for position, entry in enumerate(waiting, start=1)
    ]
