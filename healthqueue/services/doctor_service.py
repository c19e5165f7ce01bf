"""Doctor profile lookups used by the queue engine.

The doctor profile and verification workflow lives in its own service; the
queue only reads availability facts, which may change at any time.
"""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthqueue.config import settings
from healthqueue.core.redis_client import CacheManager
from healthqueue.models.doctors import doctors
from healthqueue.models.queue_entries import queue_entries
from healthqueue.schemas.doctors import DoctorAvailability
from healthqueue.schemas.queue import QueueStatus
from healthqueue.services.queue_calculator import as_utc

logger = structlog.get_logger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class DoctorService:
    """Read-only access to doctor availability."""

    def __init__(self, cache_manager: CacheManager | None = None):
        """Initialize service with optional cache manager."""
        self.cache = cache_manager

    @staticmethod
    def _get_doctor_cache_key(doctor_id: UUID) -> str:
        """Generate cache key for a doctor's availability."""
        return f"doctor:availability:{doctor_id}"

    async def get_availability(
        self,
        db: AsyncSession,
        doctor_id: UUID,
    ) -> DoctorAvailability | None:
        """Get a doctor's availability facts, cached briefly."""
        if self.cache:
            cached = self.cache.get_json(self._get_doctor_cache_key(doctor_id))
            if cached:
                return DoctorAvailability.model_validate(cached)

        query = select(doctors).where(doctors.c.id == doctor_id)
        result = await db.execute(query)
        row = result.mappings().first()

        if not row:
            return None

        availability = DoctorAvailability.model_validate(dict(row))

        if self.cache:
            self.cache.set_json(
                self._get_doctor_cache_key(doctor_id),
                availability.model_dump(mode="json"),
                ttl=settings.doctor_cache_ttl_seconds,
            )

        return availability

    @staticmethod
    def within_working_hours(doctor: DoctorAvailability, now: datetime) -> bool:
        """Check the working-days/hours descriptor against a UTC instant."""
        now = as_utc(now)
        if doctor.working_days:
            days = {day.lower() for day in doctor.working_days}
            if WEEKDAYS[now.weekday()] not in days:
                return False

        current = now.time().replace(tzinfo=None)
        if doctor.working_hours_start and current < doctor.working_hours_start:
            return False
        if doctor.working_hours_end and current >= doctor.working_hours_end:
            return False
        return True

    async def is_accepting_patients(
        self,
        db: AsyncSession,
        doctor_id: UUID,
        now: datetime | None = None,
    ) -> bool:
        """
        Decide whether a doctor's queue is open for new patients.

        Args:
            db: Database session
            doctor_id: Doctor ID
            now: Reference time for the working-hours check

        Returns:
            True when the doctor exists, is verified and available, and (if
            enforced) is within working hours
        """
        doctor = await self.get_availability(db, doctor_id)
        if doctor is None or not doctor.is_verified or not doctor.is_available:
            return False
        if settings.enforce_working_hours:
            return self.within_working_hours(doctor, now or datetime.now(UTC))
        return True

    async def observed_consultation_minutes(
        self,
        db: AsyncSession,
        doctor_id: UUID,
        window: int | None = None,
    ) -> int | None:
        """Rounded mean duration of the doctor's most recent completed consultations."""
        query = (
            select(
                queue_entries.c.consultation_start_time,
                queue_entries.c.consultation_end_time,
            )
            .where(
                queue_entries.c.doctor_id == doctor_id,
                queue_entries.c.status == QueueStatus.COMPLETED.value,
                queue_entries.c.consultation_start_time.is_not(None),
                queue_entries.c.consultation_end_time.is_not(None),
            )
            .order_by(queue_entries.c.consultation_end_time.desc())
            .limit(window or settings.observed_average_window)
        )
        result = await db.execute(query)
        durations = [
            (as_utc(row.consultation_end_time) - as_utc(row.consultation_start_time)).total_seconds()
            / 60
            for row in result
        ]
        durations = [d for d in durations if d > 0]
        if not durations:
            return None
        return max(1, round(sum(durations) / len(durations)))

    async def average_consultation_minutes(self, db: AsyncSession, doctor_id: UUID) -> int:
        """
        Expected consultation length used for ETAs.

        The profile value wins; otherwise the observed average of recent
        consultations; otherwise the configured fallback.
        """
        doctor = await self.get_availability(db, doctor_id)
        if doctor is not None and doctor.avg_consultation_minutes:
            return doctor.avg_consultation_minutes

        observed = await self.observed_consultation_minutes(db, doctor_id)
        if observed is not None:
            return observed

        return settings.default_consultation_minutes
