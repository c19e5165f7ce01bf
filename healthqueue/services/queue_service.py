"""Queue mutation service: the only writer of queue entries.

Every mutation of a doctor's queue runs inside that doctor's lock and one
database transaction: validate, change the entry, recompute positions and
ETAs of the whole queue, commit. The change event is published only after
the commit, and a failed publish never undoes the mutation.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from healthqueue.config import settings
from healthqueue.core.exceptions import (
    AppException,
    BusyException,
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    UnavailableException,
)
from healthqueue.core.metrics import QUEUE_REJECTIONS, QUEUE_TRANSITIONS
from healthqueue.core.notification_hub import NotificationHub
from healthqueue.core.queue_locks import DoctorQueueLocks
from healthqueue.models.queue_entries import queue_entries
from healthqueue.schemas.auth import Principal, UserRole
from healthqueue.schemas.queue import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    DoctorQueueResponse,
    DoctorQueueStatsResponse,
    PatientQueueStatusResponse,
    QueueChangedEvent,
    QueueChangeReason,
    QueueEntryResponse,
    QueueHistoryResponse,
    QueueOverviewResponse,
    QueuePriority,
    QueueStatus,
)
from healthqueue.services.doctor_service import DoctorService
from healthqueue.services.queue_calculator import (
    CalculatorEntry,
    QueueSlot,
    as_utc,
    recompute,
)

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.WAITING: frozenset(
        {QueueStatus.IN_CONSULTATION, QueueStatus.SKIPPED, QueueStatus.LEFT}
    ),
    QueueStatus.IN_CONSULTATION: frozenset({QueueStatus.COMPLETED, QueueStatus.SKIPPED}),
}

TRANSITION_REASONS: dict[QueueStatus, QueueChangeReason] = {
    QueueStatus.IN_CONSULTATION: QueueChangeReason.STARTED,
    QueueStatus.COMPLETED: QueueChangeReason.COMPLETED,
    QueueStatus.SKIPPED: QueueChangeReason.SKIPPED,
    QueueStatus.LEFT: QueueChangeReason.LEFT,
}

# PostgreSQL lock_not_available
LOCK_NOT_AVAILABLE = "55P03"

ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]
TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    """Check the entry state machine."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _matches(principal: Principal, party_id: UUID) -> bool:
    try:
        return UUID(principal.identity) == party_id
    except ValueError:
        return False


class QueueService:
    """Service for joining, advancing and reading doctors' queues."""

    def __init__(
        self,
        db: AsyncSession,
        hub: NotificationHub | None = None,
        locks: DoctorQueueLocks | None = None,
        doctor_service: DoctorService | None = None,
    ):
        """
        Initialize service.

        Args:
            db: Database session
            hub: Realtime hub receiving change events (None disables push)
            locks: Per-doctor lock registry shared by every request
            doctor_service: Doctor availability lookups
        """
        self.db = db
        self.hub = hub
        self.locks = locks or DoctorQueueLocks(timeout=settings.queue_lock_timeout_seconds)
        self.doctor_service = doctor_service or DoctorService()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def join(
        self,
        doctor_id: UUID,
        patient_id: UUID,
        priority: QueuePriority = QueuePriority.NORMAL,
        notes: str | None = None,
        actor: Principal | None = None,
    ) -> QueueEntryResponse:
        """
        Add a patient to the end of a doctor's queue (within its priority).

        Args:
            doctor_id: Doctor whose queue is joined
            patient_id: Joining patient
            priority: Triage priority
            notes: Symptom description
            actor: Caller; patients may only join for themselves

        Returns:
            The new waiting entry with its position and ETA

        Raises:
            ForbiddenException: If the actor may not join for this patient
            UnavailableException: If the doctor is not accepting patients or
                the queue is full
            ConflictException: If the patient already has an active entry
                with this doctor
            BusyException: If the doctor's queue stays locked too long
        """
        async with self._rejections("join"):
            if actor is not None and not actor.is_admin:
                if not (actor.has_role(UserRole.PATIENT) and _matches(actor, patient_id)):
                    raise ForbiddenException("Patients can only join a queue for themselves")

            async with self.locks.hold(doctor_id):
                try:
                    await self._lock_doctor_transaction(doctor_id)
                    now = datetime.now(UTC)

                    if not await self.doctor_service.is_accepting_patients(
                        self.db, doctor_id, now
                    ):
                        raise UnavailableException("Doctor is not accepting patients")

                    if await self._active_entry_id(doctor_id, patient_id) is not None:
                        raise ConflictException(
                            "Patient is already in this doctor's queue",
                        )

                    doctor = await self.doctor_service.get_availability(self.db, doctor_id)
                    waiting = await self._count(doctor_id, [QueueStatus.WAITING.value])
                    if doctor is not None and waiting >= doctor.max_queue_size:
                        raise UnavailableException("Doctor's queue is full")

                    stmt = (
                        insert(queue_entries)
                        .values(
                            doctor_id=doctor_id,
                            patient_id=patient_id,
                            status=QueueStatus.WAITING.value,
                            priority=priority.value,
                            notes=notes,
                            created_at=now,
                            updated_at=now,
                        )
                        .returning(queue_entries.c.id)
                    )
                    result = await self.db.execute(stmt)
                    entry_id = result.scalar_one()

                    await self._recompute(doctor_id, now)
                    entry = await self._load_entry(entry_id)
                    await self.db.commit()
                except IntegrityError:
                    await self.db.rollback()
                    raise ConflictException("Patient is already in this doctor's queue")
                except Exception:
                    await self.db.rollback()
                    raise

        await self._publish(entry, QueueChangeReason.JOINED)
        return entry

    async def leave(self, entry_id: UUID, actor: Principal | None = None) -> QueueEntryResponse:
        """Patient leaves a queue they are waiting in."""
        return await self._transition(entry_id, QueueStatus.LEFT, actor)

    async def start_consultation(
        self,
        entry_id: UUID,
        actor: Principal | None = None,
    ) -> QueueEntryResponse:
        """Doctor calls a waiting patient in."""
        return await self._transition(entry_id, QueueStatus.IN_CONSULTATION, actor)

    async def complete_consultation(
        self,
        entry_id: UUID,
        actor: Principal | None = None,
    ) -> QueueEntryResponse:
        """Doctor finishes the running consultation."""
        return await self._transition(entry_id, QueueStatus.COMPLETED, actor)

    async def set_status(
        self,
        entry_id: UUID,
        status: QueueStatus,
        actor: Principal | None = None,
    ) -> QueueEntryResponse:
        """
        Set an entry's status directly.

        Only ``skipped`` (a no-show) may be set this way; every other target
        has its own operation and is rejected here.

        Raises:
            InvalidStateException: For any other target status
        """
        if status != QueueStatus.SKIPPED:
            async with self._rejections("set_status"):
                entry = await self._get_entry_or_404(entry_id)
                self._authorize_doctor_side(entry, actor)
                raise InvalidStateException(f"Status cannot be set to '{status.value}' directly")
        return await self._transition(entry_id, QueueStatus.SKIPPED, actor)

    async def _transition(
        self,
        entry_id: UUID,
        target: QueueStatus,
        actor: Principal | None,
    ) -> QueueEntryResponse:
        reason = TRANSITION_REASONS[target]
        async with self._rejections(reason.value):
            current = await self._get_entry_or_404(entry_id)
            if target == QueueStatus.LEFT:
                self._authorize_patient_side(current, actor)
            else:
                self._authorize_doctor_side(current, actor)

            doctor_id = current.doctor_id
            async with self.locks.hold(doctor_id):
                try:
                    await self._lock_doctor_transaction(doctor_id)
                    # Re-read under the lock, the entry may have moved meanwhile
                    entry = await self._get_entry_or_404(entry_id)
                    if not can_transition(entry.status, target):
                        raise InvalidStateException(
                            f"Cannot change entry from '{entry.status.value}' to '{target.value}'"
                        )

                    now = datetime.now(UTC)
                    values = {
                        "status": target.value,
                        "updated_at": now,
                        "position": None,
                        "estimated_wait_minutes": None,
                    }

                    if target == QueueStatus.IN_CONSULTATION:
                        if await self._count(
                            doctor_id, [QueueStatus.IN_CONSULTATION.value]
                        ):
                            raise ConflictException("Doctor is already in a consultation")
                        values["consultation_start_time"] = now
                        values["actual_wait_minutes"] = int(
                            (now - as_utc(entry.created_at)).total_seconds() // 60
                        )
                    elif target == QueueStatus.COMPLETED:
                        values["consultation_end_time"] = now

                    await self.db.execute(
                        update(queue_entries)
                        .where(
                            queue_entries.c.id == entry_id,
                            queue_entries.c.status == entry.status.value,
                        )
                        .values(**values)
                    )

                    await self._recompute(doctor_id, now)
                    updated = await self._load_entry(entry_id)
                    await self.db.commit()
                except IntegrityError:
                    await self.db.rollback()
                    raise ConflictException("Doctor is already in a consultation")
                except Exception:
                    await self.db.rollback()
                    raise

        await self._publish(updated, reason)
        return updated

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_entry(self, entry_id: UUID) -> QueueEntryResponse:
        """Get a single entry by ID."""
        return await self._get_entry_or_404(entry_id)

    async def get_queue_for_doctor(
        self,
        doctor_id: UUID,
        actor: Principal | None = None,
    ) -> DoctorQueueResponse:
        """
        Get a doctor's live queue.

        Returns:
            The in-consultation entry (if any) followed by waiting entries
            sorted by position
        """
        self._authorize_doctor_view(doctor_id, actor)

        stmt = select(queue_entries).where(
            queue_entries.c.doctor_id == doctor_id,
            queue_entries.c.status.in_(ACTIVE_VALUES),
        )
        result = await self.db.execute(stmt)
        rows = [QueueEntryResponse.model_validate(dict(r)) for r in result.mappings().all()]

        in_consultation = next(
            (e for e in rows if e.status == QueueStatus.IN_CONSULTATION),
            None,
        )
        waiting = sorted(
            (e for e in rows if e.status == QueueStatus.WAITING),
            key=lambda e: (e.position if e.position is not None else len(rows) + 1, str(e.id)),
        )
        entries = ([in_consultation] if in_consultation else []) + waiting

        return DoctorQueueResponse(
            doctor_id=doctor_id,
            entries=entries,
            in_consultation=in_consultation,
            total_waiting=len(waiting),
            average_consultation_minutes=await self.doctor_service.average_consultation_minutes(
                self.db, doctor_id
            ),
        )

    async def get_status_for_patient(
        self,
        patient_id: UUID,
        actor: Principal | None = None,
    ) -> PatientQueueStatusResponse:
        """Get the patient's active entry, the most recently joined one first."""
        self._authorize_patient_view(patient_id, actor)

        stmt = (
            select(queue_entries)
            .where(
                queue_entries.c.patient_id == patient_id,
                queue_entries.c.status.in_(ACTIVE_VALUES),
            )
            .order_by(queue_entries.c.created_at.desc())
        )
        result = await self.db.execute(stmt)
        active = [QueueEntryResponse.model_validate(dict(r)) for r in result.mappings().all()]

        return PatientQueueStatusResponse(
            patient_id=patient_id,
            entry=active[0] if active else None,
            active_entries=active,
        )

    async def get_patient_history(
        self,
        patient_id: UUID,
        page: int = 1,
        page_size: int = 20,
        actor: Principal | None = None,
    ) -> QueueHistoryResponse:
        """List a patient's finished entries, newest first."""
        self._authorize_patient_view(patient_id, actor)

        conditions = and_(
            queue_entries.c.patient_id == patient_id,
            queue_entries.c.status.in_(TERMINAL_VALUES),
        )
        count_stmt = select(func.count()).select_from(queue_entries).where(conditions)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(queue_entries)
            .where(conditions)
            .order_by(queue_entries.c.created_at.desc(), queue_entries.c.id)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        result = await self.db.execute(stmt)

        return QueueHistoryResponse(
            total=total,
            page=page,
            page_size=page_size,
            items=[QueueEntryResponse.model_validate(dict(r)) for r in result.mappings().all()],
        )

    async def get_doctor_stats(
        self,
        doctor_id: UUID,
        actor: Principal | None = None,
        now: datetime | None = None,
    ) -> DoctorQueueStatsResponse:
        """Today's (UTC) queue statistics for a doctor."""
        self._authorize_doctor_view(doctor_id, actor)

        now = as_utc(now or datetime.now(UTC))
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        stmt = select(queue_entries).where(
            queue_entries.c.doctor_id == doctor_id,
            queue_entries.c.created_at >= day_start,
            queue_entries.c.created_at < day_start + timedelta(days=1),
        )
        result = await self.db.execute(stmt)
        rows = result.mappings().all()

        by_status = {status.value: 0 for status in QueueStatus}
        for row in rows:
            by_status[row["status"]] += 1

        waits = [row["actual_wait_minutes"] for row in rows if row["actual_wait_minutes"] is not None]
        durations = [
            (as_utc(row["consultation_end_time"]) - as_utc(row["consultation_start_time"]))
            .total_seconds()
            / 60
            for row in rows
            if row["status"] == QueueStatus.COMPLETED.value
            and row["consultation_start_time"] is not None
            and row["consultation_end_time"] is not None
        ]

        return DoctorQueueStatsResponse(
            doctor_id=doctor_id,
            date=day_start.date().isoformat(),
            total=len(rows),
            by_status=by_status,
            average_wait_minutes=round(sum(waits) / len(waits), 1) if waits else None,
            average_consultation_minutes=(
                round(sum(durations) / len(durations), 1) if durations else None
            ),
            current_average_consultation_minutes=(
                await self.doctor_service.average_consultation_minutes(self.db, doctor_id)
            ),
        )

    async def get_overview(self) -> QueueOverviewResponse:
        """System-wide queue activity for administrators."""
        stmt = select(queue_entries.c.status, func.count()).group_by(queue_entries.c.status)
        counts = {status: count for status, count in (await self.db.execute(stmt)).all()}

        per_doctor_stmt = (
            select(queue_entries.c.doctor_id, func.count())
            .where(queue_entries.c.status == QueueStatus.WAITING.value)
            .group_by(queue_entries.c.doctor_id)
        )
        per_doctor = {
            str(doctor_id): count
            for doctor_id, count in (await self.db.execute(per_doctor_stmt)).all()
        }

        waiting = counts.get(QueueStatus.WAITING.value, 0)
        consulting = counts.get(QueueStatus.IN_CONSULTATION.value, 0)
        return QueueOverviewResponse(
            active_entries=waiting + consulting,
            waiting_entries=waiting,
            in_consultation_entries=consulting,
            completed_consultations=counts.get(QueueStatus.COMPLETED.value, 0),
            waiting_by_doctor=per_doctor,
            connected_subscribers=self.hub.connected_counts() if self.hub else {},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _rejections(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except AppException as e:
            QUEUE_REJECTIONS.labels(error=e.__class__.__name__).inc()
            logger.info(
                "queue_operation_rejected",
                operation=operation,
                error=e.__class__.__name__,
                message=e.message,
            )
            raise

    async def _lock_doctor_transaction(self, doctor_id: UUID) -> None:
        """
        Serialize this transaction with other processes mutating the same queue.

        Raises:
            BusyException: If another process holds the queue longer than the
                lock timeout
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return

        timeout_ms = int(settings.queue_lock_timeout_seconds * 1000)
        try:
            # SET takes no bind parameters
            await self.db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                {"key": f"queue:{doctor_id}"},
            )
        except DBAPIError as e:
            sqlstate = getattr(e.orig, "sqlstate", None) or getattr(e.orig, "pgcode", None)
            if sqlstate != LOCK_NOT_AVAILABLE:
                raise
            logger.warning("queue_lock_timeout", doctor_id=str(doctor_id), scope="database")
            raise BusyException() from e

    async def _recompute(self, doctor_id: UUID, now: datetime) -> list[QueueSlot]:
        """Rewrite position and ETA of every waiting entry of the doctor."""
        stmt = select(queue_entries).where(
            queue_entries.c.doctor_id == doctor_id,
            queue_entries.c.status.in_(ACTIVE_VALUES),
        )
        rows = (await self.db.execute(stmt)).mappings().all()

        average = await self.doctor_service.average_consultation_minutes(self.db, doctor_id)
        slots = recompute(
            [CalculatorEntry.from_row(row) for row in rows],
            average,
            now=now,
            elapsed_aware=settings.eta_elapsed_aware,
        )

        stored = {row["id"]: (row["position"], row["estimated_wait_minutes"]) for row in rows}
        for slot in slots:
            if stored.get(slot.entry_id) == (slot.position, slot.estimated_wait_minutes):
                continue
            await self.db.execute(
                update(queue_entries)
                .where(queue_entries.c.id == slot.entry_id)
                .values(position=slot.position, estimated_wait_minutes=slot.estimated_wait_minutes)
            )

        return slots

    async def _publish(self, entry: QueueEntryResponse, reason: QueueChangeReason) -> None:
        QUEUE_TRANSITIONS.labels(reason=reason.value).inc()
        logger.info(
            f"queue_entry_{reason.value}",
            entry_id=str(entry.id),
            doctor_id=str(entry.doctor_id),
            patient_id=str(entry.patient_id),
            position=entry.position,
        )

        if self.hub is None:
            return

        event = QueueChangedEvent(
            doctor_id=entry.doctor_id,
            patient_id=entry.patient_id,
            entry_id=entry.id,
            reason=reason,
            status=entry.status,
            timestamp=datetime.now(UTC),
        )
        try:
            await self.hub.publish(event)
        except Exception as e:
            logger.warning(
                "queue_event_publish_failed",
                entry_id=str(entry.id),
                reason=reason.value,
                error=str(e),
            )

    async def _load_entry(self, entry_id: UUID) -> QueueEntryResponse | None:
        result = await self.db.execute(select(queue_entries).where(queue_entries.c.id == entry_id))
        row = result.mappings().first()
        return QueueEntryResponse.model_validate(dict(row)) if row else None

    async def _get_entry_or_404(self, entry_id: UUID) -> QueueEntryResponse:
        entry = await self._load_entry(entry_id)
        if entry is None:
            raise NotFoundException("Queue entry not found")
        return entry

    async def _active_entry_id(self, doctor_id: UUID, patient_id: UUID) -> UUID | None:
        stmt = select(queue_entries.c.id).where(
            queue_entries.c.doctor_id == doctor_id,
            queue_entries.c.patient_id == patient_id,
            queue_entries.c.status.in_(ACTIVE_VALUES),
        )
        return (await self.db.execute(stmt)).scalar()

    async def _count(self, doctor_id: UUID, statuses: list[str]) -> int:
        stmt = (
            select(func.count())
            .select_from(queue_entries)
            .where(
                queue_entries.c.doctor_id == doctor_id,
                queue_entries.c.status.in_(statuses),
            )
        )
        return (await self.db.execute(stmt)).scalar() or 0

    @staticmethod
    def _authorize_patient_side(entry: QueueEntryResponse, actor: Principal | None) -> None:
        if actor is None or actor.is_admin:
            return
        if not (actor.has_role(UserRole.PATIENT) and _matches(actor, entry.patient_id)):
            raise ForbiddenException("Access denied to this queue entry")

    @staticmethod
    def _authorize_doctor_side(entry: QueueEntryResponse, actor: Principal | None) -> None:
        if actor is None or actor.is_admin:
            return
        if not (actor.has_role(UserRole.DOCTOR) and _matches(actor, entry.doctor_id)):
            raise ForbiddenException("Only the treating doctor can update this entry")

    @staticmethod
    def _authorize_doctor_view(doctor_id: UUID, actor: Principal | None) -> None:
        if actor is None or actor.is_admin:
            return
        if not (actor.has_role(UserRole.DOCTOR) and _matches(actor, doctor_id)):
            raise ForbiddenException("Not authorized to view this queue")

    @staticmethod
    def _authorize_patient_view(patient_id: UUID, actor: Principal | None) -> None:
        if actor is None or actor.is_admin:
            return
        if not (actor.has_role(UserRole.PATIENT) and _matches(actor, patient_id)):
            raise ForbiddenException("Not authorized to view this patient's queue")
