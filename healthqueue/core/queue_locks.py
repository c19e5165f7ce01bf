"""Per-doctor mutual exclusion for queue mutations."""

import asyncio
import math
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

import structlog

from healthqueue.core.exceptions import BusyException

logger = structlog.get_logger(__name__)


class DoctorQueueLocks:
    """Registry of one ``asyncio.Lock`` per doctor.

    Mutations of the same doctor's queue run one at a time in acceptance
    order; different doctors never contend. Locks are held weakly so idle
    doctors cost nothing.
    """

    def __init__(self, timeout: float = 5.0):
        """Initialize registry with the acquisition timeout in seconds."""
        self.timeout = timeout
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, doctor_id: UUID) -> asyncio.Lock:
        """Return the lock guarding a doctor's queue, creating it on demand."""
        lock = self._locks.get(doctor_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[doctor_id] = lock
        return lock

    def is_locked(self, doctor_id: UUID) -> bool:
        """Check whether a mutation currently holds the doctor's queue."""
        lock = self._locks.get(doctor_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, doctor_id: UUID, timeout: float | None = None) -> AsyncIterator[None]:
        """
        Hold the doctor's queue for the duration of the block.

        Args:
            doctor_id: Doctor whose queue is mutated
            timeout: Override of the registry timeout

        Raises:
            BusyException: If the lock is not acquired in time
        """
        lock = self.lock_for(doctor_id)
        wait = self.timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(lock.acquire(), timeout=wait)
        except TimeoutError:
            logger.warning("queue_lock_timeout", doctor_id=str(doctor_id), timeout=wait)
            raise BusyException(retry_after=max(1, math.ceil(wait)))

        try:
            yield
        finally:
            lock.release()
