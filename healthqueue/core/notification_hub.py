"""Real-time fan-out of queue changes to subscribed connections.

Channels:
    ``doctor:<doctor_id>``   the owning doctor's dashboards
    ``patient:<patient_id>`` the affected patient's devices
    ``admin:*``              every administrator

Delivery is best effort. A subscriber that is not connected misses events
and resynchronises by re-fetching when it comes back, so events carry just
enough to say *what* changed.
"""

import asyncio
import itertools
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from typing import Any
from uuid import UUID

import structlog

from healthqueue.core.metrics import (
    HUB_DELIVERIES,
    HUB_DROPPED_EVENTS,
    HUB_SUBSCRIBERS,
)
from healthqueue.schemas.auth import Principal, UserRole
from healthqueue.schemas.queue import QueueChangedEvent

logger = structlog.get_logger(__name__)

ADMIN_CHANNEL = "admin:*"

# Pushed to a subscriber's queue to end its stream
_CLOSED = object()

_subscriber_ids = itertools.count(1)


def doctor_channel(doctor_id: UUID | str) -> str:
    """Channel of a doctor's queue."""
    return f"doctor:{doctor_id}"


def patient_channel(patient_id: UUID | str) -> str:
    """Channel of a single patient."""
    return f"patient:{patient_id}"


def channels_for_principal(principal: Principal) -> set[str]:
    """Channels a connection may join, one per role it holds."""
    channels: set[str] = set()
    if principal.has_role(UserRole.PATIENT):
        channels.add(patient_channel(principal.identity))
    if principal.has_role(UserRole.DOCTOR):
        channels.add(doctor_channel(principal.identity))
    if principal.has_role(UserRole.ADMIN):
        channels.add(ADMIN_CHANNEL)
    return channels


def channels_for_event(event: QueueChangedEvent) -> list[str]:
    """Channels interested in a queue change."""
    return [
        doctor_channel(event.doctor_id),
        patient_channel(event.patient_id),
        ADMIN_CHANNEL,
    ]


class Subscriber:
    """One connection's mailbox.

    Events are queued in publish order and drained by the connection's own
    sender, which gives FIFO delivery per subscriber. When the mailbox is
    full the oldest pending event is dropped in favour of the newest.
    """

    def __init__(self, principal: Principal, max_queue_size: int = 100):
        """Initialize a subscriber for an authenticated principal."""
        self.id = next(_subscriber_ids)
        self.principal = principal
        self.channels: set[str] = set()
        self.dropped = 0
        self.closed = False
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_queue_size)

    def __repr__(self) -> str:
        return f"<Subscriber {self.id} {self.principal.role.value}:{self.principal.identity}>"

    @property
    def pending(self) -> int:
        """Number of undelivered events."""
        return self._queue.qsize()

    def offer(self, event: QueueChangedEvent) -> bool:
        """
        Queue an event without blocking.

        Returns:
            False if the subscriber is closed
        """
        if self.closed:
            return False
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            HUB_DROPPED_EVENTS.inc()
            logger.warning("subscriber_queue_overflow", subscriber_id=self.id)
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """End the stream; pending events are still delivered first."""
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            HUB_DROPPED_EVENTS.inc()
            logger.warning("subscriber_queue_overflow", subscriber_id=self.id)
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> QueueChangedEvent | None:
        """Wait for the next event, or None once closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    async def events(self) -> AsyncIterator[QueueChangedEvent]:
        """Iterate over events until the subscriber is closed."""
        while True:
            event = await self.get()
            if event is None:
                return
            yield event


class NotificationHub:
    """Registry of subscribers by channel plus event fan-out.

    Registry changes and publishing never await, so each runs atomically on
    the event loop and no lock is needed. Publishing iterates over a snapshot
    of the registry.
    """

    def __init__(self, subscriber_queue_size: int = 100):
        """Initialize an empty hub."""
        self.subscriber_queue_size = subscriber_queue_size
        self._channels: dict[str, dict[int, Subscriber]] = {}
        self._subscribers: dict[int, Subscriber] = {}

    def connect(self, principal: Principal) -> Subscriber:
        """Create a subscriber and join it to the channels of its roles."""
        subscriber = Subscriber(principal, max_queue_size=self.subscriber_queue_size)
        self.register(subscriber, channels_for_principal(principal))
        logger.info(
            "subscriber_connected",
            subscriber_id=subscriber.id,
            role=principal.role.value,
            identity=principal.identity,
            channels=sorted(subscriber.channels),
        )
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a subscriber from every channel and close it."""
        known = subscriber.id in self._subscribers
        self.unregister(subscriber)
        subscriber.close()
        if known:
            logger.info("subscriber_disconnected", subscriber_id=subscriber.id)

    def register(self, subscriber: Subscriber, channels: Iterable[str]) -> None:
        """Join channels. Joining a channel twice is a no-op."""
        for channel in channels:
            self._channels.setdefault(channel, {})[subscriber.id] = subscriber
            subscriber.channels.add(channel)
        if subscriber.channels:
            self._subscribers[subscriber.id] = subscriber
        HUB_SUBSCRIBERS.set(len(self._subscribers))

    def unregister(self, subscriber: Subscriber, channels: Iterable[str] | None = None) -> None:
        """Leave some channels, or all of them when none are given."""
        targets = list(subscriber.channels) if channels is None else list(channels)
        for channel in targets:
            members = self._channels.get(channel)
            if members is not None:
                members.pop(subscriber.id, None)
                if not members:
                    del self._channels[channel]
            subscriber.channels.discard(channel)
        if not subscriber.channels:
            self._subscribers.pop(subscriber.id, None)
        HUB_SUBSCRIBERS.set(len(self._subscribers))

    def subscribers_for(self, channels: Iterable[str]) -> list[Subscriber]:
        """Distinct subscribers on any of the channels, in registration order."""
        found: dict[int, Subscriber] = {}
        for channel in channels:
            for subscriber_id, subscriber in self._channels.get(channel, {}).items():
                found.setdefault(subscriber_id, subscriber)
        return sorted(found.values(), key=lambda s: s.id)

    async def publish(self, event: QueueChangedEvent) -> int:
        """
        Deliver an event to every subscriber of the interested channels.

        A connection on several matching channels receives it once. A failing
        subscriber is dropped from the registry without affecting the others.

        Args:
            event: The queue change

        Returns:
            Number of subscribers the event was queued for
        """
        delivered = 0
        for subscriber in self.subscribers_for(channels_for_event(event)):
            try:
                if subscriber.offer(event):
                    delivered += 1
                else:
                    self.unregister(subscriber)
            except Exception as e:
                logger.warning(
                    "subscriber_delivery_failed",
                    subscriber_id=subscriber.id,
                    error=str(e),
                )
                self.disconnect(subscriber)

        HUB_DELIVERIES.inc(delivered)
        logger.debug(
            "queue_event_published",
            doctor_id=str(event.doctor_id),
            reason=event.reason.value,
            delivered=delivered,
        )
        return delivered

    def connected_counts(self) -> dict[str, int]:
        """Connected subscribers per primary role."""
        counts = Counter(s.principal.role.value for s in self._subscribers.values())
        return {role.value: counts.get(role.value, 0) for role in UserRole}

    def channel_size(self, channel: str) -> int:
        """Number of subscribers on a channel."""
        return len(self._channels.get(channel, {}))

    async def close(self) -> None:
        """Close every subscriber, used at application shutdown."""
        for subscriber in list(self._subscribers.values()):
            self.disconnect(subscriber)
        logger.info("notification_hub_closed")
