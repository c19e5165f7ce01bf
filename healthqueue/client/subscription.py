"""Role-aware client keeping a local view of the queue in sync with the API.

Push events are invalidation hints only. Every event, every (re)connect and
every confirmed mutation triggers a full re-fetch of the caller's view from
the HTTP API, which stays the single source of truth. While the push
channel is down the view is flagged ``stale``.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import httpx
import structlog

from healthqueue.client.events import QueueEventBus
from healthqueue.client.transports import Transport, TransportClosed
from healthqueue.schemas.auth import UserRole
from healthqueue.schemas.queue import QueuePriority, QueueStatus

logger = structlog.get_logger(__name__)


class QueueClientError(Exception):
    """A request to the queue API failed.

    ``error`` carries the server's error name (``ConflictException``,
    ``BusyException``, ...) or ``TransportError`` when no response came back.
    """

    def __init__(self, error: str, message: str, status_code: int | None = None):
        self.error = error
        self.message = message
        self.status_code = status_code
        super().__init__(f"{error}: {message}")

    @property
    def retryable(self) -> bool:
        """Busy and transport failures are transient."""
        return self.error in ("BusyException", "TransportError")


class QueueSubscriptionClient:
    """Subscription adapter for one patient, doctor or admin."""

    def __init__(
        self,
        base_url: str,
        token: str,
        role: UserRole,
        identity: str,
        transport: Transport,
        http_client: httpx.AsyncClient | None = None,
        api_prefix: str = "/api/v1",
        initial_backoff: float = 0.5,
        max_backoff: float = 30.0,
    ):
        """
        Initialize client.

        Args:
            base_url: API base URL
            token: Access token of the user
            role: Role whose view is synchronised
            identity: User id (patient or doctor id; ignored for admins)
            transport: Push channel (WebSocket or polling)
            http_client: Optional preconfigured HTTP client
            api_prefix: API version prefix
            initial_backoff: First reconnect delay in seconds
            max_backoff: Reconnect delay cap in seconds
        """
        self.role = role
        self.identity = identity
        self.transport = transport
        self.api_prefix = api_prefix
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.events = QueueEventBus()

        self.view: dict[str, Any] | None = None
        self.stale = True
        self.last_synced_at: datetime | None = None

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._headers = {"Authorization": f"Bearer {token}"}
        self._closing = False

    @property
    def view_path(self) -> str:
        """Read endpoint of the authoritative view for this role."""
        if self.role == UserRole.PATIENT:
            return f"{self.api_prefix}/queue/patients/{self.identity}/status"
        if self.role == UserRole.DOCTOR:
            return f"{self.api_prefix}/queue/doctor/{self.identity}"
        return f"{self.api_prefix}/admin/queues/overview"

    async def _request(self, method: str, path: str, json: Any | None = None) -> Any:
        try:
            response = await self._http.request(method, path, json=json, headers=self._headers)
        except httpx.HTTPError as e:
            raise QueueClientError("TransportError", str(e)) from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise QueueClientError(
                body.get("error", "HTTPError"),
                body.get("message", response.text),
                response.status_code,
            )
        return response.json()

    async def refresh(self) -> dict[str, Any]:
        """
        Re-fetch the view from the API.

        Raises:
            QueueClientError: On failure, leaving the previous view untouched
        """
        data = await self._request("GET", self.view_path)
        self.view = data
        self.stale = False
        self.last_synced_at = datetime.now(UTC)
        return data

    async def run(self, max_attempts: int | None = None) -> None:
        """
        Keep the view in sync until :meth:`close` is called.

        Reconnects with capped exponential backoff and re-fetches right after
        each successful (re)connect since missed events are not replayed.

        Args:
            max_attempts: Give up after this many consecutive failed attempts
        """
        delay = self.initial_backoff
        failures = 0

        while not self._closing:
            try:
                await self.transport.connect()
                await self.refresh()
                delay = self.initial_backoff
                failures = 0

                while not self._closing:
                    event = await self.transport.receive()
                    if event is not None:
                        await self.events.emit(event)
                    await self.refresh()
            except (TransportClosed, QueueClientError) as e:
                if self._closing:
                    break
                self.stale = True
                failures += 1
                if max_attempts is not None and failures >= max_attempts:
                    logger.error("queue_subscription_gave_up", attempts=failures, error=str(e))
                    raise
                logger.warning("queue_subscription_interrupted", error=str(e), retry_in=delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_backoff)

    async def close(self) -> None:
        """Stop syncing and release connections."""
        self._closing = True
        self.stale = True
        await self.transport.close()
        if self._owns_http:
            await self._http.aclose()

    # Mutations: the view changes only through the re-fetch after the
    # server has confirmed.

    async def _mutate(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("POST", f"{self.api_prefix}{path}", json=payload)
        try:
            await self.refresh()
        except QueueClientError as e:
            self.stale = True
            logger.warning("queue_view_refresh_failed", error=e.error)
        return result

    async def join(
        self,
        doctor_id: UUID | str,
        priority: QueuePriority = QueuePriority.NORMAL,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Join a doctor's queue as the current patient."""
        return await self._mutate(
            "/queue/join",
            {"doctor_id": str(doctor_id), "priority": priority.value, "notes": notes},
        )

    async def leave(self, entry_id: UUID | str) -> dict[str, Any]:
        """Leave a queue."""
        return await self._mutate("/queue/leave", {"entry_id": str(entry_id)})

    async def start_consultation(self, entry_id: UUID | str) -> dict[str, Any]:
        """Call a waiting patient in."""
        return await self._mutate("/queue/start-consultation", {"entry_id": str(entry_id)})

    async def complete_consultation(self, entry_id: UUID | str) -> dict[str, Any]:
        """Finish the running consultation."""
        return await self._mutate("/queue/complete-consultation", {"entry_id": str(entry_id)})

    async def skip(self, entry_id: UUID | str) -> dict[str, Any]:
        """Mark a patient as a no-show."""
        return await self._mutate(
            f"/queue/{entry_id}/status",
            {"status": QueueStatus.SKIPPED.value},
        )
