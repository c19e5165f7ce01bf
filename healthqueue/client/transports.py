"""Transports delivering queue invalidations to a subscription client."""

import asyncio
import json
from contextlib import suppress
from typing import Protocol
from urllib.parse import urlencode

import structlog
import websockets
from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from healthqueue.schemas.queue import QueueChangedEvent

logger = structlog.get_logger(__name__)


class TransportClosed(Exception):
    """The push channel is gone; the client must reconnect and resync."""


class Transport(Protocol):
    """What a subscription client needs from a push channel."""

    async def connect(self) -> None:
        """Open the channel, raising ``TransportClosed`` on failure."""

    async def receive(self) -> QueueChangedEvent | None:
        """
        Wait for the next invalidation.

        Returns:
            The event, or None when the transport only knows that something
            may have changed
        """

    async def close(self) -> None:
        """Close the channel."""


class WebSocketTransport:
    """Push channel over the ``/ws/queue`` WebSocket endpoint."""

    def __init__(self, url: str, token: str, open_timeout: float = 10.0):
        """
        Initialize transport.

        Args:
            url: WebSocket URL, e.g. ``ws://host/api/v1/ws/queue``
            token: Access token of the subscribing user
            open_timeout: Handshake timeout in seconds
        """
        self.url = url
        self.token = token
        self.open_timeout = open_timeout
        self.channels: list[str] = []
        self._ws = None

    async def connect(self) -> None:
        """Open the socket and wait for the server's ``connected`` frame."""
        # A reconnect replaces the previous socket
        await self.close()

        try:
            self._ws = await websockets.connect(
                f"{self.url}?{urlencode({'token': self.token})}",
                open_timeout=self.open_timeout,
            )
            hello = json.loads(await self._ws.recv())
        except ValueError as e:
            await self.close()
            raise TransportClosed("Handshake frame is not JSON") from e
        except (OSError, TimeoutError, WebSocketException) as e:
            await self.close()
            raise TransportClosed(f"Connection failed: {e}") from e

        if not isinstance(hello, dict) or hello.get("type") != "connected":
            await self.close()
            raise TransportClosed("Unexpected handshake frame")

        self.channels = hello.get("channels", [])
        logger.info("queue_socket_connected", channels=self.channels)

    async def receive(self) -> QueueChangedEvent | None:
        """Wait for the next ``queue_changed`` frame, skipping other frames."""
        if self._ws is None:
            raise TransportClosed("Not connected")

        while True:
            try:
                raw = await self._ws.recv()
            except WebSocketException as e:
                raise TransportClosed(str(e)) from e

            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning("queue_socket_invalid_frame")
                continue

            if not isinstance(message, dict) or message.get("type") != "queue_changed":
                continue

            try:
                return QueueChangedEvent.model_validate(message)
            except ValidationError:
                # Something changed even if the frame is unreadable
                logger.warning("queue_socket_malformed_event")
                return None

    async def close(self) -> None:
        """Close the socket if open."""
        if self._ws is not None:
            ws, self._ws = self._ws, None
            with suppress(OSError, WebSocketException):
                await ws.close()


class PollingTransport:
    """Fallback when push is unavailable: every interval is an invalidation."""

    def __init__(self, interval: float = 10.0):
        """Initialize transport with the polling interval in seconds."""
        self.interval = interval
        self._closed = asyncio.Event()

    async def connect(self) -> None:
        """Start polling."""
        self._closed.clear()

    async def receive(self) -> QueueChangedEvent | None:
        """Sleep one interval, then report a possible change."""
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=self.interval)
        except TimeoutError:
            return None
        raise TransportClosed("Polling stopped")

    async def close(self) -> None:
        """Stop polling; a pending ``receive`` raises ``TransportClosed``."""
        self._closed.set()
