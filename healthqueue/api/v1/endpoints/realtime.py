"""WebSocket push channel for queue changes.

Protocol (JSON text frames):
    server -> client  {"type": "connected", "role": ..., "channels": [...]}
    server -> client  {"type": "queue_changed", "doctor_id": ..., ...}
    client -> server  {"type": "ping"}  answered with {"type": "pong"}

The token is passed as a query parameter because browsers cannot set
headers on WebSocket handshakes.
"""

import asyncio
import json
from contextlib import suppress

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from healthqueue.core.exceptions import UnauthorizedException
from healthqueue.core.notification_hub import NotificationHub, Subscriber
from healthqueue.core.security import authenticate_token

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _forward_events(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Drain the subscriber's mailbox into the socket in publish order."""
    async for event in subscriber.events():
        await websocket.send_text(event.model_dump_json())

    # Hub closed the subscriber (shutdown)
    with suppress(RuntimeError):
        await websocket.close(code=status.WS_1001_GOING_AWAY)


async def _answer_client(websocket: WebSocket) -> None:
    """Handle client frames until the client disconnects."""
    while True:
        raw = await websocket.receive_text()
        try:
            message = json.loads(raw)
        except ValueError:
            await websocket.send_json({"type": "error", "message": "Invalid JSON"})
            continue

        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/ws/queue")
async def queue_updates(
    websocket: WebSocket,
    token: str | None = Query(None),
) -> None:
    """Subscribe to the queue channels of the authenticated caller."""
    try:
        principal = authenticate_token(token)
    except UnauthorizedException as e:
        logger.info("websocket_rejected", reason=e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: NotificationHub = websocket.app.state.hub

    await websocket.accept()
    subscriber = hub.connect(principal)
    tasks: list[asyncio.Task] = []

    try:
        await websocket.send_json(
            {
                "type": "connected",
                "role": principal.role.value,
                "channels": sorted(subscriber.channels),
            }
        )

        sender = asyncio.create_task(_forward_events(websocket, subscriber))
        receiver = asyncio.create_task(_answer_client(websocket))
        tasks = [sender, receiver]

        # Whichever side stops first ends the session
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        if sender.done() and not sender.cancelled() and sender.exception() is not None:
            logger.warning(
                "websocket_send_failed",
                subscriber_id=subscriber.id,
                error=str(sender.exception()),
            )
            with suppress(RuntimeError, WebSocketDisconnect):
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(subscriber)
        for task in tasks:
            task.cancel()
        # Collects the client's disconnect along with the cancellations
        await asyncio.gather(*tasks, return_exceptions=True)
