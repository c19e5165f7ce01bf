"""Local event bus of a queue subscription."""

import inspect
from collections.abc import Awaitable, Callable

import structlog

from healthqueue.schemas.queue import QueueChangedEvent

logger = structlog.get_logger(__name__)

QueueChangedHandler = Callable[[QueueChangedEvent], Awaitable[None] | None]


class QueueEventBus:
    """Typed publish/subscribe for ``queue_changed`` events inside one client.

    Handlers may be plain functions or coroutines. A failing handler is
    logged and does not prevent the others from running.
    """

    def __init__(self):
        """Initialize bus without handlers."""
        self._handlers: list[QueueChangedHandler] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def on_queue_changed(self, handler: QueueChangedHandler) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            handler: Called with every received event

        Returns:
            Callable removing the handler again (safe to call twice)
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def emit(self, event: QueueChangedEvent) -> None:
        """Run every handler registered at the time of the call."""
        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "queue_event_handler_failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )
