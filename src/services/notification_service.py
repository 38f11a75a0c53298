"""
Notification Service - outbound event queue for marketplace state changes

Handles:
- lead_unlocked (after an unlock commits)
- referral_credited (after a referral settles)
- report_resolved (after a dispute is approved or rejected)

Delivery (push/email/SMS, retries) belongs to the subscribed sinks; this
module only queues events and fans them out. Publishing never raises, so a
notification problem can never undo a paid transaction.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from config.marketplace_config import NOTIFICATION_QUEUE_SIZE
from src.core.enums import NotificationType


@dataclass
class NotificationEvent:
    """One outbound event; payload keys depend on the type."""
    type: NotificationType
    payload: Dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.payload, "created_at": self.created_at.isoformat()}


NotificationSink = Callable[[NotificationEvent], Awaitable[None]]


class NotificationDispatcher:
    """Bounded in-process outbox with async fan-out to sinks"""

    def __init__(self, maxsize: int = NOTIFICATION_QUEUE_SIZE):
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=maxsize)
        self._sinks: List[NotificationSink] = []
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    def subscribe(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def publish(self, event_type: NotificationType, **payload: Any) -> bool:
        """
        Queue an event without waiting

        Returns:
            True if queued, False if it was dropped
        """
        event = NotificationEvent(type=event_type, payload=payload)
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Notification queue full, dropped {event_type.value}: {payload}")
            return False
        except Exception as e:
            self.dropped += 1
            logger.error(f"Failed to queue {event_type.value} notification: {e}")
            return False

        logger.debug(f"Queued {event_type.value} notification: {payload}")
        return True

    def pending(self) -> int:
        return self._queue.qsize()

    def drain_nowait(self) -> List[NotificationEvent]:
        """Take every queued event without delivering it"""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events

    async def deliver(self, event: NotificationEvent) -> int:
        """
        Hand one event to every sink; sink failures are logged, not raised

        Returns:
            Number of sinks that accepted the event
        """
        delivered = 0
        for sink in self._sinks:
            try:
                await sink(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Notification sink failed for {event.type.value}: {e}")
        return delivered

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
            logger.info(f"Notification dispatcher started ({len(self._sinks)} sinks)")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
            logger.info("Notification dispatcher stopped")


async def log_sink(event: NotificationEvent) -> None:
    """Default sink: record the event until a delivery subsystem subscribes"""
    logger.info(f"Notification {event.type.value}: {event.payload}")


# Global instance
notification_dispatcher = NotificationDispatcher()
