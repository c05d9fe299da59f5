"""
alert_stream.py - In-process fan-out of pool alerts and verifications.

The monitor publishes here; the websocket manager and any other consumer
either register async callbacks or pull from a private queue. A failing
consumer never affects the publisher or the other consumers.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, List

from poolcheck.records import PoolAlertEvent, VerificationEvent

logger = logging.getLogger("alerts")

# Callback types: async def handler(alert) / async def handler(event)
AlertHandler = Callable[[PoolAlertEvent], Coroutine[Any, Any, None]]
VerificationHandler = Callable[[VerificationEvent], Coroutine[Any, Any, None]]

SUBSCRIBER_QUEUE_SIZE = 256


class AlertStream:
    def __init__(self):
        self._alert_handlers: List[AlertHandler] = []
        self._verification_handlers: List[VerificationHandler] = []
        self._queues: List[asyncio.Queue] = []

    def on_alert(self, handler: AlertHandler):
        """Register an async callback invoked for every published alert."""
        self._alert_handlers.append(handler)

    def on_verification(self, handler: VerificationHandler):
        self._verification_handlers.append(handler)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._queues.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        if queue in self._queues:
            self._queues.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._alert_handlers)

    async def publish_alert(self, alert: PoolAlertEvent):
        for queue in list(self._queues):
            try:
                queue.put_nowait(alert)
            except asyncio.QueueFull:
                logger.warning("Alert subscriber queue full, dropping alert %s", alert.id)

        for handler in self._alert_handlers:
            try:
                await handler(alert)
            except Exception:
                logger.exception("Alert handler error for alert %s", alert.id)

    async def publish_verification(self, event: VerificationEvent):
        for handler in self._verification_handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception("Verification handler error for miner %s", event.miner_id)
