"""Venue notification events + asynchronous event bus."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional
from uuid import uuid4

from domain.clock import utcnow

logger = logging.getLogger(__name__)


class VenueEventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    TABLE_LINKED = "table_linked"
    TABLE_UNLINKED = "table_unlinked"
    BILLS_RECONCILED = "bills_reconciled"


@dataclass
class VenueEvent:
    event_type: VenueEventType
    organization_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: Any = field(default_factory=utcnow)


Handler = Callable[[VenueEvent], Coroutine[Any, Any, None]]


class AsyncEventBus:
    """
    Buffers events on an asyncio.Queue; a consumer task dispatches them to
    registered async handlers.

    Services run in FastAPI's worker threads, so ``publish_sync`` hands the
    event to the bound loop with ``call_soon_threadsafe``.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[VenueEvent] = asyncio.Queue(maxsize=maxsize)
        self._handlers: Dict[VenueEventType, List[Handler]] = {}
        self._running: bool = False
        self._consumer_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def register_handler(self, event_type: VenueEventType, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unregister_handler(self, event_type: VenueEventType, handler: Handler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(self, event: VenueEvent) -> None:
        await self._queue.put(event)

    def publish_sync(self, event: VenueEvent) -> bool:
        """Enqueue from synchronous code. False when the event was dropped."""
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._enqueue, event)
            return True
        return self._enqueue(event)

    def _enqueue(self, event: VenueEvent) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            # Drop the oldest event to make room.
            try:
                self._queue.get_nowait()
                self._queue.put_nowait(event)
                return True
            except (asyncio.QueueEmpty, asyncio.QueueFull):
                logger.warning("Event queue full, dropped %s", event.event_type.value)
                return False

    async def _consume_loop(self) -> None:
        while self._running:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            for handler in self._handlers.get(event.event_type, []):
                try:
                    await handler(event)
                except Exception:
                    logger.exception("Handler error for %s", event.event_type.value)
            self._queue.task_done()

    async def start(self) -> None:
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._consumer_task = asyncio.create_task(self._consume_loop())
        logger.info("Event bus started")

    async def stop(self) -> None:
        self._running = False
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        self._loop = None
        logger.info("Event bus stopped")

    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._running


class Notifier:
    """Fire-and-forget facade used by services; never raises."""

    def __init__(self, event_bus: Optional[AsyncEventBus], enabled: bool = True):
        self.event_bus = event_bus
        self.enabled = enabled

    def notify(
        self,
        event_type: VenueEventType,
        organization_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.enabled or self.event_bus is None:
            return
        try:
            self.event_bus.publish_sync(
                VenueEvent(event_type=event_type, organization_id=organization_id, payload=payload or {})
            )
        except Exception:
            logger.exception("Failed to publish %s notification", event_type.value)
