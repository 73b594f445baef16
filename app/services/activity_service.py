"""
Activity feed: fire-and-forget lifecycle events.

``QueuedActivitySink.emit()`` never blocks and never raises: events go into a
bounded asyncio queue drained by a background worker that hands them to a
delivery coroutine (by default ``store_activity``, which writes an Activity
row). Delivery failures are logged and dropped.

Started and stopped from the FastAPI lifespan (see app/main.py).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from app.database import async_session_maker
from app.models.activity import Activity

logger = logging.getLogger(__name__)


@dataclass
class ActivityEvent:
    event_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Deliver = Callable[[ActivityEvent], Awaitable[None]]


async def store_activity(event: ActivityEvent) -> None:
    """Persist one event in the activities table (own session)."""
    async with async_session_maker() as db:
        db.add(Activity(
            event_type=event.event_type,
            quote_id=event.payload.get("quote_id"),
            dossier_id=event.payload.get("dossier_id"),
            actor=event.payload.get("actor"),
            payload={k: _jsonable(v) for k, v in event.payload.items()},
        ))
        await db.commit()


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class QueuedActivitySink:
    """Bounded queue + background worker."""

    def __init__(self, deliver: Optional[Deliver] = None, maxsize: int = 1000):
        self.deliver = deliver or store_activity
        self.maxsize = maxsize
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._worker = asyncio.create_task(self._run(), name="activity-sink")
        logger.info("Activity sink started (queue size %s)", self.maxsize)

    async def stop(self) -> None:
        """Drain pending events, then stop the worker."""
        if not self.running:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Activity sink stopped (%s event(s) dropped)", self.dropped)

    def emit(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        event = ActivityEvent(event_type=event_type, payload=dict(payload or {}))
        if not self.running:
            self.dropped += 1
            logger.warning("Activity sink not running, event %s dropped", event_type)
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Activity queue full, event %s dropped", event_type)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            except Exception as e:
                logger.error("Activity %s delivery failed: %s", event.event_type, e, exc_info=True)
            finally:
                self._queue.task_done()
