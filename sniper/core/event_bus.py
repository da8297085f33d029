"""
In-process event bus.

Components publish engine events (new tokens, position transitions, lost
connections) without knowing who listens. A bounded history of the last
events is kept for the status output.
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union


class EventType(str, Enum):
    """Typed events emitted by the engine components"""
    TOKEN_DISCOVERED = "token_discovered"
    POSITION_OPENED = "position_opened"
    POSITION_PARTIAL_EXIT = "position_partial_exit"
    POSITION_CLOSED = "position_closed"
    CONNECTION_LOST = "connection_lost"


@dataclass
class Event:
    type: str
    data: Any
    timestamp: datetime
    source: str

    def summary(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class EventBus:
    """
    Queue-backed publisher/subscriber.

    publish() never blocks: when the queue is full the event is dropped and
    counted. Handlers run one event at a time on a single processor task.
    """

    def __init__(self, max_queue_size: int = 1000, history_size: int = 50):
        self.logger = logging.getLogger(self.__class__.__name__)
        self._subscribers: Dict[str, List[Callable]] = {}
        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._worker: Optional[asyncio.Task] = None
        self.published_count = 0
        self.dropped_count = 0
        self.handler_errors = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @staticmethod
    def _key(event_type: Union[str, EventType]) -> str:
        return event_type.value if isinstance(event_type, EventType) else event_type

    def subscribe(self, event_type: Union[str, EventType], handler: Callable) -> None:
        key = self._key(event_type)
        self._subscribers.setdefault(key, []).append(handler)
        self.logger.debug(f"Handler registered for {key}")

    def unsubscribe(self, event_type: Union[str, EventType], handler: Callable) -> None:
        handlers = self._subscribers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event_type: Union[str, EventType], data: Any, source: str = "unknown") -> None:
        """Queue an event; drops it when the queue is full"""
        event = Event(self._key(event_type), data, datetime.now(timezone.utc), source)
        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_count += 1
            self.logger.warning(f"⚠️ Event queue full, dropping {event.type} from {source}")
            return
        self.published_count += 1

    async def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="event-bus")
        self.logger.info("📡 Event bus running")

    async def stop(self) -> None:
        if not self.is_running:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self.logger.info("Event bus stopped")

    async def dispatch(self, event: Event) -> None:
        """Deliver an event to its handlers; a failing handler does not stop the others"""
        self._history.append(event)
        for handler in list(self._subscribers.get(event.type, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.handler_errors += 1
                self.logger.error(f"❌ Handler failed on {event.type}: {e}")

    def recent_events(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        events = list(self._history)
        if limit is not None:
            events = events[-limit:]
        return [event.summary() for event in events]

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "published": self.published_count,
            "dropped": self.dropped_count,
            "queued": self._event_queue.qsize(),
            "handler_errors": self.handler_errors,
            "recent": self.recent_events(limit=10),
        }

    async def _run(self) -> None:
        while True:
            event = await self._event_queue.get()
            try:
                await self.dispatch(event)
            finally:
                self._event_queue.task_done()
