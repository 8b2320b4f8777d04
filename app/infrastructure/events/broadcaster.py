"""
In-process event broadcaster.

Pipeline components publish flat dict events ("candidate-created",
"elevenlabs-automation-update", ...) without knowing who listens. Each
subscriber gets its own bounded asyncio.Queue; the operator API streams a
queue to HTTP clients. A short history is retained for dashboards.
"""

import asyncio
from collections import deque
from datetime import UTC, datetime
from typing import Any, Protocol

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100
HISTORY_SIZE = 200


class EventPublisher(Protocol):
    def broadcast(self, event_type: str, data: dict[str, Any]) -> int: ...


class EventBroadcaster:
    def __init__(self, history_size: int = HISTORY_SIZE):
        self._subscribers: set[asyncio.Queue] = set()
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.add(queue)
        logger.debug("Event subscriber added", subscribers=len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    def broadcast(self, event_type: str, data: dict[str, Any]) -> int:
        """Fan an event out to every subscriber; returns how many received it."""
        event = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        self._history.append(event)

        delivered = 0
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning("Dropping event for slow subscriber", event_type=event_type)

        logger.debug("Event broadcast", event_type=event_type, delivered=delivered)
        return delivered

    def recent(self, event_type: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        events = [e for e in self._history if event_type is None or e["type"] == event_type]
        return events[-limit:]
