"""Render progress events.

Workers report progress through an explicit ``EventSink``. The in-process
``ProjectEventManager`` fans events out to per-project subscribers, which the
SSE endpoint streams to clients.
"""

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)

# Event types emitted by render workers
RENDER_STARTED = "render_started"
RENDER_PROGRESS = "render_progress"
RENDER_COMPLETED = "render_completed"
RENDER_CACHED = "render_cached"
RENDER_FAILED = "render_failed"

TERMINAL_EVENTS = frozenset({RENDER_COMPLETED, RENDER_CACHED, RENDER_FAILED})


class EventSink(Protocol):
    async def publish(
        self,
        project_id: str | UUID,
        event_type: str,
        data: dict[str, Any] | None = None,
    ) -> int: ...


class NullEventSink:
    """Sink that drops every event."""

    async def publish(
        self,
        project_id: str | UUID,
        event_type: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        return 0


@dataclass
class ProjectEvent:
    event_type: str
    project_id: str
    sequence: int = 0  # per project, starts at 1
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    data: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENTS

    def to_sse(self) -> str:
        payload: dict[str, Any] = {
            "type": self.event_type,
            "project_id": self.project_id,
            "timestamp": self.timestamp,
        }
        if self.data:
            payload["data"] = self.data
        return f"id: {self.sequence}\nevent: {self.event_type}\ndata: {json.dumps(payload)}\n\n"


class ProjectEventManager:
    """In-process fan-out of render events to per-project subscribers.

    Each subscriber reads from a bounded queue. A full queue drops progress
    events, while a terminal event evicts the oldest queued one, so a slow
    client always learns how its render ended. The last event of every
    project is kept and replayed to new subscribers.
    """

    def __init__(self, max_queue_size: int = 100) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[ProjectEvent]]] = defaultdict(set)
        self._last_events: dict[str, ProjectEvent] = {}
        self._sequences: dict[str, int] = defaultdict(int)
        self._max_queue_size = max_queue_size

    async def subscribe(
        self, project_id: str | UUID, *, replay_last: bool = True
    ) -> AsyncGenerator[ProjectEvent, None]:
        key = str(project_id)
        queue: asyncio.Queue[ProjectEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers[key].add(queue)
        last_event = self._last_events.get(key)
        if replay_last and last_event is not None:
            queue.put_nowait(last_event)
        logger.debug(f"Render event subscriber added for project {key}")

        try:
            while True:
                yield await queue.get()
        finally:
            subscribers = self._subscribers.get(key)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[key]

    @staticmethod
    def _offer(queue: asyncio.Queue[ProjectEvent], event: ProjectEvent) -> bool:
        if queue.full():
            if not event.is_terminal:
                logger.warning(
                    f"Dropping {event.event_type} #{event.sequence} for slow subscriber "
                    f"of project {event.project_id}"
                )
                return False
            queue.get_nowait()
        queue.put_nowait(event)
        return True

    async def publish(
        self,
        project_id: str | UUID,
        event_type: str,
        data: dict[str, Any] | None = None,
    ) -> int:
        """Publish a render event; returns the number of subscribers that got it."""
        key = str(project_id)
        self._sequences[key] += 1
        event = ProjectEvent(
            event_type=event_type, project_id=key, sequence=self._sequences[key], data=data
        )
        self._last_events[key] = event

        notified = sum(self._offer(queue, event) for queue in list(self._subscribers.get(key, ())))
        if notified:
            logger.debug(f"Published {event_type} #{event.sequence} to {notified} subscribers of {key}")
        return notified

    def last_event(self, project_id: str | UUID) -> ProjectEvent | None:
        return self._last_events.get(str(project_id))

    def get_subscriber_count(self, project_id: str | UUID) -> int:
        return len(self._subscribers.get(str(project_id), ()))
