"""In-process delivery of committed ticket events to display consumers."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Protocol, Sequence

from .models import TicketEvent

logger = logging.getLogger(__name__)


class TicketEventPublisher(Protocol):
    async def publish(self, events: Sequence[TicketEvent]) -> None:
        ...


class TicketEventBroker:
    """Fan committed events out to every subscribed queue.

    Events arrive here only after their transaction committed; the durable
    copy lives in the ``ticket_events`` outbox, so a subscriber that falls
    behind loses its oldest buffered event and can catch up by polling.
    """

    def __init__(self, *, buffer_size: int = 100) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be greater than zero")
        self._buffer_size = buffer_size
        self._subscribers: set[asyncio.Queue[TicketEvent]] = set()
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[TicketEvent]:
        queue: asyncio.Queue[TicketEvent] = asyncio.Queue(maxsize=self._buffer_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[TicketEvent]) -> None:
        self._subscribers.discard(queue)

    @asynccontextmanager
    async def subscription(self) -> AsyncIterator[asyncio.Queue[TicketEvent]]:
        queue = self.subscribe()
        try:
            yield queue
        finally:
            self.unsubscribe(queue)

    async def publish(self, events: Sequence[TicketEvent]) -> None:
        async with self._lock:
            for event in events:
                for queue in tuple(self._subscribers):
                    if queue.full():
                        dropped = queue.get_nowait()
                        logger.warning(
                            "Subscriber buffer full; dropped event %s for ticket %s",
                            dropped.id,
                            dropped.ticket_id,
                        )
                    queue.put_nowait(event)
