from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

from apps.queue_api.dispatch import TicketEvent, TicketEventBroker


def event_payload(event: TicketEvent) -> dict[str, Any]:
    """JSON body of one event frame; matches the polling endpoint's fields."""

    return {
        "id": event.id,
        "ticket_id": event.ticket_id,
        "department_id": event.department_id,
        "lane": event.lane.value,
        "label": event.label,
        "action": event.action.value,
        "old_status": event.old_status.value if event.old_status else None,
        "new_status": event.new_status.value,
        "counter_id": event.counter_id,
        "repeat_count": event.repeat_count,
        "actor": event.actor,
        "timestamp": event.created_at.isoformat(),
    }


class TicketEventStreamer:
    """Relay committed ticket events from the broker as Server-Sent Events.

    A ``ready`` frame is sent once the subscription is open. Idle
    connections get a comment line every ``heartbeat`` seconds.
    """

    def __init__(self, broker: TicketEventBroker, *, heartbeat: float = 15.0) -> None:
        if heartbeat <= 0:
            raise ValueError("heartbeat must be greater than zero")

        self.broker = broker
        self.heartbeat = heartbeat

    async def iter_sse(self, *, department_id: int | None = None) -> AsyncIterator[str]:
        async with self.broker.subscription() as queue:
            yield "event: ready\ndata: {}\n\n"
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=self.heartbeat)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if department_id is not None and event.department_id != department_id:
                    continue
                payload = json.dumps(event_payload(event))
                yield f"id: {event.id}\nevent: {event.action.value}\ndata: {payload}\n\n"
