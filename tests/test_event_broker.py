from __future__ import annotations

from datetime import datetime, timezone

import pytest

from apps.queue_api.dispatch import Lane, TicketAction, TicketEvent, TicketEventBroker, TicketStatus


def _event(event_id: int) -> TicketEvent:
    return TicketEvent(
        id=event_id,
        ticket_id=event_id,
        department_id=1,
        lane=Lane.REGULAR,
        label=f"ENG-{event_id:03d}",
        action=TicketAction.CREATED,
        old_status=None,
        new_status=TicketStatus.WAITING,
        counter_id=None,
        repeat_count=0,
        actor="kiosk",
        created_at=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_publish_fans_out_to_every_subscriber():
    broker = TicketEventBroker(buffer_size=10)
    first = broker.subscribe()
    second = broker.subscribe()

    await broker.publish([_event(1), _event(2)])

    assert [first.get_nowait().id, first.get_nowait().id] == [1, 2]
    assert [second.get_nowait().id, second.get_nowait().id] == [1, 2]


@pytest.mark.asyncio
async def test_full_subscriber_drops_oldest_event():
    broker = TicketEventBroker(buffer_size=2)
    queue = broker.subscribe()

    await broker.publish([_event(1), _event(2), _event(3)])

    assert [queue.get_nowait().id, queue.get_nowait().id] == [2, 3]


@pytest.mark.asyncio
async def test_subscription_context_unsubscribes():
    broker = TicketEventBroker()
    async with broker.subscription():
        assert broker.subscriber_count == 1
    assert broker.subscriber_count == 0

    await broker.publish([_event(1)])


def test_buffer_size_must_be_positive():
    with pytest.raises(ValueError):
        TicketEventBroker(buffer_size=0)
