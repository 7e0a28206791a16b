from __future__ import annotations

import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from apps.queue_api.dispatch import (
    ConcurrentModificationError,
    IllegalStateError,
    InvalidPriorityError,
    Lane,
    TicketNotFoundError,
    TicketStatus,
)
from apps.queue_api.metrics.definitions import TICKETS_ISSUED


@pytest.mark.asyncio
async def test_create_ticket_classifies_lane(queue_service, registry, ids):
    created = await queue_service.create_ticket(
        department_id=ids.engineering,
        service_id=ids.eng_permits,
        priority=" senior/pwd/pregnant ",
        actor="kiosk",
    )

    assert created.ticket.lane is Lane.PRIORITY
    assert created.ticket.priority == "Senior/PWD/Pregnant"
    assert created.label == "ENG-001"
    assert registry.counter(TICKETS_ISSUED).value(labels={"department": ids.engineering, "lane": "priority"}) == 1


@pytest.mark.asyncio
async def test_invalid_priority_consumes_no_number(queue_service, ids):
    with pytest.raises(InvalidPriorityError):
        await queue_service.create_ticket(
            department_id=ids.engineering, service_id=None, priority="VIP", actor="kiosk"
        )

    created = await queue_service.create_ticket(
        department_id=ids.engineering, service_id=None, priority="Regular", actor="kiosk"
    )
    assert created.ticket.number == 1


@pytest.mark.asyncio
async def test_idempotency_key_returns_existing_ticket(queue_service, ids):
    first = await queue_service.create_ticket(
        department_id=ids.engineering, service_id=None, priority="Regular", actor="kiosk", idempotency_key="k-1"
    )
    again = await queue_service.create_ticket(
        department_id=ids.engineering, service_id=None, priority="Regular", actor="kiosk", idempotency_key="k-1"
    )

    assert again.ticket.id == first.ticket.id
    assert again.label == first.label
    tickets = await queue_service.list_tickets(ids.engineering)
    assert len(tickets) == 1


@pytest.mark.asyncio
async def test_numbers_are_unique_per_department(queue_service, ids):
    labels = []
    for department_id in (ids.engineering, ids.treasury, ids.engineering):
        created = await queue_service.create_ticket(
            department_id=department_id, service_id=None, priority="Regular", actor="kiosk"
        )
        labels.append(created.label)

    assert labels == ["ENG-001", "TRS-001", "ENG-002"]


@pytest.mark.asyncio
async def test_set_status_only_accepts_terminal_statuses(queue_service, ids):
    await queue_service.create_ticket(
        department_id=ids.engineering, service_id=None, priority="Regular", actor="kiosk"
    )
    called = await queue_service.call_next(
        staff_id=1, counter_id=ids.counter_a, department_id=ids.engineering, actor="staff"
    )
    assert called is not None

    with pytest.raises(IllegalStateError):
        await queue_service.set_status(called.ticket.id, status=TicketStatus.WAITING, actor="staff")

    completed = await queue_service.set_status(called.ticket.id, status=TicketStatus.COMPLETE, actor="staff")
    assert completed.ticket.status is TicketStatus.COMPLETE


@pytest.mark.asyncio
async def test_get_ticket_unknown_raises(queue_service):
    with pytest.raises(TicketNotFoundError):
        await queue_service.get_ticket(12345)


@pytest.mark.asyncio
async def test_list_tickets_filters(queue_service, ids):
    for priority in ("Regular", "Senior/PWD/Pregnant", "Regular"):
        await queue_service.create_ticket(
            department_id=ids.engineering, service_id=None, priority=priority, actor="kiosk"
        )
    await queue_service.call_next(
        staff_id=1, counter_id=ids.counter_a, department_id=ids.engineering, lane=Lane.REGULAR, actor="staff"
    )

    regular = await queue_service.list_tickets(ids.engineering, lane=Lane.REGULAR)
    waiting = await queue_service.list_tickets(ids.engineering, status=TicketStatus.WAITING)

    assert [item.label for item in regular] == ["ENG-001", "ENG-003"]
    assert [item.label for item in waiting] == ["ENG-002", "ENG-003"]


@pytest.mark.asyncio
async def test_counter_stats_and_now_serving(queue_service, ids):
    for _ in range(3):
        await queue_service.create_ticket(
            department_id=ids.engineering, service_id=None, priority="Regular", actor="kiosk"
        )
    await queue_service.call_next(
        staff_id=1, counter_id=ids.counter_a, department_id=ids.engineering, actor="staff"
    )
    await queue_service.call_next(
        staff_id=1, counter_id=ids.counter_a, department_id=ids.engineering, actor="staff"
    )
    await queue_service.call_next(
        staff_id=2, counter_id=ids.counter_b, department_id=ids.engineering, actor="staff"
    )

    stats_a = await queue_service.counter_stats(ids.engineering, counter_id=ids.counter_a)
    assert (stats_a.waiting, stats_a.serving, stats_a.completed, stats_a.void) == (0, 1, 1, 0)

    board = await queue_service.now_serving(department_id=ids.engineering)
    assert {(entry.counter_name, entry.label) for entry in board} == {
        ("Window 1", "ENG-002"),
        ("Window 2", "ENG-003"),
    }
    assert await queue_service.now_serving(department_id=ids.treasury) == []


@pytest.mark.asyncio
async def test_concurrent_creates_get_distinct_gap_free_numbers(queue_service, ids):
    created = await asyncio.gather(
        *(
            queue_service.create_ticket(
                department_id=ids.engineering, service_id=None, priority="Regular", actor=f"kiosk-{index}"
            )
            for index in range(5)
        )
    )

    assert sorted(item.ticket.number for item in created) == [1, 2, 3, 4, 5]
    events = await queue_service.list_events()
    assert sorted(event.id for event in events) == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_constraint_violation_on_create_is_a_concurrent_modification(queue_service, store, ids, monkeypatch):
    async def create_ticket(uow, **kwargs):
        raise IntegrityError("INSERT INTO tickets", {}, Exception("FOREIGN KEY constraint failed"))

    monkeypatch.setattr(store, "create_ticket", create_ticket)

    with pytest.raises(ConcurrentModificationError):
        await queue_service.create_ticket(
            department_id=ids.engineering, service_id=None, priority="Regular", actor="kiosk"
        )
    with pytest.raises(ConcurrentModificationError):
        await queue_service.create_ticket(
            department_id=ids.engineering,
            service_id=None,
            priority="Regular",
            actor="kiosk",
            idempotency_key="k-lost",
        )
