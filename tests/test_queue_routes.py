from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from apps.queue_api.dependencies import queue as queue_deps
from apps.queue_api.dispatch import (
    ConcurrentModificationError,
    CounterStats,
    IllegalStateError,
    InvalidPriorityError,
    InvalidReferenceError,
    LabelledTicket,
    Lane,
    NowServingEntry,
    RepeatCallResult,
    StorageUnavailableError,
    Ticket,
    TicketAction,
    TicketEvent,
    TicketNotFoundError,
    TicketStatus,
)
from apps.queue_api.main import create_app

STAFF = {"Authorization": "Bearer staff-token"}
ADMIN = {"Authorization": "Bearer admin-token"}
VIEWER = {"Authorization": "Bearer viewer-token"}


def _make_ticket(
    *, status: TicketStatus = TicketStatus.WAITING, lane: Lane = Lane.REGULAR, repeat_count: int = 0
) -> LabelledTicket:
    now = datetime.now(timezone.utc)
    ticket = Ticket(
        id=11,
        department_id=1,
        service_id=10,
        number=7,
        lane=lane,
        priority="Regular",
        status=status,
        counter_id=100 if status is not TicketStatus.WAITING else None,
        staff_id=2 if status is not TicketStatus.WAITING else None,
        repeat_count=repeat_count,
        idempotency_key=None,
        created_at=now,
        updated_at=now,
        called_at=now if status is not TicketStatus.WAITING else None,
    )
    return LabelledTicket(ticket=ticket, label="ENG-007")


@pytest.fixture
def queue_client():
    app = create_app()
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[queue_deps.get_queue_service] = override_service

    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_is_open_to_kiosks(queue_client):
    client, service = queue_client
    service.create_ticket = AsyncMock(return_value=_make_ticket())

    response = client.post(
        "/tickets",
        json={"department_id": 1, "service_id": 10, "priority": "regular", "idempotency_key": "kiosk-1-42"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["ticket_id"] == 11
    assert body["label"] == "ENG-007"
    assert body["lane"] == "regular"
    assert body["status"] == "waiting"
    service.create_ticket.assert_awaited_once_with(
        department_id=1,
        service_id=10,
        priority="regular",
        idempotency_key="kiosk-1-42",
        actor="anonymous",
    )


@pytest.mark.parametrize(
    "error",
    [InvalidPriorityError("Unrecognised priority category: 'VIP'"), InvalidReferenceError("Department 9 does not exist")],
)
def test_create_ticket_rejects_bad_input(queue_client, error):
    client, service = queue_client
    service.create_ticket = AsyncMock(side_effect=error)

    response = client.post("/tickets", json={"department_id": 9, "priority": "VIP"})

    assert response.status_code == 422
    assert response.json()["detail"] == str(error)


def test_call_next_uses_staff_profile(queue_client):
    client, service = queue_client
    service.call_next = AsyncMock(return_value=_make_ticket(status=TicketStatus.SERVING))

    response = client.post("/counters/100/call-next", json={"department_id": 1, "lane": "regular"}, headers=STAFF)

    assert response.status_code == 200
    assert response.json()["status"] == "serving"
    assert response.json()["counter_id"] == 100
    service.call_next.assert_awaited_once_with(
        staff_id=2, counter_id=100, department_id=1, lane=Lane.REGULAR, actor="staff"
    )


def test_call_next_on_empty_queue_returns_null(queue_client):
    client, service = queue_client
    service.call_next = AsyncMock(return_value=None)

    response = client.post("/counters/100/call-next", json={"department_id": 1}, headers=STAFF)

    assert response.status_code == 200
    assert response.json() is None


def test_call_next_requires_staff_role(queue_client):
    client, service = queue_client
    service.call_next = AsyncMock()

    response = client.post("/counters/100/call-next", json={"department_id": 1}, headers=VIEWER)

    assert response.status_code == 403
    service.call_next.assert_not_awaited()


def test_call_next_conflict_maps_to_409(queue_client):
    client, service = queue_client
    service.call_next = AsyncMock(side_effect=ConcurrentModificationError("claimed elsewhere"))

    response = client.post("/counters/100/call-next", json={"department_id": 1}, headers=STAFF)

    assert response.status_code == 409


def test_repeat_call_reports_auto_void(queue_client):
    client, service = queue_client
    voided = _make_ticket(status=TicketStatus.VOID, repeat_count=3)
    service.repeat_call = AsyncMock(
        return_value=RepeatCallResult(ticket=voided.ticket, label=voided.label, auto_voided=True)
    )

    response = client.post("/tickets/11/repeat", headers=STAFF)

    assert response.status_code == 200
    assert response.json()["auto_voided"] is True
    assert response.json()["repeat_count"] == 3


def test_repeat_call_on_waiting_ticket_conflicts(queue_client):
    client, service = queue_client
    service.repeat_call = AsyncMock(side_effect=IllegalStateError("Ticket 11 is waiting"))

    response = client.post("/tickets/11/repeat", headers=STAFF)

    assert response.status_code == 409


def test_change_status_unknown_ticket_is_404(queue_client):
    client, service = queue_client
    service.set_status = AsyncMock(side_effect=TicketNotFoundError("Ticket 11 not found"))

    response = client.post("/tickets/11/status", json={"status": "complete"}, headers=STAFF)

    assert response.status_code == 404


def test_change_status_passes_status_enum(queue_client):
    client, service = queue_client
    service.set_status = AsyncMock(return_value=_make_ticket(status=TicketStatus.COMPLETE))

    response = client.post("/tickets/11/status", json={"status": "complete"}, headers=STAFF)

    assert response.status_code == 200
    service.set_status.assert_awaited_once_with(11, status=TicketStatus.COMPLETE, actor="staff")


def test_override_void_is_admin_only(queue_client):
    client, service = queue_client
    service.override_void = AsyncMock(return_value=_make_ticket(status=TicketStatus.VOID))

    assert client.post("/tickets/11/override-void", headers=STAFF).status_code == 403
    response = client.post("/tickets/11/override-void", headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["status"] == "void"
    service.override_void.assert_awaited_once_with(11, actor="admin")


def test_storage_outage_maps_to_503(queue_client):
    client, service = queue_client
    service.get_ticket = AsyncMock(side_effect=StorageUnavailableError("Ticket store is temporarily unavailable"))

    response = client.get("/tickets/11", headers=VIEWER)

    assert response.status_code == 503


def test_department_listing_and_stats(queue_client):
    client, service = queue_client
    service.list_tickets = AsyncMock(return_value=[_make_ticket()])
    service.counter_stats = AsyncMock(
        return_value=CounterStats(department_id=1, counter_id=100, waiting=4, serving=1, completed=9, void=2)
    )

    listing = client.get("/departments/1/tickets", params={"status": "waiting", "lane": "regular"})
    stats = client.get("/departments/1/stats", params={"counter_id": 100})

    assert listing.status_code == 200
    assert [item["label"] for item in listing.json()] == ["ENG-007"]
    service.list_tickets.assert_awaited_once_with(1, status=TicketStatus.WAITING, lane=Lane.REGULAR)
    assert stats.json() == {
        "department_id": 1,
        "counter_id": 100,
        "waiting": 4,
        "serving": 1,
        "completed": 9,
        "void": 2,
    }


def test_now_serving_board(queue_client):
    client, service = queue_client
    service.now_serving = AsyncMock(
        return_value=[
            NowServingEntry(
                ticket_id=11,
                department_id=1,
                label="ENG-007",
                lane=Lane.PRIORITY,
                counter_id=100,
                counter_name="Window 1",
                repeat_count=1,
                called_at=datetime.now(timezone.utc),
            )
        ]
    )

    response = client.get("/display/now-serving", params={"department_id": 1})

    assert response.status_code == 200
    assert response.json()[0]["counter_name"] == "Window 1"
    service.now_serving.assert_awaited_once_with(department_id=1)


def test_event_polling(queue_client):
    client, service = queue_client
    service.list_events = AsyncMock(
        return_value=[
            TicketEvent(
                id=5,
                ticket_id=11,
                department_id=1,
                lane=Lane.REGULAR,
                label="ENG-007",
                action=TicketAction.CALLED,
                old_status=TicketStatus.WAITING,
                new_status=TicketStatus.SERVING,
                counter_id=100,
                repeat_count=0,
                actor="staff",
                created_at=datetime.now(timezone.utc),
            )
        ]
    )

    response = client.get("/events", params={"after_id": 4, "limit": 10})

    assert response.status_code == 200
    event = response.json()[0]
    assert event["action"] == "called"
    assert event["old_status"] == "waiting"
    assert "timestamp" in event
    service.list_events.assert_awaited_once_with(after_id=4, limit=10)


def test_invalid_token_is_rejected(queue_client):
    client, _ = queue_client

    response = client.get("/events", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


def test_metrics_endpoint_exposes_prometheus_text(queue_client):
    client, _ = queue_client

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "queue_tickets_issued_total" in response.text


def test_service_unavailable_without_configuration():
    client = TestClient(create_app())

    response = client.get("/display/now-serving")

    assert response.status_code == 503


def test_event_stream_serves_server_sent_events():
    app = create_app()

    class FiniteStreamer:
        def __init__(self) -> None:
            self.department_ids: list[int | None] = []

        async def iter_sse(self, *, department_id=None):
            self.department_ids.append(department_id)
            yield "event: ready\ndata: {}\n\n"
            yield 'id: 3\nevent: called\ndata: {"id": 3}\n\n'

    streamer = FiniteStreamer()
    app.state.event_streamer = streamer
    client = TestClient(app)

    response = client.get("/events/stream", params={"department_id": 1}, headers=VIEWER)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert "event: ready" in response.text
    assert "id: 3" in response.text
    assert streamer.department_ids == [1]


def test_event_stream_unavailable_without_broker():
    client = TestClient(create_app())

    assert client.get("/events/stream").status_code == 503
