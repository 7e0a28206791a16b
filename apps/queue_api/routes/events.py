from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from apps.queue_api.dependencies.queue import EventStreamerDep, QueueServiceDep, ViewerUser
from apps.queue_api.dispatch import QueueError

from .errors import to_http_error
from .schemas import TicketEventModel

router = APIRouter(prefix="/events", tags=["events"])


@router.get("", response_model=list[TicketEventModel], summary="Committed ticket events after a cursor")
async def list_events(
    service: QueueServiceDep,
    _: ViewerUser,
    after_id: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=500),
) -> list[TicketEventModel]:
    try:
        events = await service.list_events(after_id=after_id, limit=limit)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return [TicketEventModel.from_entity(event) for event in events]


@router.get(
    "/stream",
    response_class=StreamingResponse,
    summary="Live ticket events as Server-Sent Events",
)
async def stream_events(
    streamer: EventStreamerDep,
    _: ViewerUser,
    department_id: int | None = Query(default=None, ge=1),
) -> StreamingResponse:
    return StreamingResponse(streamer.iter_sse(department_id=department_id), media_type="text/event-stream")
