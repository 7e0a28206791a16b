from __future__ import annotations

from fastapi import APIRouter

from apps.queue_api.dependencies.queue import QueueServiceDep, ViewerUser
from apps.queue_api.dispatch import Lane, QueueError, TicketStatus

from .errors import to_http_error
from .schemas import CounterStatsModel, TicketModel

router = APIRouter(prefix="/departments", tags=["departments"])


@router.get("/{department_id}/tickets", response_model=list[TicketModel], summary="Department queue in FIFO order")
async def list_tickets(
    department_id: int,
    service: QueueServiceDep,
    _: ViewerUser,
    status: TicketStatus | None = None,
    lane: Lane | None = None,
) -> list[TicketModel]:
    try:
        tickets = await service.list_tickets(department_id, status=status, lane=lane)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return [TicketModel.from_entity(item) for item in tickets]


@router.get("/{department_id}/stats", response_model=CounterStatsModel)
async def counter_stats(
    department_id: int,
    service: QueueServiceDep,
    _: ViewerUser,
    counter_id: int | None = None,
) -> CounterStatsModel:
    try:
        stats = await service.counter_stats(department_id, counter_id=counter_id)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return CounterStatsModel.from_entity(stats)
