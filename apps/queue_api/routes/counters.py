from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from apps.queue_api.dependencies.queue import QueueServiceDep, StaffUser
from apps.queue_api.dispatch import QueueError

from .errors import to_http_error
from .schemas import CallNextRequest, TicketModel

router = APIRouter(prefix="/counters", tags=["counters"])


@router.post(
    "/{counter_id}/call-next",
    response_model=TicketModel | None,
    summary="Finish the counter's current ticket and call the next one",
)
async def call_next(
    counter_id: int,
    payload: CallNextRequest,
    service: QueueServiceDep,
    user: StaffUser,
) -> TicketModel | None:
    staff_id = payload.staff_id if payload.staff_id is not None else user.staff_id
    if staff_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="staff_id is required for accounts without a staff profile",
        )
    try:
        called = await service.call_next(
            staff_id=staff_id,
            counter_id=counter_id,
            department_id=payload.department_id,
            lane=payload.lane,
            actor=user.username,
        )
    except QueueError as exc:
        raise to_http_error(exc) from exc
    if called is None:
        return None
    return TicketModel.from_entity(called)
