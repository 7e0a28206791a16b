from __future__ import annotations

from fastapi import APIRouter, status

from apps.queue_api.dependencies.auth import CurrentUser
from apps.queue_api.dependencies.queue import AdminUser, QueueServiceDep, StaffUser, ViewerUser
from apps.queue_api.dispatch import QueueError

from .errors import to_http_error
from .schemas import RepeatCallModel, TicketCreateRequest, TicketModel, TicketStatusChangeRequest

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED, summary="Issue a ticket")
async def create_ticket(
    payload: TicketCreateRequest,
    service: QueueServiceDep,
    user: CurrentUser,
) -> TicketModel:
    try:
        created = await service.create_ticket(
            department_id=payload.department_id,
            service_id=payload.service_id,
            priority=payload.priority,
            idempotency_key=payload.idempotency_key,
            actor=user.username,
        )
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return TicketModel.from_entity(created)


@router.get("/{ticket_id}", response_model=TicketModel)
async def get_ticket(ticket_id: int, service: QueueServiceDep, _: ViewerUser) -> TicketModel:
    try:
        ticket = await service.get_ticket(ticket_id)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/repeat", response_model=RepeatCallModel, summary="Re-announce a serving ticket")
async def repeat_call(ticket_id: int, service: QueueServiceDep, user: StaffUser) -> RepeatCallModel:
    try:
        result = await service.repeat_call(ticket_id, actor=user.username)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return RepeatCallModel.from_result(result)


@router.post("/{ticket_id}/status", response_model=TicketModel, summary="Complete or void a serving ticket")
async def change_ticket_status(
    ticket_id: int,
    payload: TicketStatusChangeRequest,
    service: QueueServiceDep,
    user: StaffUser,
) -> TicketModel:
    try:
        ticket = await service.set_status(ticket_id, status=payload.status, actor=user.username)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/override-void", response_model=TicketModel)
async def override_void(ticket_id: int, service: QueueServiceDep, user: AdminUser) -> TicketModel:
    try:
        ticket = await service.override_void(ticket_id, actor=user.username)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return TicketModel.from_entity(ticket)
