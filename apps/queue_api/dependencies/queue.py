from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from apps.queue_api.dependencies.auth import Role, User, role_required
from apps.queue_api.dispatch import QueueService
from apps.queue_api.response import TicketEventStreamer

require_staff = role_required(Role.STAFF)
require_viewer = role_required(Role.VIEWER)
require_admin = role_required(Role.ADMIN)

StaffUser = Annotated[User, Depends(require_staff)]
ViewerUser = Annotated[User, Depends(require_viewer)]
AdminUser = Annotated[User, Depends(require_admin)]


async def get_queue_service(request: Request) -> QueueService:
    service = getattr(request.app.state, "queue_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Queue service is not configured")
    return service


async def get_event_streamer(request: Request) -> TicketEventStreamer:
    streamer = getattr(request.app.state, "event_streamer", None)
    if streamer is None:
        raise HTTPException(status_code=503, detail="Event stream is not configured")
    return streamer


QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
EventStreamerDep = Annotated[TicketEventStreamer, Depends(get_event_streamer)]
