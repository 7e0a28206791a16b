from __future__ import annotations

from fastapi import APIRouter

from apps.queue_api.dependencies.queue import QueueServiceDep
from apps.queue_api.dispatch import QueueError

from .errors import to_http_error
from .schemas import NowServingModel

router = APIRouter(prefix="/display", tags=["display"])


@router.get("/now-serving", response_model=list[NowServingModel], summary="Public now-serving board")
async def now_serving(service: QueueServiceDep, department_id: int | None = None) -> list[NowServingModel]:
    try:
        entries = await service.now_serving(department_id=department_id)
    except QueueError as exc:
        raise to_http_error(exc) from exc
    return [NowServingModel.from_entity(entry) for entry in entries]
