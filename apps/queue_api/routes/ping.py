import asyncpg
from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready", summary="Database readiness check")
async def ready(request: Request) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None or getattr(request.app.state, "queue_service", None) is None:
        raise HTTPException(status_code=503, detail="Queue service is not configured")
    try:
        await tester.test_connection()
    except (OSError, TimeoutError, asyncpg.PostgresError) as exc:
        raise HTTPException(status_code=503, detail="Database unreachable") from exc
    return {"status": "ready"}
