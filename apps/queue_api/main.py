from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from apps.queue_api.core.config import Settings, get_settings
from apps.queue_api.core.logging import configure_logging, init_tracer, shutdown_tracer
from apps.queue_api.dispatch import (
    Dispatcher,
    Lane,
    QueueService,
    RepeatVoidController,
    TicketEventBroker,
    TicketStore,
)
from apps.queue_api.metrics import metrics_registry
from apps.queue_api.middleware import RBACMiddleware
from apps.queue_api.response import TicketEventStreamer
from apps.queue_api.routes import counters, departments, display, events, metrics, ping, tickets
from apps.queue_api.services.postgres import PostgresConnectionTester


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def build_queue_service(
    settings: Settings, engine: AsyncEngine, broker: TicketEventBroker
) -> QueueService:
    """Wire the store, dispatcher and repeat controller from settings."""

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    store = TicketStore(
        session_factory,
        engine=engine,
        publisher=broker,
        label_width=settings.queue_label_width,
    )
    dispatcher = Dispatcher(
        store,
        lane_order=[Lane(value) for value in settings.queue_lane_order],
        claim_attempts=settings.queue_claim_attempts,
        metrics=metrics_registry,
    )
    controller = RepeatVoidController(
        store,
        threshold=settings.queue_void_threshold,
        auto_void=settings.queue_auto_void,
        metrics=metrics_registry,
    )
    return QueueService(store, dispatcher=dispatcher, controller=controller, metrics=metrics_registry)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn)
    broker = TicketEventBroker(buffer_size=settings.queue_event_buffer_size)

    app.state.postgres_tester = postgres_tester
    app.state.event_streamer = TicketEventStreamer(broker, heartbeat=settings.queue_stream_heartbeat_seconds)
    app.state.queue_service = None
    dsn = _to_asyncpg_dsn(settings.postgres_dsn)
    engine_kwargs: dict[str, object] = {"future": True}
    if dsn.startswith("postgresql+asyncpg://"):
        engine_kwargs["pool_size"] = settings.db_pool_size
    db_engine = create_async_engine(dsn, **engine_kwargs)
    try:
        service = build_queue_service(settings, db_engine, broker)
        if settings.db_create_schema:
            await service.ensure_schema()
        app.state.queue_service = service
        app.state.db_engine = db_engine
        app_logger.info("Queue service ready (%s)", settings.environment)
    except (OSError, ValueError, SQLAlchemyError) as exc:
        app_logger.error("Queue service unavailable at startup: %s", exc)
    try:
        yield
    finally:
        await db_engine.dispose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(RBACMiddleware)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(counters.router)
    app.include_router(departments.router)
    app.include_router(display.router)
    app.include_router(events.router)
    app.include_router(metrics.router)
    return app


app = create_app()
