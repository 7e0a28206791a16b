from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from apps.queue_api.dispatch import (
    Dispatcher,
    QueueService,
    RepeatVoidController,
    TicketEventBroker,
    TicketStore,
)
from apps.queue_api.metrics import MetricsRegistry, register_default_metrics
from packages.db.models import CounterTable, DepartmentTable, ServiceTable

ENGINEERING = 1
TREASURY = 2
ENG_PERMITS = 10
TRS_TAXES = 20
ENG_COUNTER_A = 100
ENG_COUNTER_B = 101
TRS_COUNTER = 200


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        now = datetime.now(timezone.utc)
        await conn.execute(
            insert(DepartmentTable.__table__),
            [
                {"id": ENGINEERING, "name": "Engineering", "prefix": "ENG", "created_at": now},
                {"id": TREASURY, "name": "Treasury", "prefix": "TRS", "created_at": now},
            ],
        )
        await conn.execute(
            insert(ServiceTable.__table__),
            [
                {"id": ENG_PERMITS, "department_id": ENGINEERING, "name": "Building permits"},
                {"id": TRS_TAXES, "department_id": TREASURY, "name": "Property tax"},
            ],
        )
        await conn.execute(
            insert(CounterTable.__table__),
            [
                {"id": ENG_COUNTER_A, "department_id": ENGINEERING, "name": "Window 1"},
                {"id": ENG_COUNTER_B, "department_id": ENGINEERING, "name": "Window 2"},
                {"id": TRS_COUNTER, "department_id": TREASURY, "name": "Cashier"},
            ],
        )
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def registry() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def broker() -> TicketEventBroker:
    return TicketEventBroker(buffer_size=50)


@pytest.fixture
def store(session_factory: async_sessionmaker, engine: AsyncEngine, broker: TicketEventBroker) -> TicketStore:
    return TicketStore(session_factory, engine=engine, publisher=broker)


@pytest.fixture
def dispatcher(store: TicketStore, registry: MetricsRegistry) -> Dispatcher:
    return Dispatcher(store, metrics=registry)


@pytest.fixture
def controller(store: TicketStore, registry: MetricsRegistry) -> RepeatVoidController:
    return RepeatVoidController(store, threshold=3, metrics=registry)


@pytest.fixture
def queue_service(
    store: TicketStore,
    dispatcher: Dispatcher,
    controller: RepeatVoidController,
    registry: MetricsRegistry,
) -> QueueService:
    return QueueService(store, dispatcher=dispatcher, controller=controller, metrics=registry)


@pytest.fixture
def ids() -> SimpleNamespace:
    """Identifiers of the seeded reference data."""

    return SimpleNamespace(
        engineering=ENGINEERING,
        treasury=TREASURY,
        eng_permits=ENG_PERMITS,
        trs_taxes=TRS_TAXES,
        counter_a=ENG_COUNTER_A,
        counter_b=ENG_COUNTER_B,
        trs_counter=TRS_COUNTER,
    )
