from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from packages.db.models import (
    CounterTable,
    DepartmentTable,
    ServiceTable,
    TicketEventTable,
    TicketTable,
)

from .errors import (
    ConflictingTransitionError,
    InvalidReferenceError,
    StorageUnavailableError,
    TicketNotFoundError,
)
from .events import TicketEventPublisher
from .models import (
    Counter,
    CounterStats,
    Department,
    NowServingEntry,
    Service,
    Ticket,
    TicketAction,
    TicketEvent,
    format_label,
)
from .sequencer import DepartmentSequencer, OutboxSequencer
from .state import Lane, TicketStateMachine, TicketStatus

logger = logging.getLogger(__name__)

_TICKETS = TicketTable.__table__
_EVENTS = TicketEventTable.__table__
_DEPARTMENTS = DepartmentTable.__table__
_SERVICES = ServiceTable.__table__
_COUNTERS = CounterTable.__table__

_TRANSITION_ACTIONS: Mapping[TicketStatus, TicketAction] = {
    TicketStatus.SERVING: TicketAction.CALLED,
    TicketStatus.COMPLETE: TicketAction.COMPLETED,
    TicketStatus.VOID: TicketAction.VOIDED,
}


@dataclass(slots=True)
class UnitOfWork:
    """One store transaction plus the events it will publish once committed.

    ``pending`` holds events recorded by the body; they get outbox ids and
    move to ``events`` just before commit.
    """

    session: AsyncSession
    pending: list[TicketEvent] = field(default_factory=list)
    events: list[TicketEvent] = field(default_factory=list)
    departments: dict[int, Department] = field(default_factory=dict)


class TicketStore:
    """Persistence for tickets, their reference data and the event outbox.

    Every mutation runs inside :meth:`transaction`; status changes are
    compare-and-swap updates so that racing counters never both win.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        sequencer: DepartmentSequencer | None = None,
        outbox: OutboxSequencer | None = None,
        state_machine: TicketStateMachine | None = None,
        publisher: TicketEventPublisher | None = None,
        label_width: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._sequencer = sequencer or DepartmentSequencer()
        self._outbox = outbox or OutboxSequencer()
        self._state_machine = state_machine or TicketStateMachine()
        self._publisher = publisher
        self._label_width = label_width

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    uow = UnitOfWork(session=session)
                    yield uow
                    await self._flush_events(uow)
        except (OperationalError, InterfaceError, PoolTimeoutError, TimeoutError) as exc:
            logger.warning("Ticket store transaction failed: %s", exc)
            raise StorageUnavailableError("Ticket store is temporarily unavailable") from exc

        if uow.events and self._publisher is not None:
            await self._publisher.publish(list(uow.events))

    # Reference data -----------------------------------------------------

    async def get_department(self, uow: UnitOfWork, department_id: int) -> Department | None:
        cached = uow.departments.get(department_id)
        if cached is not None:
            return cached
        row = (
            await uow.session.execute(select(*_DEPARTMENTS.c).where(_DEPARTMENTS.c.id == department_id))
        ).mappings().first()
        if row is None:
            return None
        department = Department(id=int(row["id"]), name=str(row["name"]), prefix=str(row["prefix"]))
        uow.departments[department_id] = department
        return department

    async def get_service(self, uow: UnitOfWork, service_id: int) -> Service | None:
        row = (
            await uow.session.execute(select(*_SERVICES.c).where(_SERVICES.c.id == service_id))
        ).mappings().first()
        if row is None:
            return None
        return Service(id=int(row["id"]), department_id=int(row["department_id"]), name=str(row["name"]))

    async def get_counter(self, uow: UnitOfWork, counter_id: int) -> Counter | None:
        row = (
            await uow.session.execute(select(*_COUNTERS.c).where(_COUNTERS.c.id == counter_id))
        ).mappings().first()
        if row is None:
            return None
        return Counter(id=int(row["id"]), department_id=int(row["department_id"]), name=str(row["name"]))

    async def label_for(self, uow: UnitOfWork, ticket: Ticket) -> str:
        department = await self.get_department(uow, ticket.department_id)
        prefix = department.prefix if department is not None else ""
        return format_label(prefix, ticket.number, self._label_width)

    # Tickets ------------------------------------------------------------

    async def create_ticket(
        self,
        uow: UnitOfWork,
        *,
        department_id: int,
        service_id: int | None,
        lane: Lane,
        priority: str,
        idempotency_key: str | None = None,
        actor: str = "system",
    ) -> Ticket:
        department = await self.get_department(uow, department_id)
        if department is None:
            raise InvalidReferenceError(f"Department {department_id} does not exist")
        if service_id is not None:
            service = await self.get_service(uow, service_id)
            if service is None:
                raise InvalidReferenceError(f"Service {service_id} does not exist")
            if service.department_id != department_id:
                raise InvalidReferenceError(
                    f"Service {service_id} does not belong to department {department_id}"
                )

        number = await self._sequencer.next_number(uow.session, department_id)
        now = _utcnow()
        row = (
            await uow.session.execute(
                insert(_TICKETS)
                .values(
                    department_id=department_id,
                    service_id=service_id,
                    number=number,
                    lane=lane.value,
                    priority=priority,
                    status=self._state_machine.initial_state().value,
                    counter_id=None,
                    staff_id=None,
                    repeat_count=0,
                    idempotency_key=idempotency_key,
                    created_at=now,
                    updated_at=now,
                )
                .returning(*_TICKETS.c)
            )
        ).mappings().one()
        ticket = _row_to_ticket(row)
        await self._record_event(uow, ticket, action=TicketAction.CREATED, old_status=None, actor=actor)
        return ticket

    async def get_ticket(self, uow: UnitOfWork, ticket_id: int) -> Ticket | None:
        row = (
            await uow.session.execute(select(*_TICKETS.c).where(_TICKETS.c.id == ticket_id))
        ).mappings().first()
        return _row_to_ticket(row) if row is not None else None

    async def find_by_idempotency_key(self, uow: UnitOfWork, key: str) -> Ticket | None:
        row = (
            await uow.session.execute(select(*_TICKETS.c).where(_TICKETS.c.idempotency_key == key))
        ).mappings().first()
        return _row_to_ticket(row) if row is not None else None

    async def find_serving(self, uow: UnitOfWork, counter_id: int) -> Ticket | None:
        row = (
            await uow.session.execute(
                select(*_TICKETS.c).where(
                    _TICKETS.c.counter_id == counter_id,
                    _TICKETS.c.status == TicketStatus.SERVING.value,
                )
            )
        ).mappings().first()
        return _row_to_ticket(row) if row is not None else None

    async def list_waiting(
        self, uow: UnitOfWork, department_id: int, lane: Lane, *, limit: int | None = None
    ) -> list[Ticket]:
        """Return a FIFO snapshot of waiting tickets for one department lane."""

        statement = (
            select(*_TICKETS.c)
            .where(
                _TICKETS.c.department_id == department_id,
                _TICKETS.c.lane == lane.value,
                _TICKETS.c.status == TicketStatus.WAITING.value,
            )
            .order_by(_TICKETS.c.created_at.asc(), _TICKETS.c.number.asc())
        )
        if limit is not None:
            statement = statement.limit(limit)
        rows = (await uow.session.execute(statement)).mappings().all()
        return [_row_to_ticket(row) for row in rows]

    async def list_tickets(
        self,
        uow: UnitOfWork,
        department_id: int,
        *,
        status: TicketStatus | None = None,
        lane: Lane | None = None,
    ) -> list[Ticket]:
        statement = select(*_TICKETS.c).where(_TICKETS.c.department_id == department_id)
        if status is not None:
            statement = statement.where(_TICKETS.c.status == status.value)
        if lane is not None:
            statement = statement.where(_TICKETS.c.lane == lane.value)
        statement = statement.order_by(_TICKETS.c.created_at.asc(), _TICKETS.c.number.asc())
        rows = (await uow.session.execute(statement)).mappings().all()
        return [_row_to_ticket(row) for row in rows]

    async def transition(
        self,
        uow: UnitOfWork,
        ticket_id: int,
        expected: TicketStatus,
        new: TicketStatus,
        *,
        counter_id: int | None = None,
        staff_id: int | None = None,
        actor: str = "system",
    ) -> Ticket:
        """Move a ticket from ``expected`` to ``new`` if it is still in ``expected``."""

        self._state_machine.assert_transition(expected, new)
        if new is TicketStatus.SERVING and counter_id is None:
            raise ValueError("A counter is required to serve a ticket")

        now = _utcnow()
        values: dict[str, Any] = {"status": new.value, "updated_at": now}
        if counter_id is not None:
            values["counter_id"] = counter_id
        if staff_id is not None:
            values["staff_id"] = staff_id
        if new is TicketStatus.SERVING:
            values["called_at"] = now
        elif new.is_terminal:
            values["finished_at"] = now

        row = (
            await uow.session.execute(
                update(_TICKETS)
                .where(_TICKETS.c.id == ticket_id, _TICKETS.c.status == expected.value)
                .values(**values)
                .returning(*_TICKETS.c)
            )
        ).mappings().first()
        if row is None:
            current = await self.get_ticket(uow, ticket_id)
            if current is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            raise ConflictingTransitionError(
                f"Ticket {ticket_id} is {current.status.value}, expected {expected.value}"
            )

        ticket = _row_to_ticket(row)
        await self._record_event(uow, ticket, action=_TRANSITION_ACTIONS[new], old_status=expected, actor=actor)
        return ticket

    async def increment_repeat(
        self, uow: UnitOfWork, ticket_id: int, *, limit: int, actor: str = "system"
    ) -> Ticket | None:
        """Atomically bump ``repeat_count`` of a serving ticket below ``limit``.

        Returns ``None`` when the ticket is missing, not serving, or already at
        the limit; the caller decides which of those it was.
        """

        row = (
            await uow.session.execute(
                update(_TICKETS)
                .where(
                    _TICKETS.c.id == ticket_id,
                    _TICKETS.c.status == TicketStatus.SERVING.value,
                    _TICKETS.c.repeat_count < limit,
                )
                .values(repeat_count=_TICKETS.c.repeat_count + 1, updated_at=_utcnow())
                .returning(*_TICKETS.c)
            )
        ).mappings().first()
        if row is None:
            return None
        ticket = _row_to_ticket(row)
        await self._record_event(
            uow, ticket, action=TicketAction.REPEATED, old_status=TicketStatus.SERVING, actor=actor
        )
        return ticket

    # Dashboards ---------------------------------------------------------

    async def counter_stats(
        self, uow: UnitOfWork, department_id: int, *, counter_id: int | None = None
    ) -> CounterStats:
        waiting = (
            await uow.session.execute(
                select(func.count())
                .select_from(_TICKETS)
                .where(
                    _TICKETS.c.department_id == department_id,
                    _TICKETS.c.status == TicketStatus.WAITING.value,
                )
            )
        ).scalar_one()

        statement = (
            select(_TICKETS.c.status, func.count())
            .where(_TICKETS.c.department_id == department_id)
            .group_by(_TICKETS.c.status)
        )
        if counter_id is not None:
            statement = statement.where(_TICKETS.c.counter_id == counter_id)
        counts = {str(status): int(total) for status, total in (await uow.session.execute(statement)).all()}

        return CounterStats(
            department_id=department_id,
            counter_id=counter_id,
            waiting=int(waiting),
            serving=counts.get(TicketStatus.SERVING.value, 0),
            completed=counts.get(TicketStatus.COMPLETE.value, 0),
            void=counts.get(TicketStatus.VOID.value, 0),
        )

    async def now_serving(self, uow: UnitOfWork, *, department_id: int | None = None) -> list[NowServingEntry]:
        statement = (
            select(
                *_TICKETS.c,
                _COUNTERS.c.name.label("counter_name"),
                _DEPARTMENTS.c.prefix.label("department_prefix"),
            )
            .join(_COUNTERS, _COUNTERS.c.id == _TICKETS.c.counter_id)
            .join(_DEPARTMENTS, _DEPARTMENTS.c.id == _TICKETS.c.department_id)
            .where(_TICKETS.c.status == TicketStatus.SERVING.value)
            .order_by(_TICKETS.c.called_at.desc())
        )
        if department_id is not None:
            statement = statement.where(_TICKETS.c.department_id == department_id)

        entries: list[NowServingEntry] = []
        for row in (await uow.session.execute(statement)).mappings().all():
            ticket = _row_to_ticket(row)
            entries.append(
                NowServingEntry(
                    ticket_id=ticket.id,
                    department_id=ticket.department_id,
                    label=format_label(str(row["department_prefix"]), ticket.number, self._label_width),
                    lane=ticket.lane,
                    counter_id=int(row["counter_id"]),
                    counter_name=str(row["counter_name"]),
                    repeat_count=ticket.repeat_count,
                    called_at=ticket.called_at,
                )
            )
        return entries

    # Events -------------------------------------------------------------

    async def list_events(self, uow: UnitOfWork, *, after_id: int = 0, limit: int = 100) -> list[TicketEvent]:
        rows = (
            await uow.session.execute(
                select(*_EVENTS.c).where(_EVENTS.c.id > after_id).order_by(_EVENTS.c.id.asc()).limit(limit)
            )
        ).mappings().all()
        return [_row_to_event(row) for row in rows]

    async def _record_event(
        self,
        uow: UnitOfWork,
        ticket: Ticket,
        *,
        action: TicketAction,
        old_status: TicketStatus | None,
        actor: str,
    ) -> None:
        uow.pending.append(
            TicketEvent(
                id=0,
                ticket_id=ticket.id,
                department_id=ticket.department_id,
                lane=ticket.lane,
                label=await self.label_for(uow, ticket),
                action=action,
                old_status=old_status,
                new_status=ticket.status,
                counter_id=ticket.counter_id,
                repeat_count=ticket.repeat_count,
                actor=actor,
                created_at=_utcnow(),
            )
        )

    async def _flush_events(self, uow: UnitOfWork) -> None:
        """Write pending events to the outbox as the last step before commit.

        Ids are reserved after every ticket row lock the transaction needs,
        so the outbox lock is always taken last.
        """

        if not uow.pending:
            return
        ids = await self._outbox.reserve(uow.session, len(uow.pending))
        for event, event_id in zip(uow.pending, ids):
            event.id = event_id
        await uow.session.execute(insert(_EVENTS), [_event_values(event) for event in uow.pending])
        uow.events.extend(uow.pending)
        uow.pending.clear()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
    return Ticket(
        id=int(row["id"]),
        department_id=int(row["department_id"]),
        service_id=_optional_int(row["service_id"]),
        number=int(row["number"]),
        lane=Lane(str(row["lane"])),
        priority=str(row["priority"]),
        status=TicketStatus(str(row["status"])),
        counter_id=_optional_int(row["counter_id"]),
        staff_id=_optional_int(row["staff_id"]),
        repeat_count=int(row["repeat_count"]),
        idempotency_key=row["idempotency_key"],
        created_at=_ensure_datetime(row["created_at"]),
        updated_at=_ensure_datetime(row["updated_at"]),
        called_at=_optional_datetime(row["called_at"]),
        finished_at=_optional_datetime(row["finished_at"]),
    )


def _row_to_event(row: Mapping[str, Any]) -> TicketEvent:
    old_status = row["old_status"]
    return TicketEvent(
        id=int(row["id"]),
        ticket_id=int(row["ticket_id"]),
        department_id=int(row["department_id"]),
        lane=Lane(str(row["lane"])),
        label=str(row["label"]),
        action=TicketAction(str(row["action"])),
        old_status=TicketStatus(str(old_status)) if old_status else None,
        new_status=TicketStatus(str(row["new_status"])),
        counter_id=_optional_int(row["counter_id"]),
        repeat_count=int(row["repeat_count"]),
        actor=str(row["actor"]),
        created_at=_ensure_datetime(row["created_at"]),
    )


def _event_values(event: TicketEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "ticket_id": event.ticket_id,
        "department_id": event.department_id,
        "lane": event.lane.value,
        "label": event.label,
        "action": event.action.value,
        "old_status": event.old_status.value if event.old_status else None,
        "new_status": event.new_status.value,
        "counter_id": event.counter_id,
        "repeat_count": event.repeat_count,
        "actor": event.actor,
        "created_at": event.created_at,
    }


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))


def _optional_datetime(value: Any) -> datetime | None:
    return _ensure_datetime(value) if value is not None else None

