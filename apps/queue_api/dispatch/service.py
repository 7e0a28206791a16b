from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy.exc import IntegrityError

from apps.queue_api.metrics import MetricsRegistry, register_default_metrics
from apps.queue_api.metrics.definitions import TICKETS_ISSUED

from .dispatcher import Dispatcher
from .errors import ConcurrentModificationError, IllegalStateError, TicketNotFoundError
from .lanes import LaneClassifier, PriorityCategory
from .models import CounterStats, LabelledTicket, NowServingEntry, RepeatCallResult, TicketEvent
from .repeat import RepeatVoidController
from .state import Lane, TicketStatus
from .store import TicketStore

logger = logging.getLogger(__name__)


class QueueService:
    """High level orchestration for ticket issuance, dispatch and display reads."""

    def __init__(
        self,
        store: TicketStore,
        *,
        dispatcher: Dispatcher | None = None,
        controller: RepeatVoidController | None = None,
        classifier: LaneClassifier | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._store = store
        self._metrics = register_default_metrics(metrics)
        self._dispatcher = dispatcher or Dispatcher(store, metrics=self._metrics)
        self._controller = controller or RepeatVoidController(store, metrics=self._metrics)
        self._classifier = classifier or LaneClassifier()

    async def ensure_schema(self) -> None:
        await self._store.ensure_schema()

    async def create_ticket(
        self,
        *,
        department_id: int,
        service_id: int | None,
        priority: str | PriorityCategory,
        actor: str,
        idempotency_key: str | None = None,
    ) -> LabelledTicket:
        """Issue a waiting ticket.

        A repeated ``idempotency_key`` returns the ticket issued the first time
        instead of minting a second number.
        """

        category = self._classifier.parse(priority)
        lane = self._classifier.classify(category)

        if idempotency_key:
            existing = await self._find_by_idempotency_key(idempotency_key)
            if existing is not None:
                return existing

        try:
            async with self._store.transaction() as uow:
                ticket = await self._store.create_ticket(
                    uow,
                    department_id=department_id,
                    service_id=service_id,
                    lane=lane,
                    priority=category.value,
                    idempotency_key=idempotency_key or None,
                    actor=actor,
                )
                label = await self._store.label_for(uow, ticket)
        except IntegrityError as exc:
            existing = await self._find_by_idempotency_key(idempotency_key) if idempotency_key else None
            if existing is None:
                logger.warning("Ticket creation in department %s hit a constraint: %s", department_id, exc.orig)
                raise ConcurrentModificationError(
                    f"Ticket creation in department {department_id} conflicted with a concurrent change"
                ) from exc
            logger.info("Concurrent create for idempotency key %s resolved to %s", idempotency_key, existing.label)
            return existing

        self._metrics.counter(TICKETS_ISSUED).inc(labels={"department": department_id, "lane": lane.value})
        logger.info("Issued %s (%s lane) in department %s", label, lane.value, department_id)
        return LabelledTicket(ticket=ticket, label=label)

    async def call_next(
        self,
        *,
        staff_id: int,
        counter_id: int,
        department_id: int,
        lane: Lane | None = None,
        actor: str,
    ) -> LabelledTicket | None:
        return await self._dispatcher.call_next(
            staff_id=staff_id,
            counter_id=counter_id,
            department_id=department_id,
            lane=lane,
            actor=actor,
        )

    async def repeat_call(self, ticket_id: int, *, actor: str) -> RepeatCallResult:
        return await self._controller.repeat_call(ticket_id, actor=actor)

    async def set_status(self, ticket_id: int, *, status: TicketStatus, actor: str) -> LabelledTicket:
        if status is TicketStatus.COMPLETE:
            return await self._controller.complete(ticket_id, actor=actor)
        if status is TicketStatus.VOID:
            return await self._controller.void(ticket_id, actor=actor)
        raise IllegalStateError(f"Status {status.value} cannot be set directly")

    async def override_void(self, ticket_id: int, *, actor: str) -> LabelledTicket:
        return await self._controller.override_void(ticket_id, actor=actor)

    async def get_ticket(self, ticket_id: int) -> LabelledTicket:
        async with self._store.transaction() as uow:
            ticket = await self._store.get_ticket(uow, ticket_id)
            if ticket is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            return LabelledTicket(ticket=ticket, label=await self._store.label_for(uow, ticket))

    async def list_tickets(
        self,
        department_id: int,
        *,
        status: TicketStatus | None = None,
        lane: Lane | None = None,
    ) -> Sequence[LabelledTicket]:
        async with self._store.transaction() as uow:
            tickets = await self._store.list_tickets(uow, department_id, status=status, lane=lane)
            return [LabelledTicket(ticket=ticket, label=await self._store.label_for(uow, ticket)) for ticket in tickets]

    async def counter_stats(self, department_id: int, *, counter_id: int | None = None) -> CounterStats:
        async with self._store.transaction() as uow:
            return await self._store.counter_stats(uow, department_id, counter_id=counter_id)

    async def now_serving(self, *, department_id: int | None = None) -> Sequence[NowServingEntry]:
        async with self._store.transaction() as uow:
            return await self._store.now_serving(uow, department_id=department_id)

    async def list_events(self, *, after_id: int = 0, limit: int = 100) -> Sequence[TicketEvent]:
        async with self._store.transaction() as uow:
            return await self._store.list_events(uow, after_id=after_id, limit=limit)

    async def _find_by_idempotency_key(self, key: str) -> LabelledTicket | None:
        async with self._store.transaction() as uow:
            ticket = await self._store.find_by_idempotency_key(uow, key)
            if ticket is None:
                return None
            return LabelledTicket(ticket=ticket, label=await self._store.label_for(uow, ticket))
