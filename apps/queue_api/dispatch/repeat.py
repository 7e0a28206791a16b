from __future__ import annotations

import logging

from apps.queue_api.metrics import MetricsRegistry, register_default_metrics
from apps.queue_api.metrics.definitions import CONCURRENT_CONFLICTS, REPEAT_CALLS, TICKETS_FINISHED

from .errors import (
    ConcurrentModificationError,
    ConflictingTransitionError,
    IllegalStateError,
    TicketNotFoundError,
)
from .models import LabelledTicket, RepeatCallResult, Ticket
from .state import TicketStatus
from .store import TicketStore, UnitOfWork

logger = logging.getLogger(__name__)

DEFAULT_VOID_THRESHOLD = 3


class RepeatVoidController:
    """Re-announce serving tickets and end them as complete or void.

    ``threshold`` bounds how many times a ticket may be re-announced. With
    ``auto_void`` the repeat that reaches the threshold voids the ticket in the
    same transaction; without it the count stops at the threshold and staff
    must void or complete the ticket themselves.
    """

    def __init__(
        self,
        store: TicketStore,
        *,
        threshold: int = DEFAULT_VOID_THRESHOLD,
        auto_void: bool = True,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self._store = store
        self._threshold = threshold
        self._auto_void = auto_void
        self._metrics = register_default_metrics(metrics)

    @property
    def threshold(self) -> int:
        return self._threshold

    async def repeat_call(self, ticket_id: int, *, actor: str = "system") -> RepeatCallResult:
        async with self._store.transaction() as uow:
            ticket = await self._store.increment_repeat(uow, ticket_id, limit=self._threshold, actor=actor)
            if ticket is None:
                current = await self._require_ticket(uow, ticket_id)
                if current.status is not TicketStatus.SERVING:
                    raise IllegalStateError(
                        f"Ticket {ticket_id} is {current.status.value}; only serving tickets can be repeated"
                    )
                raise IllegalStateError(
                    f"Ticket {ticket_id} reached the repeat limit of {self._threshold}; void or complete it"
                )

            auto_voided = False
            if self._auto_void and ticket.repeat_count >= self._threshold:
                ticket = await self._finish(uow, ticket, TicketStatus.VOID, actor=actor, reason="auto")
                auto_voided = True
            label = await self._store.label_for(uow, ticket)

        self._metrics.counter(REPEAT_CALLS).inc()
        if auto_voided:
            logger.info("Ticket %s voided after %d repeat calls", label, ticket.repeat_count)
        else:
            logger.info("Repeat call %d for %s", ticket.repeat_count, label)
        return RepeatCallResult(ticket=ticket, label=label, auto_voided=auto_voided)

    async def complete(self, ticket_id: int, *, actor: str = "system") -> LabelledTicket:
        async with self._store.transaction() as uow:
            ticket = await self._require_serving(uow, ticket_id)
            ticket = await self._finish(uow, ticket, TicketStatus.COMPLETE, actor=actor, reason="staff")
            return LabelledTicket(ticket=ticket, label=await self._store.label_for(uow, ticket))

    async def void(self, ticket_id: int, *, actor: str = "system") -> LabelledTicket:
        """Void a serving ticket once it has been repeated ``threshold`` times."""

        async with self._store.transaction() as uow:
            ticket = await self._require_serving(uow, ticket_id)
            if ticket.repeat_count < self._threshold:
                raise IllegalStateError(
                    f"Ticket {ticket_id} needs {self._threshold} repeat calls before it can be voided "
                    f"(currently {ticket.repeat_count})"
                )
            ticket = await self._finish(uow, ticket, TicketStatus.VOID, actor=actor, reason="staff")
            return LabelledTicket(ticket=ticket, label=await self._store.label_for(uow, ticket))

    async def override_void(self, ticket_id: int, *, actor: str = "system") -> LabelledTicket:
        """Supervisor void of a serving ticket regardless of its repeat count."""

        async with self._store.transaction() as uow:
            ticket = await self._require_serving(uow, ticket_id)
            ticket = await self._finish(uow, ticket, TicketStatus.VOID, actor=actor, reason="override")
            logger.warning("Ticket %s voided by override from %s", ticket.id, actor)
            return LabelledTicket(ticket=ticket, label=await self._store.label_for(uow, ticket))

    async def _require_ticket(self, uow: UnitOfWork, ticket_id: int) -> Ticket:
        ticket = await self._store.get_ticket(uow, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _require_serving(self, uow: UnitOfWork, ticket_id: int) -> Ticket:
        ticket = await self._require_ticket(uow, ticket_id)
        if ticket.status is not TicketStatus.SERVING:
            raise IllegalStateError(f"Ticket {ticket_id} is {ticket.status.value}, not serving")
        return ticket

    async def _finish(
        self, uow: UnitOfWork, ticket: Ticket, target: TicketStatus, *, actor: str, reason: str
    ) -> Ticket:
        try:
            finished = await self._store.transition(uow, ticket.id, TicketStatus.SERVING, target, actor=actor)
        except ConflictingTransitionError as exc:
            self._metrics.counter(CONCURRENT_CONFLICTS).inc(labels={"operation": target.value})
            raise ConcurrentModificationError(f"Ticket {ticket.id} changed concurrently") from exc
        self._metrics.counter(TICKETS_FINISHED).inc(labels={"status": target.value, "reason": reason})
        return finished
