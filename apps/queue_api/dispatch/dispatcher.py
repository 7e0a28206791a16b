from __future__ import annotations

import logging
from typing import Sequence

from opentelemetry import trace
from sqlalchemy.exc import IntegrityError

from apps.queue_api.metrics import MetricsRegistry, register_default_metrics, track_duration
from apps.queue_api.metrics.definitions import (
    CALL_NEXT_DURATION,
    CALL_NEXT_EMPTY,
    CONCURRENT_CONFLICTS,
    TICKETS_CALLED,
    TICKETS_FINISHED,
)

from .errors import ConcurrentModificationError, ConflictingTransitionError, InvalidReferenceError
from .models import LabelledTicket, Ticket
from .state import Lane, TicketStatus
from .store import TicketStore, UnitOfWork

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_LANE_ORDER: tuple[Lane, ...] = (Lane.PRIORITY, Lane.REGULAR)


class Dispatcher:
    """Staff "call next" for one counter.

    One call is a single transaction: the counter's current ticket is
    completed, then the head of the lane is claimed with a compare-and-swap.
    A lost claim is retried once against a fresh snapshot of the lane.
    """

    def __init__(
        self,
        store: TicketStore,
        *,
        lane_order: Sequence[Lane] = DEFAULT_LANE_ORDER,
        claim_attempts: int = 2,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if not lane_order:
            raise ValueError("lane_order must name at least one lane")
        if claim_attempts < 1:
            raise ValueError("claim_attempts must be at least 1")
        self._store = store
        self._lane_order = tuple(lane_order)
        self._claim_attempts = claim_attempts
        self._metrics = register_default_metrics(metrics)

    async def call_next(
        self,
        *,
        staff_id: int,
        counter_id: int,
        department_id: int,
        lane: Lane | None = None,
        actor: str = "system",
    ) -> LabelledTicket | None:
        """Complete the counter's serving ticket and serve the next waiting one.

        When ``lane`` is omitted the configured lane order is applied; lanes are
        still searched one at a time and never merged. Returns ``None`` when
        every searched lane is empty.
        """

        with tracer.start_as_current_span("dispatcher.call_next") as span:
            span.set_attribute("queue.counter_id", counter_id)
            span.set_attribute("queue.department_id", department_id)
            span.set_attribute("queue.lane", lane.value if lane else "any")

            with track_duration(self._metrics.histogram(CALL_NEXT_DURATION)):
                async with self._store.transaction() as uow:
                    counter = await self._store.get_counter(uow, counter_id)
                    if counter is None:
                        raise InvalidReferenceError(f"Counter {counter_id} does not exist")
                    if counter.department_id != department_id:
                        raise InvalidReferenceError(
                            f"Counter {counter_id} does not belong to department {department_id}"
                        )

                    await self._release_counter(uow, counter_id, actor=actor)

                    ticket: Ticket | None = None
                    label = ""
                    for candidate in (lane,) if lane is not None else self._lane_order:
                        ticket = await self._claim_head(
                            uow,
                            department_id=department_id,
                            lane=candidate,
                            counter_id=counter_id,
                            staff_id=staff_id,
                            actor=actor,
                        )
                        if ticket is not None:
                            label = await self._store.label_for(uow, ticket)
                            break

            if ticket is None:
                self._metrics.counter(CALL_NEXT_EMPTY).inc(labels={"department": department_id})
                logger.info("Counter %s found no waiting ticket in department %s", counter_id, department_id)
                return None

            span.set_attribute("queue.ticket_id", ticket.id)
            self._metrics.counter(TICKETS_CALLED).inc(
                labels={"department": department_id, "lane": ticket.lane.value}
            )
            logger.info("Counter %s now serving %s (ticket %s)", counter_id, label, ticket.id)
            return LabelledTicket(ticket=ticket, label=label)

    async def _release_counter(self, uow: UnitOfWork, counter_id: int, *, actor: str) -> None:
        current = await self._store.find_serving(uow, counter_id)
        if current is None:
            return
        try:
            await self._store.transition(
                uow, current.id, TicketStatus.SERVING, TicketStatus.COMPLETE, actor=actor
            )
        except ConflictingTransitionError as exc:
            self._metrics.counter(CONCURRENT_CONFLICTS).inc(labels={"operation": "complete_current"})
            raise ConcurrentModificationError(
                f"Ticket {current.id} at counter {counter_id} changed while calling next"
            ) from exc
        self._metrics.counter(TICKETS_FINISHED).inc(labels={"status": "complete", "reason": "call_next"})

    async def _claim_head(
        self,
        uow: UnitOfWork,
        *,
        department_id: int,
        lane: Lane,
        counter_id: int,
        staff_id: int,
        actor: str,
    ) -> Ticket | None:
        for attempt in range(1, self._claim_attempts + 1):
            waiting = await self._store.list_waiting(uow, department_id, lane, limit=1)
            if not waiting:
                return None
            head = waiting[0]
            try:
                return await self._store.transition(
                    uow,
                    head.id,
                    TicketStatus.WAITING,
                    TicketStatus.SERVING,
                    counter_id=counter_id,
                    staff_id=staff_id,
                    actor=actor,
                )
            except ConflictingTransitionError:
                self._metrics.counter(CONCURRENT_CONFLICTS).inc(labels={"operation": "claim"})
                logger.info(
                    "Ticket %s was claimed by another counter (attempt %d/%d)",
                    head.id,
                    attempt,
                    self._claim_attempts,
                )
            except IntegrityError as exc:
                self._metrics.counter(CONCURRENT_CONFLICTS).inc(labels={"operation": "claim"})
                raise ConcurrentModificationError(
                    f"Counter {counter_id} is already serving another ticket"
                ) from exc

        raise ConcurrentModificationError(
            f"Could not claim a {lane.value} ticket in department {department_id} after "
            f"{self._claim_attempts} attempts"
        )
