from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from apps.queue_api.dispatch import (
    CounterStats,
    LabelledTicket,
    Lane,
    NowServingEntry,
    RepeatCallResult,
    TicketAction,
    TicketEvent,
    TicketStatus,
)


class TicketModel(BaseModel):
    ticket_id: int
    department_id: int
    service_id: int | None = None
    number: int
    label: str
    lane: Lane
    priority: str
    status: TicketStatus
    counter_id: int | None = None
    staff_id: int | None = None
    repeat_count: int
    created_at: datetime
    updated_at: datetime
    called_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: LabelledTicket) -> "TicketModel":
        ticket = entity.ticket
        return cls(
            ticket_id=ticket.id,
            department_id=ticket.department_id,
            service_id=ticket.service_id,
            number=ticket.number,
            label=entity.label,
            lane=ticket.lane,
            priority=ticket.priority,
            status=ticket.status,
            counter_id=ticket.counter_id,
            staff_id=ticket.staff_id,
            repeat_count=ticket.repeat_count,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            called_at=ticket.called_at,
            finished_at=ticket.finished_at,
        )


class RepeatCallModel(TicketModel):
    auto_voided: bool = False

    @classmethod
    def from_result(cls, result: RepeatCallResult) -> "RepeatCallModel":
        base = TicketModel.from_entity(LabelledTicket(ticket=result.ticket, label=result.label))
        return cls(**base.model_dump(), auto_voided=result.auto_voided)


class TicketEventModel(BaseModel):
    id: int
    ticket_id: int
    department_id: int
    lane: Lane
    label: str
    action: TicketAction
    old_status: TicketStatus | None = None
    new_status: TicketStatus
    counter_id: int | None = None
    repeat_count: int
    actor: str
    timestamp: datetime

    @classmethod
    def from_entity(cls, event: TicketEvent) -> "TicketEventModel":
        return cls(
            id=event.id,
            ticket_id=event.ticket_id,
            department_id=event.department_id,
            lane=event.lane,
            label=event.label,
            action=event.action,
            old_status=event.old_status,
            new_status=event.new_status,
            counter_id=event.counter_id,
            repeat_count=event.repeat_count,
            actor=event.actor,
            timestamp=event.created_at,
        )


class CounterStatsModel(BaseModel):
    department_id: int
    counter_id: int | None = None
    waiting: int
    serving: int
    completed: int
    void: int

    @classmethod
    def from_entity(cls, stats: CounterStats) -> "CounterStatsModel":
        return cls(
            department_id=stats.department_id,
            counter_id=stats.counter_id,
            waiting=stats.waiting,
            serving=stats.serving,
            completed=stats.completed,
            void=stats.void,
        )


class NowServingModel(BaseModel):
    ticket_id: int
    department_id: int
    label: str
    lane: Lane
    counter_id: int
    counter_name: str
    repeat_count: int
    called_at: datetime | None = None

    @classmethod
    def from_entity(cls, entry: NowServingEntry) -> "NowServingModel":
        return cls(
            ticket_id=entry.ticket_id,
            department_id=entry.department_id,
            label=entry.label,
            lane=entry.lane,
            counter_id=entry.counter_id,
            counter_name=entry.counter_name,
            repeat_count=entry.repeat_count,
            called_at=entry.called_at,
        )


class TicketCreateRequest(BaseModel):
    department_id: int
    service_id: int | None = None
    priority: str = Field(default="Regular")
    idempotency_key: str | None = Field(default=None, max_length=128)


class CallNextRequest(BaseModel):
    department_id: int
    lane: Lane | None = None
    staff_id: int | None = None


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
