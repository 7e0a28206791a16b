from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .state import Lane, TicketStatus


class TicketAction(str, Enum):
    """Kinds of ticket changes announced to display consumers."""

    CREATED = "created"
    CALLED = "called"
    REPEATED = "repeated"
    COMPLETED = "completed"
    VOIDED = "voided"


@dataclass(slots=True, frozen=True)
class Department:
    """Reference data owned by the administration module."""

    id: int
    name: str
    prefix: str


@dataclass(slots=True, frozen=True)
class Service:
    id: int
    department_id: int
    name: str


@dataclass(slots=True, frozen=True)
class Counter:
    id: int
    department_id: int
    name: str


@dataclass(slots=True)
class Ticket:
    """Aggregate representing one citizen's place in a department queue."""

    id: int
    department_id: int
    service_id: int | None
    number: int
    lane: Lane
    priority: str
    status: TicketStatus
    counter_id: int | None
    staff_id: int | None
    repeat_count: int
    idempotency_key: str | None
    created_at: datetime
    updated_at: datetime
    called_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(slots=True)
class LabelledTicket:
    """Ticket paired with its display label, e.g. ``ENG-007``."""

    ticket: Ticket
    label: str


@dataclass(slots=True)
class RepeatCallResult:
    """Outcome of re-announcing a serving ticket."""

    ticket: Ticket
    label: str
    auto_voided: bool


@dataclass(slots=True)
class TicketEvent:
    """State change record emitted for displays and audio announcers."""

    id: int
    ticket_id: int
    department_id: int
    lane: Lane
    label: str
    action: TicketAction
    old_status: TicketStatus | None
    new_status: TicketStatus
    counter_id: int | None
    repeat_count: int
    actor: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class CounterStats:
    """Dashboard figures for one counter within its department."""

    department_id: int
    counter_id: int | None
    waiting: int
    serving: int
    completed: int
    void: int


@dataclass(slots=True, frozen=True)
class NowServingEntry:
    """Row of the public "now serving" board."""

    ticket_id: int
    department_id: int
    label: str
    lane: Lane
    counter_id: int
    counter_name: str
    repeat_count: int
    called_at: datetime | None


def format_label(prefix: str, number: int, width: int = 3) -> str:
    """Render ``prefix-number`` with the number zero padded to ``width`` digits."""

    digits = str(number).zfill(width) if width > 0 else str(number)
    return f"{prefix}-{digits}" if prefix else digits
