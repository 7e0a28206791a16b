from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence

from .errors import IllegalTransitionError


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    WAITING = "waiting"
    SERVING = "serving"
    COMPLETE = "complete"
    VOID = "void"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.COMPLETE, TicketStatus.VOID)


class Lane(str, Enum):
    """Independent FIFO partitions inside a department."""

    REGULAR = "regular"
    PRIORITY = "priority"


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.WAITING: (TicketStatus.SERVING,),
        TicketStatus.SERVING: (TicketStatus.COMPLETE, TicketStatus.VOID),
        TicketStatus.COMPLETE: (),
        TicketStatus.VOID: (),
    }

    def __init__(self, transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.WAITING

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        allowed = self._transitions.get(current, ())
        return target in allowed

    def assert_transition(self, current: TicketStatus, target: TicketStatus) -> None:
        if not self.can_transition(current, target):
            raise IllegalTransitionError(f"Invalid ticket status transition: {current.value} -> {target.value}")
