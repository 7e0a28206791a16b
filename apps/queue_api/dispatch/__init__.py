"""Queue ticketing and dispatch domain."""

from .dispatcher import Dispatcher
from .errors import (
    ConcurrentModificationError,
    ConflictingTransitionError,
    IllegalStateError,
    IllegalTransitionError,
    InvalidPriorityError,
    InvalidReferenceError,
    QueueError,
    StorageUnavailableError,
    TicketNotFoundError,
)
from .events import TicketEventBroker, TicketEventPublisher
from .lanes import LaneClassifier, PriorityCategory
from .models import (
    CounterStats,
    LabelledTicket,
    NowServingEntry,
    RepeatCallResult,
    Ticket,
    TicketAction,
    TicketEvent,
    format_label,
)
from .repeat import RepeatVoidController
from .sequencer import DepartmentSequencer, OutboxSequencer
from .service import QueueService
from .state import Lane, TicketStateMachine, TicketStatus
from .store import TicketStore, UnitOfWork

__all__ = [
    "ConcurrentModificationError",
    "ConflictingTransitionError",
    "CounterStats",
    "DepartmentSequencer",
    "Dispatcher",
    "IllegalStateError",
    "IllegalTransitionError",
    "InvalidPriorityError",
    "InvalidReferenceError",
    "LabelledTicket",
    "Lane",
    "LaneClassifier",
    "NowServingEntry",
    "OutboxSequencer",
    "PriorityCategory",
    "QueueError",
    "QueueService",
    "RepeatCallResult",
    "RepeatVoidController",
    "StorageUnavailableError",
    "Ticket",
    "TicketAction",
    "TicketEvent",
    "TicketEventBroker",
    "TicketEventPublisher",
    "TicketNotFoundError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketStore",
    "UnitOfWork",
    "format_label",
]
