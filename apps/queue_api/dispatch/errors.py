from __future__ import annotations


class QueueError(RuntimeError):
    """Base error for queue ticketing and dispatch failures."""


class InvalidReferenceError(QueueError):
    """Raised when a department, service or counter does not exist or does not match."""


class TicketNotFoundError(InvalidReferenceError):
    """Raised when an operation targets a non-existent ticket."""


class InvalidPriorityError(QueueError):
    """Raised when a submitted priority category is not recognised."""


class IllegalStateError(QueueError):
    """Raised when a ticket is not in the status an operation requires."""


class IllegalTransitionError(IllegalStateError):
    """Raised when a status change is not part of the ticket lifecycle."""


class ConflictingTransitionError(QueueError):
    """Raised when a compare-and-swap status update finds an unexpected current status."""


class ConcurrentModificationError(QueueError):
    """Raised when a concurrent action won the race; the whole operation may be retried."""


class StorageUnavailableError(QueueError):
    """Raised when the backing store cannot complete a transaction."""
