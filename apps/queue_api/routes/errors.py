"""Translation of queue domain errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from apps.queue_api.dispatch import (
    ConcurrentModificationError,
    ConflictingTransitionError,
    IllegalStateError,
    InvalidPriorityError,
    InvalidReferenceError,
    QueueError,
    StorageUnavailableError,
    TicketNotFoundError,
)

logger = logging.getLogger(__name__)

# order matters: subclasses before their bases
_STATUS_BY_ERROR: tuple[tuple[type[QueueError], int], ...] = (
    (TicketNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidReferenceError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidPriorityError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (IllegalStateError, status.HTTP_409_CONFLICT),
    (ConcurrentModificationError, status.HTTP_409_CONFLICT),
    (ConflictingTransitionError, status.HTTP_409_CONFLICT),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_error(exc: QueueError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.error("Queue storage unavailable: %s", exc)
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.exception("Unmapped queue error", exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
