"""Database models and utilities."""

from .models import (
    CounterTable,
    DepartmentSequenceTable,
    DepartmentTable,
    OutboxSequenceTable,
    ServiceTable,
    TicketEventTable,
    TicketTable,
)

__all__ = [
    "CounterTable",
    "DepartmentSequenceTable",
    "DepartmentTable",
    "OutboxSequenceTable",
    "ServiceTable",
    "TicketEventTable",
    "TicketTable",
]
