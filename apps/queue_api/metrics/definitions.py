"""Metric definitions used across the queue service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

TICKETS_ISSUED = "queue_tickets_issued_total"
TICKETS_CALLED = "queue_tickets_called_total"
CALL_NEXT_EMPTY = "queue_call_next_empty_total"
CALL_NEXT_DURATION = "queue_call_next_duration_seconds"
CONCURRENT_CONFLICTS = "queue_concurrent_conflicts_total"
REPEAT_CALLS = "queue_repeat_calls_total"
TICKETS_FINISHED = "queue_tickets_finished_total"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKETS_ISSUED,
        metric_type="counter",
        description="Tickets issued per department and lane.",
        label_names=("department", "lane"),
    ),
    MetricDefinition(
        name=TICKETS_CALLED,
        metric_type="counter",
        description="Tickets moved to serving by call-next.",
        label_names=("department", "lane"),
    ),
    MetricDefinition(
        name=CALL_NEXT_EMPTY,
        metric_type="counter",
        description="Call-next requests that found no waiting ticket.",
        label_names=("department",),
    ),
    MetricDefinition(
        name=CALL_NEXT_DURATION,
        metric_type="histogram",
        description="Duration of call-next transactions in seconds.",
    ),
    MetricDefinition(
        name=CONCURRENT_CONFLICTS,
        metric_type="counter",
        description="Compare-and-swap updates lost to a concurrent action.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=REPEAT_CALLS,
        metric_type="counter",
        description="Re-announcements of serving tickets.",
    ),
    MetricDefinition(
        name=TICKETS_FINISHED,
        metric_type="counter",
        description="Tickets reaching a terminal status, by status and reason.",
        label_names=("status", "reason"),
    ),
)
