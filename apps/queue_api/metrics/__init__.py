"""Queue service metrics."""
from .base import CounterMetric, HistogramMetric, track_duration
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Declare every queue metric, with its labels, on ``registry`` (the global one by default)."""

    target = registry if registry is not None else metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            target.counter(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        elif definition.metric_type == "histogram":
            target.histogram(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        else:  # pragma: no cover
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
    return target


register_default_metrics()

__all__ = [
    "CounterMetric",
    "HistogramMetric",
    "MetricDefinition",
    "MetricsRegistry",
    "PrometheusExporter",
    "metrics_registry",
    "register_default_metrics",
    "track_duration",
]
