"""In-memory registry of named queue metrics."""
from __future__ import annotations

from threading import Lock
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Sequence, Tuple, TypeVar

from .base import CounterMetric, HistogramMetric, Metric

_M = TypeVar("_M", bound=Metric)


class MetricsRegistry:
    """Create-once lookup of metrics by name."""

    def __init__(self) -> None:
        self._metrics: MutableMapping[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, metric_type: type[_M], factory: Callable[[], _M]) -> _M:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = factory()
                self._metrics[name] = metric
        if not isinstance(metric, metric_type):
            raise TypeError(f"Metric '{name}' already exists as a {metric.kind}")
        return metric

    def counter(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> CounterMetric:
        return self._get_or_create(
            name,
            CounterMetric,
            lambda: CounterMetric(name, description=description, label_names=label_names),
        )

    def histogram(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
        buckets: Sequence[float] | None = None,
    ) -> HistogramMetric:
        return self._get_or_create(
            name,
            HistogramMetric,
            lambda: HistogramMetric(name, description=description, label_names=label_names, buckets=buckets),
        )

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())

    def snapshot(self) -> Dict[str, Mapping[Tuple[str, ...], Mapping[str, float]]]:
        with self._lock:
            return {name: metric.snapshot() for name, metric in self._metrics.items()}
