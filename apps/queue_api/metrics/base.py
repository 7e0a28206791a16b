"""Metric primitives backing the queue registry."""
from __future__ import annotations

from abc import ABC, abstractmethod
from bisect import bisect_left
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from time import perf_counter
from typing import Dict, Iterable, Iterator, Mapping, MutableMapping, Sequence, Tuple

LabelValues = Tuple[str, ...]

DEFAULT_LATENCY_BUCKETS: Tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class Metric(ABC):
    kind = "untyped"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _label_key(self, labels: Mapping[str, object] | None) -> LabelValues:
        """Order label values by ``label_names``; ids are stringified."""

        if not self.label_names:
            if labels:
                raise ValueError(f"Metric '{self.name}' does not accept labels")
            return ()
        if labels is None:
            raise ValueError(f"Metric '{self.name}' requires labels {self.label_names}")
        missing = [label for label in self.label_names if label not in labels]
        if missing:
            raise ValueError(f"Missing labels {missing} for metric '{self.name}'")
        return tuple(str(labels[label]) for label in self.label_names)

    @abstractmethod
    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        ...


class CounterMetric(Metric):
    """Monotonic counter, e.g. tickets issued per department lane."""

    kind = "counter"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._values: MutableMapping[LabelValues, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, object] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only be incremented")
        key = self._label_key(labels)
        with self._lock:
            self._values[key] += amount

    def value(self, *, labels: Mapping[str, object] | None = None) -> float:
        key = self._label_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: {"value": value} for key, value in self._values.items()}


@dataclass
class HistogramSeries:
    """Per-bucket observation counts for one label combination."""

    bounds: Tuple[float, ...]
    bucket_counts: list[int] = field(default_factory=list)
    count: int = 0
    total: float = 0.0

    def __post_init__(self) -> None:
        if not self.bucket_counts:
            self.bucket_counts = [0] * len(self.bounds)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        index = bisect_left(self.bounds, value)
        if index < len(self.bounds):
            self.bucket_counts[index] += 1

    def to_mapping(self) -> Mapping[str, float]:
        """Cumulative ``le`` buckets plus ``count`` and ``sum``."""

        mapping: Dict[str, float] = {}
        running = 0
        for bound, hits in zip(self.bounds, self.bucket_counts):
            running += hits
            mapping[f"le:{bound}"] = float(running)
        mapping["le:+Inf"] = float(self.count)
        mapping["count"] = float(self.count)
        mapping["sum"] = self.total
        return mapping


class HistogramMetric(Metric):
    """Bucketed latency histogram such as call-next duration."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
        buckets: Sequence[float] | None = None,
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        bounds = tuple(sorted(buckets or DEFAULT_LATENCY_BUCKETS))
        self.buckets = bounds
        self._series: Dict[LabelValues, HistogramSeries] = {}

    def observe(self, value: float, *, labels: Mapping[str, object] | None = None) -> None:
        key = self._label_key(labels)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = self._series[key] = HistogramSeries(self.buckets)
            series.observe(value)

    def count(self, *, labels: Mapping[str, object] | None = None) -> int:
        key = self._label_key(labels)
        with self._lock:
            series = self._series.get(key)
            return series.count if series is not None else 0

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: series.to_mapping() for key, series in self._series.items()}


@contextmanager
def track_duration(metric: HistogramMetric, *, labels: Mapping[str, object] | None = None) -> Iterator[None]:
    """Record how long the wrapped block took, even when it raises."""

    start = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - start, labels=labels)
