import pytest

from apps.queue_api.metrics import (
    HistogramMetric,
    MetricsRegistry,
    PrometheusExporter,
    register_default_metrics,
    track_duration,
)
from apps.queue_api.metrics.definitions import CALL_NEXT_DURATION, TICKETS_ISSUED


def test_default_metrics_are_registered():
    registry = register_default_metrics(MetricsRegistry())

    kinds = {metric.name: metric.kind for metric in registry.metrics()}

    assert kinds[TICKETS_ISSUED] == "counter"
    assert kinds[CALL_NEXT_DURATION] == "histogram"


def test_counter_requires_declared_labels():
    registry = register_default_metrics(MetricsRegistry())
    counter = registry.counter(TICKETS_ISSUED)

    counter.inc(labels={"department": 1, "lane": "regular"})
    counter.inc(2, labels={"department": 1, "lane": "regular"})

    assert counter.value(labels={"department": "1", "lane": "regular"}) == 3
    with pytest.raises(ValueError):
        counter.inc(labels={"department": 1})
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"department": 1, "lane": "regular"})


def test_registry_rejects_type_mismatch():
    registry = MetricsRegistry()
    registry.counter("queue_test_total")

    with pytest.raises(TypeError):
        registry.histogram("queue_test_total")


def test_histogram_buckets_are_cumulative():
    histogram = HistogramMetric("queue_test_seconds", buckets=(0.1, 1.0))

    for value in (0.05, 0.5, 0.7, 3.0):
        histogram.observe(value)

    series = histogram.snapshot()[()]
    assert series["le:0.1"] == 1
    assert series["le:1.0"] == 3
    assert series["le:+Inf"] == 4
    assert series["sum"] == pytest.approx(4.25)
    assert histogram.count() == 4


def test_prometheus_payload_renders_counters_and_histograms():
    registry = register_default_metrics(MetricsRegistry())
    registry.counter(TICKETS_ISSUED).inc(labels={"department": 2, "lane": "priority"})
    with track_duration(registry.histogram(CALL_NEXT_DURATION)):
        pass

    payload = PrometheusExporter(registry).build_payload()

    assert f"# TYPE {TICKETS_ISSUED} counter" in payload
    assert f'{TICKETS_ISSUED}{{department="2",lane="priority"}} 1.0' in payload
    assert f'{CALL_NEXT_DURATION}_bucket{{le="+Inf"}} 1.0' in payload
    assert f"{CALL_NEXT_DURATION}_count 1.0" in payload
