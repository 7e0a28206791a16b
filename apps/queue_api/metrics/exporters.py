"""Prometheus text rendering of the metrics registry."""
from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .base import Metric
from .registry import MetricsRegistry

logger = logging.getLogger(__name__)


def _label_text(names: Sequence[str], values: Sequence[str], extra: Mapping[str, str] | None = None) -> str:
    pairs = [f'{name}="{value}"' for name, value in zip(names, values)]
    pairs.extend(f'{name}="{value}"' for name, value in (extra or {}).items())
    return "{" + ",".join(pairs) + "}" if pairs else ""


class PrometheusExporter:
    """Render the registry in the Prometheus text exposition format."""

    content_type = "text/plain; version=0.0.4; charset=utf-8"

    def __init__(self, registry: MetricsRegistry) -> None:
        self.registry = registry

    def build_payload(self) -> str:
        lines: list[str] = []
        for metric in self.registry.metrics():
            lines.append(f"# HELP {metric.name} {metric.description}")
            lines.append(f"# TYPE {metric.name} {metric.kind}")
            lines.extend(self._series_lines(metric))
        logger.debug("Rendered %d metric lines", len(lines))
        return "\n".join(lines) + "\n"

    @staticmethod
    def _series_lines(metric: Metric) -> list[str]:
        lines: list[str] = []
        for labels, values in metric.snapshot().items():
            if "value" in values:
                lines.append(f"{metric.name}{_label_text(metric.label_names, labels)} {values['value']}")
                continue
            for key, observed in values.items():
                if key.startswith("le:"):
                    bucket = _label_text(metric.label_names, labels, {"le": key[3:]})
                    lines.append(f"{metric.name}_bucket{bucket} {observed}")
            plain = _label_text(metric.label_names, labels)
            lines.append(f"{metric.name}_count{plain} {values['count']}")
            lines.append(f"{metric.name}_sum{plain} {values['sum']}")
        return lines
