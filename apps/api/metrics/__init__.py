"""Application wide metrics utilities."""
from typing import Mapping

from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import CONTENT_TYPE, PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> None:
    """Ensure all default metric definitions exist in the registry."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            target.counter(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        elif definition.metric_type == "distribution":
            target.distribution(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        else:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")


def record_counter(name: str, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
    metrics_registry.counter(name).inc(amount, labels=labels)


register_default_metrics()

__all__ = [
    "CONTENT_TYPE",
    "MetricDefinition",
    "MetricsRegistry",
    "PrometheusExporter",
    "metrics_registry",
    "record_counter",
    "register_default_metrics",
]
