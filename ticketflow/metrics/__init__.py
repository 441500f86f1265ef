"""In-process metrics for transitions, retries, side channels and settlement."""
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Create every lifecycle metric up front so ``/metrics`` lists them before first use."""

    target = registry or metrics_registry
    factories = {"counter": target.counter, "distribution": target.distribution}
    for definition in DEFAULT_METRIC_DEFINITIONS:
        factory = factories.get(definition.metric_type)
        if factory is None:  # pragma: no cover
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
        factory(definition.name, description=definition.description, label_names=definition.label_names)
    return target


register_default_metrics()

__all__ = [
    "MetricDefinition",
    "MetricsRegistry",
    "PrometheusExporter",
    "metrics_registry",
    "register_default_metrics",
]
