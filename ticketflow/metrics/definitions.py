"""Metric definitions registered at import time."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


TRANSITIONS_TOTAL = "lifecycle_transitions_total"
TRANSITION_FAILURES_TOTAL = "lifecycle_transition_failures_total"
TRANSITION_RETRIES_TOTAL = "lifecycle_transition_retries_total"
TRANSITION_DURATION_SECONDS = "lifecycle_transition_duration_seconds"
SECONDARY_WRITE_FAILURES_TOTAL = "lifecycle_secondary_write_failures_total"
NOTIFICATION_FAILURES_TOTAL = "lifecycle_notification_failures_total"
SETTLEMENT_VERIFICATIONS_TOTAL = "settlement_verifications_total"


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TRANSITIONS_TOTAL,
        metric_type="counter",
        description="Committed lifecycle transitions.",
        label_names=("entity_kind", "event_type"),
    ),
    MetricDefinition(
        name=TRANSITION_FAILURES_TOTAL,
        metric_type="counter",
        description="Rejected or failed lifecycle transitions by error code.",
        label_names=("entity_kind", "code"),
    ),
    MetricDefinition(
        name=TRANSITION_RETRIES_TOTAL,
        metric_type="counter",
        description="Conditional updates that lost a race and were retried.",
        label_names=("entity_kind",),
    ),
    MetricDefinition(
        name=TRANSITION_DURATION_SECONDS,
        metric_type="distribution",
        description="End-to-end duration of a transition request in seconds.",
        label_names=("entity_kind",),
    ),
    MetricDefinition(
        name=SECONDARY_WRITE_FAILURES_TOTAL,
        metric_type="counter",
        description="Mirror writes that failed after the authoritative commit.",
        label_names=("entity_kind",),
    ),
    MetricDefinition(
        name=NOTIFICATION_FAILURES_TOTAL,
        metric_type="counter",
        description="Notifier deliveries that raised.",
    ),
    MetricDefinition(
        name=SETTLEMENT_VERIFICATIONS_TOTAL,
        metric_type="counter",
        description="On-chain settlement verification attempts by outcome.",
        label_names=("network", "outcome"),
    ),
)
