"""Metric primitives backing the lifecycle registry.

Label values may be plain strings or ``str`` enums (``EntityKind``,
``EventStatus``...); enums are recorded by their value.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Any, Dict, Iterable, Iterator, Mapping, MutableMapping, Tuple

LabelValues = Tuple[str, ...]


def _label_value(value: Any) -> str:
    return str(getattr(value, "value", value))


class Metric(ABC):
    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _label_key(self, labels: Mapping[str, Any] | None) -> LabelValues:
        if not self.label_names:
            if labels:
                raise ValueError(f"Metric '{self.name}' does not accept labels")
            return ()
        labels = labels or {}
        missing = [label for label in self.label_names if label not in labels]
        if missing:
            raise ValueError(f"Metric '{self.name}' is missing labels {missing}")
        return tuple(_label_value(labels[label]) for label in self.label_names)

    @abstractmethod
    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        """Current values keyed by label tuple."""


class CounterMetric(Metric):
    """Monotonic counter, e.g. committed transitions per entity kind."""

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._counts: MutableMapping[LabelValues, float] = defaultdict(float)

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, Any] | None = None) -> None:
        if amount < 0:
            raise ValueError(f"Counter '{self.name}' cannot decrease")
        key = self._label_key(labels)
        with self._lock:
            self._counts[key] += amount

    def value(self, *, labels: Mapping[str, Any] | None = None) -> float:
        key = self._label_key(labels)
        with self._lock:
            return self._counts.get(key, 0.0)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: {"value": count} for key, count in self._counts.items()}


@dataclass
class Summary:
    count: int = 0
    total: float = 0.0
    low: float | None = None
    high: float | None = None

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = value if self.low is None else min(self.low, value)
        self.high = value if self.high is None else max(self.high, value)

    def to_mapping(self) -> Mapping[str, float]:
        return {
            "count": float(self.count),
            "sum": self.total,
            "min": self.low or 0.0,
            "max": self.high or 0.0,
            "avg": self.total / self.count if self.count else 0.0,
        }


class DistributionMetric(Metric):
    """Count/sum/min/max over observed values, e.g. transition latency."""

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._summaries: Dict[LabelValues, Summary] = defaultdict(Summary)

    def observe(self, value: float, *, labels: Mapping[str, Any] | None = None) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._summaries[key].add(value)

    def summary(self, *, labels: Mapping[str, Any] | None = None) -> Mapping[str, float]:
        key = self._label_key(labels)
        with self._lock:
            return self._summaries.get(key, Summary()).to_mapping()

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: summary.to_mapping() for key, summary in self._summaries.items()}


@contextmanager
def track_duration(metric: DistributionMetric, *, labels: Mapping[str, Any] | None = None) -> Iterator[None]:
    """Observe the wall time of the block in seconds, including when it raises."""

    start = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - start, labels=labels)
