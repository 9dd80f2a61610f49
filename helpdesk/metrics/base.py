"""In-process counters and timing distributions for the helpdesk services.

A metric keeps one series per combination of label values. Label names are
fixed when the metric is registered, and every call must supply exactly
those labels so that a typo in a call site fails loudly instead of opening
a new series.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Dict, Generic, Iterable, Iterator, Mapping, Tuple, TypeVar

LabelValues = Tuple[str, ...]
SeriesT = TypeVar("SeriesT")


class Metric(ABC, Generic[SeriesT]):
    kind = "metric"

    def __init__(self, name: str, *, description: str = "", label_names: Iterable[str] | None = None) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._series: Dict[LabelValues, SeriesT] = {}
        self._lock = Lock()

    def _key(self, labels: Mapping[str, object] | None) -> LabelValues:
        given = dict(labels or {})
        unknown = sorted(set(given) - set(self.label_names))
        if unknown:
            raise ValueError(f"Metric '{self.name}' got unexpected labels {unknown}")
        missing = [name for name in self.label_names if name not in given]
        if missing:
            raise ValueError(f"Metric '{self.name}' is missing labels {missing}")
        return tuple(str(given[name]) for name in self.label_names)

    def _series_for(self, key: LabelValues) -> SeriesT:
        # Callers hold the lock.
        series = self._series.get(key)
        if series is None:
            series = self._series[key] = self._new_series()
        return series

    @abstractmethod
    def _new_series(self) -> SeriesT: ...

    @abstractmethod
    def _render(self, series: SeriesT) -> Mapping[str, float]: ...

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: self._render(series) for key, series in self._series.items()}

    def reset(self) -> None:
        with self._lock:
            self._series.clear()


@dataclass(slots=True)
class _Count:
    value: float = 0.0


class CounterMetric(Metric[_Count]):
    """Monotonic count of events such as denials, deliveries or status changes."""

    kind = "counter"

    def _new_series(self) -> _Count:
        return _Count()

    def _render(self, series: _Count) -> Mapping[str, float]:
        return {"value": series.value}

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, object] | None = None) -> None:
        if amount < 0:
            raise ValueError(f"Counter '{self.name}' cannot be decremented")
        key = self._key(labels)
        with self._lock:
            self._series_for(key).value += amount

    def value(self, *, labels: Mapping[str, object] | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            series = self._series.get(key)
            return series.value if series is not None else 0.0


@dataclass(slots=True)
class _Summary:
    count: int = 0
    total: float = 0.0
    low: float = float("inf")
    high: float = float("-inf")

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = min(self.low, value)
        self.high = max(self.high, value)


class DistributionMetric(Metric[_Summary]):
    """Count, sum and range of observed values, typically durations in seconds."""

    kind = "distribution"

    def _new_series(self) -> _Summary:
        return _Summary()

    def _render(self, series: _Summary) -> Mapping[str, float]:
        if not series.count:
            return {"count": 0.0, "sum": 0.0, "min": 0.0, "max": 0.0, "avg": 0.0}
        return {
            "count": float(series.count),
            "sum": series.total,
            "min": series.low,
            "max": series.high,
            "avg": series.total / series.count,
        }

    def observe(self, value: float, *, labels: Mapping[str, object] | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._series_for(key).add(value)


@contextmanager
def track_duration(metric: DistributionMetric, *, labels: Mapping[str, object] | None = None) -> Iterator[None]:
    """Observe how long the block took, whether it returns or raises."""

    started = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - started, labels=labels)
