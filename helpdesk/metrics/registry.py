"""Simple in-memory metrics registry."""
from __future__ import annotations

from threading import Lock
from typing import Any, Callable, Dict, Iterable, MutableMapping, Tuple

from .base import CounterMetric, DistributionMetric, Metric


class MetricsRegistry:
    """Registry that holds metric instances and offers helper utilities."""

    def __init__(self) -> None:
        self._metrics: MutableMapping[str, Metric] = {}
        self._lock = Lock()

    def _get_or_create(self, name: str, factory: Callable[[], Metric]) -> Metric:
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = factory()
            return self._metrics[name]

    def counter(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> CounterMetric:
        metric = self._get_or_create(
            name,
            lambda: CounterMetric(name, description=description, label_names=label_names),
        )
        if not isinstance(metric, CounterMetric):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def distribution(
        self,
        name: str,
        *,
        description: str = "",
        label_names: Iterable[str] | None = None,
    ) -> DistributionMetric:
        metric = self._get_or_create(
            name,
            lambda: DistributionMetric(name, description=description, label_names=label_names),
        )
        if not isinstance(metric, DistributionMetric):
            raise TypeError(f"Metric '{name}' already exists with a different type")
        return metric

    def metrics(self) -> Tuple[Metric, ...]:
        with self._lock:
            return tuple(self._metrics.values())

    def reset(self) -> None:
        """Zero every metric while keeping the registrations."""

        for metric in self.metrics():
            metric.reset()

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Return a JSON friendly snapshot of all registered metrics.

        Label tuples are flattened into ``name=value`` strings so the result
        can be returned from an endpoint as-is.
        """

        result: Dict[str, Dict[str, Any]] = {}
        for metric in self.metrics():
            series = {}
            for key, values in metric.snapshot().items():
                label = ",".join(f"{n}={v}" for n, v in zip(metric.label_names, key))
                series[label] = dict(values)
            result[metric.name] = {
                "type": metric.kind,
                "description": metric.description,
                "series": series,
            }
        return result
