"""
Metrics — in-process counters, gauges and histograms for one tier.

Writers run on many threads at once: director request threads,
the probe pool and the control loop. Every metric guards its own
state; the registry lock only covers lookup and creation.

Names in use:
    requests_total{status}          director answers
    route_latency_seconds           time to answer a request
    probes_total{outcome}           health probes
    probe_latency_seconds
    launches_total, launch_failures_total, terminations_total,
    replacements_total              capacity activity
    pool_size, pool_healthy, pool_desired
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Any


class _Metric:
    kind = ""

    def __init__(self, name: str, labels: dict[str, str] | None = None):
        self.name = name
        self.labels = labels or {}
        self._lock = threading.Lock()

    @property
    def series(self) -> str:
        """``name{k="v",...}`` as it appears in the text export."""
        return self.name + _render_labels(self.labels)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.kind, "labels": self.labels, **self._values()}

    def text_lines(self) -> list[str]:
        raise NotImplementedError

    def _values(self) -> dict[str, Any]:
        raise NotImplementedError


class Counter(_Metric):
    kind = "counter"

    def __init__(self, name: str, labels: dict[str, str] | None = None):
        super().__init__(name, labels)
        self._value = 0

    @property
    def value(self) -> int:
        return self._value

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self._value += n

    def text_lines(self) -> list[str]:
        return [f"{self.series} {self._value}"]

    def _values(self) -> dict[str, Any]:
        return {"value": self._value}


class Gauge(_Metric):
    kind = "gauge"

    def __init__(self, name: str, labels: dict[str, str] | None = None):
        super().__init__(name, labels)
        self._value: float = 0

    @property
    def value(self) -> float:
        return self._value

    def set(self, value: float) -> None:
        self._value = value

    def text_lines(self) -> list[str]:
        return [f"{self.series} {self._value}"]

    def _values(self) -> dict[str, Any]:
        return {"value": self._value}


class Histogram(_Metric):
    """Summary over the last ``max_samples`` observations.

    ``count`` covers every observation ever made; the statistics
    only cover the retained window.
    """

    kind = "histogram"

    def __init__(self, name: str, labels: dict[str, str] | None = None, max_samples: int = 1000):
        super().__init__(name, labels)
        self._window: deque[float] = deque(maxlen=max_samples)
        self._count = 0

    def observe(self, value: float) -> None:
        with self._lock:
            self._window.append(value)
            self._count += 1

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean(self) -> float:
        samples = self._samples()
        return sum(samples) / len(samples) if samples else 0.0

    @property
    def min(self) -> float:
        samples = self._samples()
        return samples[0] if samples else 0.0

    @property
    def max(self) -> float:
        samples = self._samples()
        return samples[-1] if samples else 0.0

    @property
    def p95(self) -> float:
        samples = self._samples()
        if not samples:
            return 0.0
        return samples[min(int(len(samples) * 0.95), len(samples) - 1)]

    def text_lines(self) -> list[str]:
        labels = _render_labels(self.labels)
        return [f"{self.name}_count{labels} {self._count}", f"{self.name}_p95{labels} {self.p95}"]

    def _samples(self) -> list[float]:
        with self._lock:
            return sorted(self._window)

    def _values(self) -> dict[str, Any]:
        return {
            "count": self._count,
            "mean": round(self.mean, 3),
            "min": self.min,
            "max": self.max,
            "p95": self.p95,
        }


class MetricsRegistry:
    """All metrics of one tier, keyed by name and labels."""

    def __init__(self) -> None:
        self._metrics: dict[tuple[type[_Metric], str], _Metric] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, **labels: str) -> Counter:
        return self._get(Counter, name, labels)

    def gauge(self, name: str, **labels: str) -> Gauge:
        return self._get(Gauge, name, labels)

    def histogram(self, name: str, **labels: str) -> Histogram:
        return self._get(Histogram, name, labels)

    def inc(self, name: str, n: int = 1, **labels: str) -> None:
        self.counter(name, **labels).inc(n)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        groups: dict[str, list[dict[str, Any]]] = {"counters": [], "gauges": [], "histograms": []}
        for metric in self._all():
            groups[metric.kind + "s"].append(metric.to_dict())
        return groups

    def to_text(self) -> str:
        """One ``series value`` line per sample, sorted."""
        lines = [line for metric in self._all() for line in metric.text_lines()]
        return "\n".join(sorted(lines)) + "\n"

    def _get(self, cls, name: str, labels: dict[str, str]):  # type: ignore[no-untyped-def]
        key = (cls, name + _render_labels(labels))
        with self._lock:
            metric = self._metrics.get(key)
            if metric is None:
                metric = self._metrics[key] = cls(name, labels)
            return metric

    def _all(self) -> list[_Metric]:
        with self._lock:
            return list(self._metrics.values())


def _render_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"
