"""In-process counters and latency histograms for exchange fetches."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Mapping, MutableMapping, Tuple

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class MetricRegistry:
    """A minimal Prometheus-style collector."""

    counters: MutableMapping[MetricKey, float] = field(default_factory=lambda: defaultdict(float))
    histograms: MutableMapping[MetricKey, list] = field(default_factory=lambda: defaultdict(list))
    max_samples: int = 500

    def inc(self, name: str, *, labels: Mapping[str, str] | None = None, amount: float = 1.0) -> None:
        self.counters[self._key(name, labels)] += amount

    def observe(self, name: str, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        samples = self.histograms[self._key(name, labels)]
        samples.append(value)
        if len(samples) > self.max_samples:
            del samples[: len(samples) - self.max_samples]

    def counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        return self.counters.get(self._key(name, labels), 0.0)

    def samples(self, name: str, *, labels: Mapping[str, str] | None = None) -> list:
        return list(self.histograms.get(self._key(name, labels), []))

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Return counters and mean latencies keyed by ``name{label=value,...}``."""

        counters = {self._render(key): value for key, value in self.counters.items()}
        means = {
            self._render(key): sum(values) / len(values)
            for key, values in self.histograms.items()
            if values
        }
        return {"counters": counters, "mean": means}

    @staticmethod
    def _key(name: str, labels: Mapping[str, str] | None) -> MetricKey:
        return name, tuple(sorted((labels or {}).items()))

    @staticmethod
    def _render(key: MetricKey) -> str:
        name, labels = key
        if not labels:
            return name
        rendered = ",".join(f"{label}={value}" for label, value in labels)
        return f"{name}{{{rendered}}}"


class Timer:
    """Context manager recording elapsed wall time into a histogram."""

    def __init__(self, registry: MetricRegistry, name: str, *, labels: Mapping[str, str] | None = None) -> None:
        self._registry = registry
        self._name = name
        self._labels = labels
        self._start: float | None = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._start is None:
            return
        self._registry.observe(self._name, time.perf_counter() - self._start, labels=self._labels)
