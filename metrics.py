"""
In-process diagnostics for a migration run.

Counts HTTP calls per Heartcore operation and status, poster fetch results,
publish results and fallbacks, and keeps latency samples per operation.
Run outcome counters (created/updated/skipped/failed) are not kept here;
they live in pipeline.RunCounters, owned by the caller of the pipeline.

Printed at the end of a run with --verbose.
"""

import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

LabelSet = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, LabelSet]

# Latency samples kept per series for percentiles
SAMPLE_WINDOW = 2048


@dataclass
class MetricCounter:
    """Thread-safe integer counter."""
    _value: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def increment(self, amount: int = 1) -> None:
        with self._lock:
            self._value += amount

    def reset(self) -> None:
        with self._lock:
            self._value = 0


@dataclass
class LatencySeries:
    """
    Duration observations in milliseconds.

    Count and extremes cover every observation; percentiles use the most
    recent SAMPLE_WINDOW samples.
    """
    _count: int = 0
    _total: float = 0.0
    _max: float = 0.0
    _samples: Deque[float] = field(default_factory=lambda: deque(maxlen=SAMPLE_WINDOW))
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._total += value
            self._max = max(self._max, value)
            self._samples.append(value)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @staticmethod
    def _percentile(ordered: List[float], pct: float) -> float:
        if not ordered:
            return 0.0
        index = min(len(ordered) - 1, int(round(pct / 100.0 * (len(ordered) - 1))))
        return ordered[index]

    def stats(self) -> Dict[str, float]:
        with self._lock:
            ordered = sorted(self._samples)
            return {
                "count": self._count,
                "avg": round(self._total / self._count, 1) if self._count else 0.0,
                "p50": round(self._percentile(ordered, 50), 1),
                "p95": round(self._percentile(ordered, 95), 1),
                "max": round(self._max, 1),
            }

    def reset(self) -> None:
        with self._lock:
            self._count = 0
            self._total = 0.0
            self._max = 0.0
            self._samples.clear()


def _series_key(name: str, labels: Optional[Dict[str, str]]) -> SeriesKey:
    return name, tuple(sorted((k, str(v)) for k, v in (labels or {}).items()))


def _render(key: SeriesKey) -> str:
    name, labels = key
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


class Metrics:
    """
    Process-wide registry of counters and latency series.

    Usage:
        metrics.inc("heartcore_requests", labels={"op": "create", "status": "201"})

        with metrics.timer("heartcore_request_duration_ms", labels={"op": "create"}):
            response = session.post(...)

        for line in metrics.summary_lines():
            print(line)
    """

    _instance: Optional["Metrics"] = None
    _instance_lock = threading.Lock()

    def __new__(cls):
        with cls._instance_lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._lock = threading.Lock()
                instance._counters = {}
                instance._latencies = {}
                cls._instance = instance
        return cls._instance

    def _counter(self, key: SeriesKey) -> MetricCounter:
        with self._lock:
            counter = self._counters.get(key)
            if counter is None:
                counter = self._counters[key] = MetricCounter()
            return counter

    def _latency(self, key: SeriesKey) -> LatencySeries:
        with self._lock:
            series = self._latencies.get(key)
            if series is None:
                series = self._latencies[key] = LatencySeries()
            return series

    def inc(self, name: str, amount: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        """Add amount to the counter name{labels}."""
        self._counter(_series_key(name, labels)).increment(amount)

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        self._latency(_series_key(name, labels)).observe(value)

    @contextmanager
    def timer(self, name: str, labels: Optional[Dict[str, str]] = None):
        """Observe the wall time of the block in milliseconds, even if it raises."""
        start = time.monotonic()
        try:
            yield
        finally:
            self.observe(name, (time.monotonic() - start) * 1000, labels)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        return self._counter(_series_key(name, labels)).value

    def get_stats(self) -> Dict[str, Dict]:
        """
        Snapshot of every series.

        Returns:
            {"counters": {"name{k=v}": int}, "latencies": {"name{k=v}": stats}}
        """
        with self._lock:
            counters = dict(self._counters)
            latencies = dict(self._latencies)
        return {
            "counters": {_render(k): c.value for k, c in sorted(counters.items())},
            "latencies": {_render(k): s.stats() for k, s in sorted(latencies.items())},
        }

    def summary_lines(self) -> List[str]:
        """Printable lines, counters first, zero counters omitted."""
        stats = self.get_stats()
        lines = [f"{name} = {value}" for name, value in stats["counters"].items() if value]
        for name, s in stats["latencies"].items():
            if s["count"]:
                lines.append(
                    f"{name}: n={s['count']} avg={s['avg']}ms "
                    f"p50={s['p50']}ms p95={s['p95']}ms max={s['max']}ms"
                )
        return lines

    def reset(self) -> None:
        """Zero every series, keeping registrations."""
        with self._lock:
            series = list(self._counters.values()) + list(self._latencies.values())
        for item in series:
            item.reset()


metrics = Metrics()
