"""
Monitoring - Counters and timers for the augmentation pipeline

The marker parser reports block counts here and the reconciliation controller
records handler outcomes and generation latency. Nothing in the pipeline reads
these values back; they exist for observability only.

Author: auxmerge contributors | 2026-10-19
"""

import logging
import statistics
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


class MetricsCollector:
    """
    Collects and aggregates metrics.

    Thread-safe collection of counters and timers, keyed by name and an
    optional set of labels.
    """

    def __init__(self, max_samples: int = 1000):
        """
        Initialize metrics collector.

        Args:
            max_samples: Number of timer samples kept per key
        """
        self._counters: Dict[str, float] = defaultdict(float)
        self._timers: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max_samples))
        self._lock = threading.RLock()

    def _make_key(self, name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key from name and labels."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def increment(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None):
        """Increment a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] += value

    def record_time(self, name: str, duration: float, labels: Optional[Dict[str, str]] = None):
        """Record a timer value (seconds)."""
        key = self._make_key(name, labels)
        with self._lock:
            self._timers[key].append(duration)

    @contextmanager
    def timer(self, name: str, labels: Optional[Dict[str, str]] = None) -> Iterator[None]:
        """Time the enclosed block, recording even when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_time(name, time.perf_counter() - start, labels)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Get current counter value."""
        key = self._make_key(name, labels)
        with self._lock:
            return self._counters.get(key, 0.0)

    def get_timer_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get count/min/max/mean/median for a timer."""
        key = self._make_key(name, labels)
        with self._lock:
            values = list(self._timers.get(key, []))

        if not values:
            return {"count": 0}

        return {
            "count": len(values),
            "min": min(values),
            "max": max(values),
            "mean": statistics.mean(values),
            "median": statistics.median(values),
        }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Snapshot of every counter and timer."""
        with self._lock:
            timer_keys = list(self._timers.keys())
            counters = dict(self._counters)
        return {
            "counters": counters,
            "timers": {k: self.get_timer_stats(k) for k in timer_keys},
        }

    def reset(self):
        """Reset all metrics."""
        with self._lock:
            self._counters.clear()
            self._timers.clear()


_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
