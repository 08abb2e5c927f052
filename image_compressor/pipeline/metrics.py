"""Lightweight in-process metrics for the pipeline.

Components record counters, timings and gauges here; tests read them back
through ``snapshot()``.

Usage:
    from image_compressor.pipeline.metrics import metrics
    metrics.inc("scheduler.jobs_admitted")
    metrics.gauge("scheduler.in_flight", len(in_flight))
    with metrics.timed("scheduler.job_duration"):
        ...
"""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import contextmanager
from threading import RLock
from typing import Any


class _Metrics:
    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._timings: dict[str, list[float]] = defaultdict(list)
        self._gauges: dict[str, int] = {}
        self._peaks: dict[str, int] = {}
        self._lock = RLock()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += int(amount)

    def gauge(self, key: str, value: int) -> None:
        """Set the current value of `key` and keep its high-water mark."""
        v = int(value)
        with self._lock:
            self._gauges[key] = v
            if v > self._peaks.get(key, v - 1):
                self._peaks[key] = v

    def peak(self, key: str) -> int:
        with self._lock:
            return self._peaks.get(key, 0)

    @contextmanager
    def timed(self, key: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self._timings[key].append(elapsed)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings": {k: list(v) for k, v in self._timings.items()},
                "gauges": dict(self._gauges),
                "peaks": dict(self._peaks),
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()
            self._gauges.clear()
            self._peaks.clear()


metrics = _Metrics()
