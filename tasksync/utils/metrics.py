"""
Metrics Collection for the sync engine.

Counts sync outcomes and accumulates time spent reconciling.
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict


class MetricsCollector:
    """Collects and manages metrics for sync requests."""

    COUNTERS = (
        "sync_requests_total",
        "sync_creates_total",
        "sync_overwrites_total",
        "sync_conflicts_total",
        "sync_noops_total",
        "sync_errors_total",
    )

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        for name in self.COUNTERS:
            self.metrics[name] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric."""
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        """Record a timing metric."""
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

    def reset(self):
        with self.lock:
            self.metrics.clear()
            self.timers.clear()
            for name in self.COUNTERS:
                self.metrics[name] = 0

    def sync_outcome(self, decision: str):
        """Record the outcome of one reconciled client task."""
        self.increment_counter(f"sync_{decision}s_total")

    @contextmanager
    def time_operation(self, metric_name: str):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self.record_timer(metric_name, time.perf_counter() - start_time)


# Global metrics instance
metrics_collector = MetricsCollector()
