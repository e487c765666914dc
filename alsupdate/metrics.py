"""Metrics service for tracking model-update performance.

Singleton service to track build, evaluation and publish calls and their
latency.
"""

import threading
from typing import Dict, Optional


class _Timing:
    """Count and latency statistics of one kind of call."""

    def __init__(self):
        self.count = 0
        self.total_ms = 0.0
        self.min_ms = float('inf')
        self.max_ms = 0.0

    def record(self, latency_ms: float) -> None:
        self.count += 1
        self.total_ms += latency_ms
        self.min_ms = min(self.min_ms, latency_ms)
        self.max_ms = max(self.max_ms, latency_ms)

    def as_dict(self) -> Dict[str, float]:
        average = self.total_ms / self.count if self.count > 0 else 0.0
        return {
            "count": self.count,
            "average_latency_ms": round(average, 2),
            "min_latency_ms": round(self.min_ms, 2) if self.min_ms != float('inf') else 0.0,
            "max_latency_ms": round(self.max_ms, 2),
        }


class MetricsService:
    """Singleton service for tracking pipeline metrics.

    Thread-safe counters and latency tracking for model builds, evaluations
    and publish passes.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        """Create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize metrics counters."""
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._builds = _Timing()
        self._evaluations = _Timing()
        self._publishes = _Timing()
        self._failed_builds = 0
        self._records_published = 0
        self._last_evaluation: Optional[float] = None

    def record_build(self, latency_ms: float) -> None:
        """Record a completed model build with its latency."""
        with self._lock:
            self._builds.record(latency_ms)

    def record_failed_build(self) -> None:
        """Record a candidate whose build was rejected or failed."""
        with self._lock:
            self._failed_builds += 1

    def record_evaluation(self, latency_ms: float, score: float) -> None:
        """Record a model evaluation with its latency and score."""
        with self._lock:
            self._evaluations.record(latency_ms)
            self._last_evaluation = score

    def record_publish(self, latency_ms: float, num_records: int) -> None:
        """Record a publish pass with its latency and number of records sent."""
        with self._lock:
            self._publishes.record(latency_ms)
            self._records_published += num_records

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with metrics including:
            - builds / evaluations / publishes: count and latency statistics
            - failed_builds: Candidates rejected before producing a model
            - records_published: Total update records sent
            - last_evaluation: Most recent evaluation score, if any
        """
        with self._lock:
            last = self._last_evaluation
            return {
                "builds": self._builds.as_dict(),
                "evaluations": self._evaluations.as_dict(),
                "publishes": self._publishes.as_dict(),
                "failed_builds": self._failed_builds,
                "records_published": self._records_published,
                # -inf is not valid JSON
                "last_evaluation": last if last is None or abs(last) != float('inf') else None,
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
