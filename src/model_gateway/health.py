"""Per-model health profiling.

Each model keeps a bounded FIFO window of recent call outcomes. The health
score is derived from that window only, never from lifetime totals, so a
model that degraded recovers as soon as enough recent successes push the
failures out.

Usage:
    >>> profiler = HealthProfiler(window_size=50)
    >>> profiler.record("gpt-4o", HealthSample(model_id="gpt-4o", success=True, latency_ms=420))
    >>> profiler.health_score("gpt-4o")
    100.0
    >>> profiler.is_healthy("gpt-4o", threshold=40)
    True
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 50
DEFAULT_HEALTH_THRESHOLD = 40.0
# Score given to models with no samples so they can be tried at all
OPTIMISTIC_SCORE = 100.0


@dataclass
class HealthSample:
    """One call outcome."""

    model_id: str
    success: bool
    latency_ms: float = 0.0
    cost: float = 0.0
    timestamp: float = field(default_factory=time.time)


class HealthProfiler:
    """Thread-safe rolling-window health tracker shared by all gateway calls.

    Args:
        window_size: Samples retained per model (oldest evicted first)
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.window_size = window_size
        self._windows: Dict[str, Deque[HealthSample]] = {}
        self._lock = threading.Lock()

    def record(self, model_id: str, sample: HealthSample) -> None:
        """Append a sample to the model's window."""
        with self._lock:
            window = self._windows.get(model_id)
            if window is None:
                window = deque(maxlen=self.window_size)
                self._windows[model_id] = window
            window.append(sample)

    def _samples(self, model_id: str) -> List[HealthSample]:
        with self._lock:
            return list(self._windows.get(model_id, ()))

    def health_score(self, model_id: str) -> float:
        """Return the 0-100 health score for a model.

        Recency-weighted success ratio: the i-th oldest sample in the window
        has weight i + 1, so recent outcomes dominate.
        """
        samples = self._samples(model_id)
        if not samples:
            return OPTIMISTIC_SCORE

        total_weight = 0.0
        success_weight = 0.0
        for i, sample in enumerate(samples):
            weight = float(i + 1)
            total_weight += weight
            if sample.success:
                success_weight += weight

        return round(100.0 * success_weight / total_weight, 2)

    def is_healthy(self, model_id: str, threshold: float = DEFAULT_HEALTH_THRESHOLD) -> bool:
        return self.health_score(model_id) >= threshold

    def get_stats(self, model_id: str) -> Dict[str, Any]:
        """Return window statistics for one model."""
        samples = self._samples(model_id)
        count = len(samples)
        successes = sum(1 for s in samples if s.success)
        return {
            "model_id": model_id,
            "sample_count": count,
            "success_rate": successes / count if count else 1.0,
            "avg_latency_ms": sum(s.latency_ms for s in samples) / count if count else 0.0,
            "window_cost": sum(s.cost for s in samples),
            "health_score": self.health_score(model_id),
        }

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Return stats for every model that has samples."""
        with self._lock:
            model_ids = list(self._windows)
        return {model_id: self.get_stats(model_id) for model_id in model_ids}

    def reset(self, model_id: Optional[str] = None) -> None:
        """Forget samples for one model, or for all models."""
        with self._lock:
            if model_id is None:
                self._windows.clear()
            else:
                self._windows.pop(model_id, None)
