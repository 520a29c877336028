"""
Metrics Collector

Counts signing, submission and basket events: actions signed, submissions
accepted/failed, baskets created/triggered/cancelled.
"""

import threading
from typing import Dict, List

from basket_engine.core.config import Config


class MetricsCollector:
    """Collects counters and sampled values for the engine."""

    def __init__(self, config: Config):
        self.config = config
        self.enabled = config.monitoring.metrics_enabled
        self.counters: Dict[str, int] = {}
        self.samples: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def incr(self, name: str, n: int = 1):
        if not self.enabled:
            return
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + n

    def record(self, name: str, value: float):
        if not self.enabled:
            return
        with self._lock:
            self.samples.setdefault(name, []).append(value)

    def snapshot(self) -> dict:
        with self._lock:
            return {"counters": dict(self.counters), "samples": {k: list(v) for k, v in self.samples.items()}}
