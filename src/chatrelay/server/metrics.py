from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Deque, Optional


@dataclass
class RelaySample:
    ts: float
    deployment: str
    outcome: str
    chunks: int
    duration_ms: float
    ttfc_ms: Optional[float] = None


class MetricsAggregator:
    def __init__(self, capacity: int = 500):
        self.capacity = capacity
        self.samples: Deque[RelaySample] = deque(maxlen=capacity)
        self.start_ts = time.time()
        self.outcomes: Counter = Counter()
        self.total_requests = 0

    def add(self, sample: RelaySample):
        self.samples.append(sample)
        self.outcomes[sample.outcome] += 1
        self.total_requests += 1

    def summary(self) -> dict:
        base = {
            "uptime_seconds": time.time() - self.start_ts,
            "total_requests": self.total_requests,
            "outcomes": dict(self.outcomes),
        }
        if not self.samples:
            base["rolling"] = {"count": 0}
            return base
        ttfcs = sorted(s.ttfc_ms for s in self.samples if s.ttfc_ms is not None)
        p95 = ttfcs[int(0.95 * (len(ttfcs) - 1))] if ttfcs else None
        base["rolling"] = {
            "count": len(self.samples),
            "avg_ttfc_ms": (sum(ttfcs) / len(ttfcs)) if ttfcs else None,
            "p95_ttfc_ms": p95,
            "avg_chunks": sum(s.chunks for s in self.samples) / len(self.samples),
            "avg_duration_ms": sum(s.duration_ms for s in self.samples)
            / len(self.samples),
        }
        return base
