# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Metrics — In-memory counters for bootstrap observability.

Counter names used by the kernel:
  resolution:{state}           one per finished bootstrap
  resolver:retry:{kind}        profile re-reads by outcome kind
  {manager}:retry              waits taken by each RetryManager
  healer:attempts / healer:healed / healer:failed
  healer:tenant_created / healer:tenant_reused
  migrator:migrated / migrator:partial / migrator:resumed / migrator:denied
  reconcile:merged / reconcile:failed
  rekey:rows                   rows moved by re-key passes
  fallback:built
  signup:registered

Gauges:
  inflight:runs                operations currently held by the in-flight registry
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Any, Deque, Dict

HISTOGRAM_WINDOW = 1000


class Metrics:
    """In-memory counters, gauges and windowed histograms."""

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=HISTOGRAM_WINDOW)
        )
        self._start_time = time.time()

    # ── Counters ────────────────────────────────────────────────

    def inc(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    # ── Gauges ──────────────────────────────────────────────────

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    # ── Histograms ──────────────────────────────────────────────

    def observe(self, name: str, value: float) -> None:
        """Record one observation; only the last HISTOGRAM_WINDOW are kept."""
        self._histograms[name].append(value)

    @staticmethod
    def _summarize(values: Deque[float]) -> Dict[str, Any]:
        ordered = sorted(values)
        p95 = ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]
        return {
            "count": len(ordered),
            "avg": round(sum(ordered) / len(ordered), 2),
            "min": round(ordered[0], 2),
            "max": round(ordered[-1], 2),
            "p95": round(p95, 2),
        }

    # ── Export ──────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        result = {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }
        for name, values in self._histograms.items():
            if values:
                result[f"histogram_{name}"] = self._summarize(values)
        return result

    def reset(self) -> None:
        """Drop every recorded value (test isolation)."""
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()


bootstrap_metrics = Metrics()
