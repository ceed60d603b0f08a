"""Thread-safe event collector for relay observability."""

from __future__ import annotations

import statistics
import threading
import time
from collections import deque
from datetime import datetime, timezone


class ProxyMetrics:
    """Collects structured events from the relay pipeline.

    Events live in a bounded deque; nothing is persisted.
    """

    def __init__(self, max_events: int = 1000) -> None:
        self.start_time: float = time.time()
        self._events: deque[dict] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record(self, event: dict) -> None:
        """Append an event (thread-safe). Adds ``ts`` when missing."""
        with self._lock:
            event = dict(event)  # shallow copy to avoid caller mutation
            if "ts" not in event:
                event["ts"] = datetime.now(timezone.utc).isoformat()
            self._events.append(event)

    def snapshot(self) -> dict:
        """Aggregate stats over the retained events."""
        with self._lock:
            responses = [e for e in self._events if e.get("type") == "response"]
            errors = [e for e in self._events if e.get("type") == "upstream_error"]
            usages = [e for e in self._events if e.get("type") == "usage"]

            upstream_values = [r["upstream_ms"] for r in responses if "upstream_ms" in r]
            hit_rates = [u["cache_hit_rate"] for u in usages if "cache_hit_rate" in u]

            return {
                "uptime_s": round(time.time() - self.start_time, 1),
                "recent_responses": len(responses),
                "recent_errors": len(errors),
                "recent_fallbacks": sum(1 for r in responses if r.get("fallback")),
                "recent_max_tokens_stops": sum(
                    1 for r in responses if r.get("stop_reason") == "max_tokens"
                ),
                "avg_upstream_ms": round(statistics.mean(upstream_values), 1) if upstream_values else 0,
                "avg_cache_hit_rate": round(statistics.mean(hit_rates), 4) if hit_rates else 0,
                "last_error": errors[-1] if errors else None,
            }
