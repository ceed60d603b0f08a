"""Usage accounting: parse provider token usage and estimate cache savings."""

from __future__ import annotations

import logging
import threading

from ..types import CostEstimate, ModelType, PricingConfig, UsageStats, UsageSummary

logger = logging.getLogger(__name__)

_PER_TOKEN = 1 / 1_000_000


def _token_count(raw: dict, key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def parse_usage(raw_usage: object) -> UsageStats:
    """Read the provider ``usage`` object. Missing or malformed fields count as 0."""
    if not isinstance(raw_usage, dict):
        return UsageStats()
    return UsageStats(
        input_tokens=_token_count(raw_usage, "input_tokens"),
        cache_creation_tokens=_token_count(raw_usage, "cache_creation_input_tokens"),
        cache_read_tokens=_token_count(raw_usage, "cache_read_input_tokens"),
        output_tokens=_token_count(raw_usage, "output_tokens"),
    )


def estimate_cost(usage: UsageStats, pricing: PricingConfig) -> CostEstimate:
    """Compare what the input would cost uncached against what caching charged.

    ``normal_cost`` prices every input token (fresh and cache-read) at the
    standard rate; ``cached_cost`` prices cache reads and cache writes at
    their own rates. Cache writes are charged only on the cached side, so
    a request that writes a large prefix reports negative savings even when
    it also reads from the cache.
    """
    standard = pricing.input_per_mtok * _PER_TOKEN
    normal = (usage.input_tokens + usage.cache_read_tokens) * standard
    cached = (
        usage.input_tokens * standard
        + usage.cache_read_tokens * pricing.cache_read_per_mtok * _PER_TOKEN
        + usage.cache_creation_tokens * pricing.cache_write_per_mtok * _PER_TOKEN
    )
    return CostEstimate(
        normal_cost=normal,
        cached_cost=cached,
        output_cost=usage.output_tokens * pricing.output_per_mtok * _PER_TOKEN,
    )


class UsageAccountant:
    """Account each upstream call and keep process-wide totals for logging.

    Thread-safe: totals are guarded by a lock so ``get_summary()`` can be
    read from the stats endpoint while requests are in flight.
    """

    def __init__(self, pricing: PricingConfig, metrics=None) -> None:
        self.pricing = pricing
        self.metrics = metrics
        self._summary = UsageSummary()
        self._lock = threading.Lock()

    def account(
        self,
        raw_usage: object,
        model_type: ModelType,
        *,
        fallback: bool = False,
    ) -> tuple[UsageStats, CostEstimate]:
        """Parse usage, price it, log one line, and update the totals."""
        usage = parse_usage(raw_usage)
        cost = estimate_cost(usage, self.pricing)

        with self._lock:
            s = self._summary
            s.total_requests += 1
            if fallback:
                s.total_fallback_replies += 1
            s.total_input_tokens += usage.input_tokens
            s.total_cache_creation_tokens += usage.cache_creation_tokens
            s.total_cache_read_tokens += usage.cache_read_tokens
            s.total_output_tokens += usage.output_tokens
            s.estimated_cost_usd += cost.estimated_cost
            s.estimated_savings_usd += cost.estimated_savings

        logger.info(
            "usage model=%s input=%d cache_write=%d cache_read=%d output=%d "
            "hit_rate=%.1f%% cost=$%.6f saved=$%.6f",
            model_type.value,
            usage.input_tokens,
            usage.cache_creation_tokens,
            usage.cache_read_tokens,
            usage.output_tokens,
            usage.cache_hit_rate * 100,
            cost.estimated_cost,
            cost.estimated_savings,
        )
        if self.metrics is not None:
            self.metrics.record({
                "type": "usage",
                "model_type": model_type.value,
                "input_tokens": usage.input_tokens,
                "cache_creation_tokens": usage.cache_creation_tokens,
                "cache_read_tokens": usage.cache_read_tokens,
                "output_tokens": usage.output_tokens,
                "cache_hit_rate": round(usage.cache_hit_rate, 4),
                "estimated_cost": cost.estimated_cost,
                "estimated_savings": cost.estimated_savings,
                "fallback": fallback,
            })
        return usage, cost

    def log_failure(self) -> None:
        """Count a request that never produced a usable upstream response."""
        with self._lock:
            self._summary.total_failures += 1

    def get_summary(self) -> UsageSummary:
        """Return a copy of the cumulative totals."""
        with self._lock:
            s = self._summary
            return UsageSummary(
                total_requests=s.total_requests,
                total_failures=s.total_failures,
                total_fallback_replies=s.total_fallback_replies,
                total_input_tokens=s.total_input_tokens,
                total_cache_creation_tokens=s.total_cache_creation_tokens,
                total_cache_read_tokens=s.total_cache_read_tokens,
                total_output_tokens=s.total_output_tokens,
                estimated_cost_usd=s.estimated_cost_usd,
                estimated_savings_usd=s.estimated_savings_usd,
            )
