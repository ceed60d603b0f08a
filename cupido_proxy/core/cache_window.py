"""Cache window planning: how many trailing messages stay uncached.

The fresh window shrinks in coarse tiers as the conversation grows. The
plan is recomputed from scratch on every request, so the boundary drifts
with conversation length and the provider-side hit rate is approximate.
"""

from __future__ import annotations

from ..types import CacheWindowConfig, CacheWindowPlan

DEFAULT_TIERS: tuple[tuple[int, int], ...] = ((100, 50), (500, 30), (1000, 20))
DEFAULT_FLOOR = 15


def fresh_window_size(
    total_messages: int,
    tiers: tuple[tuple[int, int], ...] | list[tuple[int, int]] = DEFAULT_TIERS,
    floor: int = DEFAULT_FLOOR,
) -> int:
    """Return the number of trailing messages that are never cache-marked."""
    for below, fresh in tiers:
        if total_messages < below:
            return fresh
    return floor


def plan_cache_window(
    total_messages: int,
    config: CacheWindowConfig | None = None,
) -> CacheWindowPlan:
    """Place the cache boundary for a conversation of *total_messages*.

    ``cache_boundary_index`` is the last message treated as stable history,
    or ``-1`` when the conversation fits inside the fresh window and only
    the system prompt is cached.
    """
    if config is None:
        fresh = fresh_window_size(total_messages)
    else:
        fresh = fresh_window_size(total_messages, config.tiers, config.floor)
    boundary = total_messages - fresh - 1
    return CacheWindowPlan(
        total_messages=total_messages,
        fresh_window_size=fresh,
        cache_boundary_index=max(boundary, -1),
    )
