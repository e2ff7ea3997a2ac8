"""Polling feed for live performance updates."""

from trading_perf.core.feed import (
    FeedState,
    PerformanceFeed,
    WarmupState,
    warmup_state_from_curve,
)

__all__ = [
    "FeedState",
    "PerformanceFeed",
    "WarmupState",
    "warmup_state_from_curve",
]
