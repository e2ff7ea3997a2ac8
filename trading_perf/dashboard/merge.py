"""
Incremental Merge Cache

Reconciles a freshly computed series with the one already on display,
reusing unchanged point objects so a polling consumer can cheaply tell
whether anything needs redrawing.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from trading_perf.data.models import (
    TradingCandlestickPoint,
    TradingDataPoint,
    TradingLogEvent,
    TradingMetrics,
)

SeriesPair = Tuple[Sequence[TradingDataPoint], Optional[TradingMetrics]]


@dataclass(frozen=True)
class MergeResult:
    """Outcome of reconciling a displayed series with a fresh one."""
    series: List[TradingDataPoint]
    metrics: Optional[TradingMetrics]
    changed: bool


def points_equal(a: TradingDataPoint, b: TradingDataPoint) -> bool:
    """Equality over the fields a chart displays."""
    if a.timestamp_numeric != b.timestamp_numeric:
        return False
    if a.net_value != b.net_value or a.roi != b.roi:
        return False
    if a.benchmark_return != b.benchmark_return:
        return False
    if a.benchmark_price != b.benchmark_price:
        return False
    if a.position != b.position:
        return False
    if bool(a.is_partial) != bool(b.is_partial):
        return False

    a_event = a.matched_event
    b_event = b.matched_event
    if (a_event.type if a_event else None) != (b_event.type if b_event else None):
        return False
    if (a_event.description if a_event else None) != (b_event.description if b_event else None):
        return False

    return True


def metrics_equal(a: Optional[TradingMetrics], b: Optional[TradingMetrics]) -> bool:
    """Flat comparison of the scalar metrics."""
    if a is None or b is None:
        return a is b
    return (
        a.total_roi == b.total_roi
        and a.win_rate == b.win_rate
        and a.sharpe_ratio == b.sharpe_ratio
        and a.max_drawdown == b.max_drawdown
        and a.total_trades == b.total_trades
        and a.initial_price == b.initial_price
    )


def merge_points(
    previous: Sequence[TradingDataPoint],
    incoming: Sequence[TradingDataPoint],
) -> Tuple[Sequence[TradingDataPoint], bool]:
    """
    Prefer previous point objects where the timestamp-matched point is equal.

    Returns:
        (series, changed) where series is previous itself when unchanged
    """
    by_timestamp: Dict[int, TradingDataPoint] = {
        point.timestamp_numeric: point for point in previous
    }

    changed = len(previous) != len(incoming)
    merged: List[TradingDataPoint] = []

    for point in incoming:
        old = by_timestamp.get(point.timestamp_numeric)
        if old is not None and points_equal(old, point):
            merged.append(old)
        else:
            merged.append(point)
            changed = True

    if not changed:
        return previous, False
    return merged, True


def merge_series(previous: SeriesPair, incoming: SeriesPair) -> MergeResult:
    """
    Reconcile the displayed (series, metrics) pair with a fresh one.

    When nothing changed the previous series and metrics are returned by
    reference. Otherwise unchanged points and equal metrics keep their
    previous identity.
    """
    previous_series, previous_metrics = previous
    next_series, next_metrics = incoming

    series, series_changed = merge_points(previous_series, next_series)
    metrics_changed = not metrics_equal(previous_metrics, next_metrics)

    if not series_changed and not metrics_changed:
        return MergeResult(series=previous_series, metrics=previous_metrics, changed=False)

    logger.debug(
        f"Series merge: points_changed={series_changed} metrics_changed={metrics_changed} "
        f"size={len(previous_series)}->{len(next_series)}"
    )
    return MergeResult(
        series=series,
        metrics=next_metrics if metrics_changed else previous_metrics,
        changed=True,
    )


def candles_equal(a: TradingCandlestickPoint, b: TradingCandlestickPoint) -> bool:
    return (
        a.timestamp_numeric == b.timestamp_numeric
        and a.open == b.open
        and a.high == b.high
        and a.low == b.low
        and a.close == b.close
        and a.volume == b.volume
        and a.final == b.final
        and a.coverage == b.coverage
    )


def candles_changed(
    previous: Sequence[TradingCandlestickPoint],
    incoming: Sequence[TradingCandlestickPoint],
) -> bool:
    """Positional comparison of two candle series."""
    if len(previous) != len(incoming):
        return True
    return any(not candles_equal(a, b) for a, b in zip(previous, incoming))


def merge_trading_logs(
    existing: Sequence[TradingLogEvent],
    incoming: Iterable[TradingLogEvent],
) -> List[TradingLogEvent]:
    """
    Union of two log batches keyed by id, incoming wins, sorted by time.

    Entries without an id are keyed by (time, kind, message).
    """
    incoming = list(incoming)
    if not incoming:
        return list(existing)

    by_key: Dict[object, TradingLogEvent] = {}
    for log in list(existing) + incoming:
        key = log.id if log.id is not None else (log.event_time, log.kind, log.message)
        by_key[key] = log

    # Unparsable times sort first
    return sorted(by_key.values(), key=lambda log: log.timestamp_numeric or 0)
