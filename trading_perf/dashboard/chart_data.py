"""
Chart dataset pipeline.

Runs the normalizer, candlestick builder, event matcher and metrics in
their fixed order and reconciles the result with what is on display.
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from loguru import logger

from trading_perf.data.models import (
    EquityCurve,
    Timeframe,
    TradingCandlestickPoint,
    TradingDataPoint,
    TradingLogEvent,
    TradingMetrics,
)
from trading_perf.dashboard.normalizer import (
    benchmark_series,
    dedupe_curve,
    normalize_equity_series,
    split_by_start_time,
    trim_to_end_time,
)
from trading_perf.dashboard.candlesticks import build_candlesticks, dedupe_candles, ohlcv_by_timestamp
from trading_perf.dashboard.events import match_events
from trading_perf.dashboard.metrics import compute_metrics
from trading_perf.dashboard.merge import candles_changed, merge_points, metrics_equal


@dataclass(frozen=True)
class ChartDataset:
    """Everything a performance chart needs for one timeframe."""
    data: List[TradingDataPoint] = field(default_factory=list)
    before_start: List[TradingDataPoint] = field(default_factory=list)
    benchmark: List[TradingDataPoint] = field(default_factory=list)
    candlesticks: List[TradingCandlestickPoint] = field(default_factory=list)
    metrics: Optional[TradingMetrics] = None
    initial_equity: Optional[float] = None
    baseline_price: Optional[float] = None

    @property
    def last_timestamp(self) -> Optional[int]:
        if self.data:
            return self.data[-1].timestamp_numeric
        if self.before_start:
            return self.before_start[-1].timestamp_numeric
        return None


def build_chart_dataset(
    curve: EquityCurve,
    events: Iterable[TradingLogEvent],
    timeframe: Union[Timeframe, str],
    trading_start_ms: Optional[int] = None,
    end_time_ms: Optional[int] = None,
) -> ChartDataset:
    """
    Transform a raw equity curve and trading log into a chart dataset.

    Raises:
        InvalidBaselineError: the curve carries no usable initial equity
    """
    events = list(events)

    curve = dedupe_curve(curve)
    if end_time_ms is not None:
        curve = trim_to_end_time(curve, end_time_ms)

    series = normalize_equity_series(curve.samples, curve.initial_equity, curve.baseline_price)

    candles = build_candlesticks(series, ohlcv_by_timestamp(curve.samples))
    candles = dedupe_candles(candles)
    if end_time_ms is not None:
        candles = [c for c in candles if c.timestamp_numeric <= end_time_ms]

    series = match_events(series, events, timeframe)

    before, after = split_by_start_time(series, trading_start_ms, timeframe)
    metrics = compute_metrics(after, events, curve.initial_equity)

    logger.debug(
        f"Built dataset ({timeframe}): {len(after)} points, {len(before)} before start, "
        f"{len(candles)} candles"
    )

    return ChartDataset(
        data=after,
        before_start=before,
        benchmark=benchmark_series(series),
        candlesticks=candles,
        metrics=metrics,
        initial_equity=curve.initial_equity,
        baseline_price=curve.baseline_price,
    )


def reconcile_dataset(previous: Optional[ChartDataset], incoming: ChartDataset) -> ChartDataset:
    """
    Merge a freshly built dataset into the displayed one.

    Returns previous itself when nothing visible changed; otherwise a new
    dataset that reuses every unchanged part of previous.
    """
    if previous is None:
        return incoming

    data, data_changed = merge_points(previous.data, incoming.data)
    before, before_changed = merge_points(previous.before_start, incoming.before_start)
    benchmark, benchmark_changed = merge_points(previous.benchmark, incoming.benchmark)
    metrics_changed = not metrics_equal(previous.metrics, incoming.metrics)
    candle_changed = candles_changed(previous.candlesticks, incoming.candlesticks)

    if not (data_changed or before_changed or benchmark_changed or metrics_changed or candle_changed):
        return previous

    return ChartDataset(
        data=data,
        before_start=before,
        benchmark=benchmark,
        candlesticks=incoming.candlesticks if candle_changed else previous.candlesticks,
        metrics=incoming.metrics if metrics_changed else previous.metrics,
        initial_equity=incoming.initial_equity,
        baseline_price=(
            incoming.baseline_price if incoming.baseline_price is not None else previous.baseline_price
        ),
    )
