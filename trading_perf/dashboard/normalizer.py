"""
Equity Point Normalizer

Turns raw, irregularly reported equity samples into the canonical
chart series, forward-filling gaps from the last known values.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from loguru import logger

from trading_perf.data.models import (
    EquityCurve,
    RawEquitySample,
    Timeframe,
    TradingDataPoint,
    parse_timestamp,
    round2,
    round4,
    timeframe_to_milliseconds,
    to_finite,
)


class InvalidBaselineError(ValueError):
    """Initial equity is missing, non-finite or not positive."""

    def __init__(self, initial_equity):
        self.initial_equity = initial_equity
        super().__init__(f"Invalid initial equity: {initial_equity!r}")


@dataclass(frozen=True, slots=True)
class _Carry:
    """Last known values threaded through the fold."""
    equity: float
    benchmark: float
    price: Optional[float]
    position: float


def validate_initial_equity(initial_equity) -> float:
    """Return initial equity as float or raise InvalidBaselineError."""
    value = to_finite(initial_equity)
    if value is None or value <= 0:
        logger.error(f"Rejecting equity series: initial equity {initial_equity!r}")
        raise InvalidBaselineError(initial_equity)
    return value


def _calendar_day(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()


def _step(
    carry: _Carry,
    sample: RawEquitySample,
    timestamp_ms: int,
    initial_equity: float,
) -> Tuple[_Carry, TradingDataPoint]:
    """Advance the carry by one sample and emit its canonical point."""
    equity = to_finite(sample.equity)
    benchmark = to_finite(sample.benchmark_return)
    price = to_finite(sample.stock_price)
    position = to_finite(sample.stock_balance)

    carry = _Carry(
        equity=equity if equity is not None else carry.equity,
        benchmark=benchmark if benchmark is not None else carry.benchmark,
        price=price if price is not None else carry.price,
        position=position if position is not None else carry.position,
    )

    roi = (carry.equity - initial_equity) / initial_equity * 100
    point = TradingDataPoint(
        date=_calendar_day(timestamp_ms),
        timestamp=sample.timestamp,
        timestamp_numeric=timestamp_ms,
        net_value=round2(carry.equity),
        roi=round2(roi),
        benchmark_return=round2(carry.benchmark * 100),
        benchmark_price=round2(carry.price) if carry.price is not None else None,
        position=round4(carry.position),
        is_partial=equity is None or price is None or benchmark is None,
    )
    return carry, point


def normalize_equity_series(
    samples: Iterable[RawEquitySample],
    initial_equity: float,
    baseline_price: Optional[float] = None,
) -> List[TradingDataPoint]:
    """
    Build the canonical series from raw samples.

    A left fold over the samples in input order. Samples with an unparsable
    timestamp are skipped without advancing the carry. Missing numeric
    fields are forward-filled; the point is flagged partial when the sample
    itself lacked equity, price or benchmark.

    Args:
        samples: Raw samples, ordered by time
        initial_equity: ROI baseline, must be finite and positive
        baseline_price: Asset price used until a sample reports one

    Returns:
        Canonical points with strictly increasing timestamp_numeric

    Raises:
        InvalidBaselineError: initial_equity missing or not positive
    """
    initial = validate_initial_equity(initial_equity)

    carry = _Carry(
        equity=initial,
        benchmark=0.0,
        price=to_finite(baseline_price),
        position=0.0,
    )
    points: List[TradingDataPoint] = []
    dropped = 0

    for sample in samples:
        timestamp_ms = parse_timestamp(sample.timestamp)
        if timestamp_ms is None:
            dropped += 1
            continue

        carry, point = _step(carry, sample, timestamp_ms, initial)

        # Duplicate instant: the later sample wins
        if points and points[-1].timestamp_numeric == timestamp_ms:
            points[-1] = point
        else:
            points.append(point)

    if dropped:
        logger.debug(f"Dropped {dropped} samples with unparsable timestamps")

    return points


# =============================================================================
# Raw curve preparation
# =============================================================================

def is_incoming_preferred(
    existing: Optional[RawEquitySample],
    incoming: RawEquitySample,
) -> bool:
    """Decide whether incoming replaces existing at the same timestamp."""
    if existing is None:
        return True

    existing_valid = existing.has_valid_equity
    incoming_valid = incoming.has_valid_equity
    if incoming_valid != existing_valid:
        return incoming_valid

    existing_coverage = (existing.ohlcv.coverage if existing.ohlcv else None) or 0
    incoming_coverage = (incoming.ohlcv.coverage if incoming.ohlcv else None) or 0
    if incoming_coverage != existing_coverage:
        return incoming_coverage > existing_coverage

    existing_final = bool(existing.ohlcv and existing.ohlcv.final)
    incoming_final = bool(incoming.ohlcv and incoming.ohlcv.final)
    if incoming_final != existing_final:
        return incoming_final

    return True


def merge_equity_samples(
    existing: Iterable[RawEquitySample],
    incoming: Iterable[RawEquitySample] = (),
) -> List[RawEquitySample]:
    """
    Collapse samples by timestamp and sort them.

    Existing samples are indexed first; each incoming sample then competes
    with the one already held at its timestamp.
    """
    by_timestamp: Dict[int, RawEquitySample] = {}

    for sample in existing:
        timestamp_ms = parse_timestamp(sample.timestamp)
        if timestamp_ms is not None:
            if is_incoming_preferred(by_timestamp.get(timestamp_ms), sample):
                by_timestamp[timestamp_ms] = sample

    for sample in incoming:
        timestamp_ms = parse_timestamp(sample.timestamp)
        if timestamp_ms is not None:
            if is_incoming_preferred(by_timestamp.get(timestamp_ms), sample):
                by_timestamp[timestamp_ms] = sample

    return [by_timestamp[ts] for ts in sorted(by_timestamp)]


def dedupe_samples(samples: Iterable[RawEquitySample]) -> List[RawEquitySample]:
    """One sample per timestamp, sorted; unparsable timestamps dropped."""
    return merge_equity_samples(samples)


def dedupe_curve(curve: EquityCurve) -> EquityCurve:
    """Curve with deduplicated, ordered samples and refreshed time bounds."""
    samples = dedupe_samples(curve.samples)
    if not samples:
        return curve
    return replace(
        curve,
        samples=samples,
        start_time=samples[0].timestamp,
        end_time=samples[-1].timestamp,
    )


def trim_to_end_time(curve: EquityCurve, end_time_ms: int) -> EquityCurve:
    """Drop samples after end_time_ms."""
    samples = [
        s for s in curve.samples
        if s.timestamp_numeric is not None and s.timestamp_numeric <= end_time_ms
    ]

    if not samples:
        return replace(curve, samples=[], end_time=curve.start_time)

    return replace(
        curve,
        samples=samples,
        start_time=samples[0].timestamp,
        end_time=samples[-1].timestamp,
    )


def split_by_start_time(
    series: Sequence[TradingDataPoint],
    start_time_ms: Optional[int],
    timeframe: Union[Timeframe, str],
) -> Tuple[List[TradingDataPoint], List[TradingDataPoint]]:
    """
    Partition the series into points before and after the trading started.

    The start is floored to its timeframe bucket, so the bucket holding
    the start belongs to the "after" part.

    Returns:
        (before, after)
    """
    if start_time_ms is None:
        return [], list(series)

    bucket_ms = timeframe_to_milliseconds(timeframe)
    boundary = (start_time_ms // bucket_ms) * bucket_ms

    before = [p for p in series if p.timestamp_numeric < boundary]
    after = [p for p in series if p.timestamp_numeric >= boundary]
    return before, after


def benchmark_series(series: Sequence[TradingDataPoint]) -> List[TradingDataPoint]:
    """Benchmark-only view: portfolio fields zeroed, benchmark kept."""
    return [
        replace(
            point,
            net_value=0.0,
            roi=0.0,
            benchmark_return=point.benchmark_return or 0.0,
            benchmark_price=point.benchmark_price or 0.0,
            position=None,
            is_partial=False,
        )
        for point in series
    ]
