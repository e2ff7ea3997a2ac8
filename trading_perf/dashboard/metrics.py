"""
Performance Metrics

Derives ROI, win rate, Sharpe ratio and max drawdown from the canonical
equity series, plus lightweight helpers for summary cards.
"""
from typing import Iterable, List, Optional, Sequence, Tuple
from dataclasses import dataclass
import statistics
import math

from loguru import logger

from trading_perf.data.models import (
    EquityCurve,
    LogKind,
    RawEquitySample,
    TradingCandlestickPoint,
    TradingDataPoint,
    TradingLogEvent,
    TradingMetrics,
    round2,
    to_finite,
)


class PerformanceMetrics:
    """Calculate performance metrics from an equity series and its trade log."""

    def __init__(self, trading_days: int = 252):
        self.trading_days = trading_days

    def calculate_all(
        self,
        series: Sequence[TradingDataPoint],
        events: Iterable[TradingLogEvent],
        initial_equity: float,
    ) -> TradingMetrics:
        """
        Calculate all metrics.

        Never raises: degenerate input (empty series, zero volatility, no
        completed trades, bad baseline) yields zero values.
        """
        events = list(events)
        if not series:
            return TradingMetrics()

        initial = to_finite(initial_equity)
        if initial is None or initial <= 0:
            logger.debug(f"Metrics computed without a usable baseline: {initial_equity!r}")
            initial = None

        values = [p.net_value for p in series]

        total_roi = 0.0
        if initial is not None:
            total_roi = (values[-1] - initial) / initial * 100

        max_drawdown = self._max_drawdown(values, initial if initial is not None else values[0])

        return TradingMetrics(
            total_roi=round2(total_roi),
            win_rate=round2(self._win_rate(events)),
            sharpe_ratio=round2(self._sharpe_ratio(values)),
            max_drawdown=-round2(max_drawdown) or 0.0,
            total_trades=sum(1 for e in events if e.kind.is_trade),
            initial_price=series[0].benchmark_price or 0.0,
        )

    def _win_rate(self, events: List[TradingLogEvent]) -> float:
        """
        Pair each long with the first short strictly after it.

        Pairing is chronological, not a position stack: a single short can
        close several longs when longs outnumber shorts.
        """
        longs = self._timed(events, LogKind.OPEN_LONG)
        shorts = self._timed(events, LogKind.OPEN_SHORT)

        completed = 0
        wins = 0

        for long_time, long_event in longs:
            exit_event = next(
                (short for short_time, short in shorts if short_time > long_time),
                None,
            )
            if exit_event is None:
                continue

            entry_price = long_event.price
            exit_price = exit_event.price
            if entry_price is None or exit_price is None:
                continue
            if entry_price <= 0 or exit_price <= 0:
                continue

            completed += 1
            if exit_price > entry_price:
                wins += 1

        return wins / completed * 100 if completed else 0.0

    @staticmethod
    def _timed(
        events: List[TradingLogEvent],
        kind: LogKind,
    ) -> List[Tuple[int, TradingLogEvent]]:
        timed = [
            (e.timestamp_numeric, e) for e in events
            if e.kind is kind and e.timestamp_numeric is not None
        ]
        timed.sort(key=lambda item: item[0])
        return timed

    def _returns(self, values: List[float]) -> List[float]:
        """Period-over-period simple returns."""
        return [
            (values[i] - values[i - 1]) / values[i - 1]
            for i in range(1, len(values))
            if values[i - 1] != 0
        ]

    def _sharpe_ratio(self, values: List[float]) -> float:
        """Mean over population stdev of returns, annualized by a fixed factor."""
        if len(values) < 2:
            return 0.0

        returns = self._returns(values)
        if not returns:
            return 0.0

        volatility = statistics.pstdev(returns)
        if volatility == 0 or not math.isfinite(volatility):
            return 0.0

        return statistics.mean(returns) / volatility * math.sqrt(self.trading_days)

    def _max_drawdown(self, values: List[float], starting_peak: float) -> float:
        """Largest peak-to-trough decline in percent (positive number)."""
        peak = starting_peak
        max_dd = 0.0

        for value in values:
            if value > peak:
                peak = value
            if peak > 0:
                max_dd = max(max_dd, (peak - value) / peak * 100)

        return max_dd


def compute_metrics(
    series: Sequence[TradingDataPoint],
    events: Iterable[TradingLogEvent],
    initial_equity: float,
) -> TradingMetrics:
    """Metrics summary for a canonical series (annualized over 252 days)."""
    return PerformanceMetrics().calculate_all(series, events, initial_equity)


# =============================================================================
# Price resolution and summary cards
# =============================================================================

def _positive(value) -> Optional[float]:
    number = to_finite(value)
    return number if number is not None and number > 0 else None


def first_valid_stock_price(samples: Iterable[RawEquitySample]) -> Optional[float]:
    """First positive finite stock price in the samples."""
    for sample in samples:
        price = _positive(sample.stock_price)
        if price is not None:
            return price
    return None


def resolve_effective_stock_price(
    candles: Optional[Sequence[TradingCandlestickPoint]] = None,
    samples: Optional[Sequence[RawEquitySample]] = None,
    baseline_price: Optional[float] = None,
    fallback_price: Optional[float] = None,
) -> Optional[float]:
    """Last candle close, else last sample price, else baseline, else fallback."""
    if candles:
        price = _positive(candles[-1].close)
        if price is not None:
            return price

    if samples:
        price = _positive(samples[-1].stock_price)
        if price is not None:
            return price

    return _positive(baseline_price) or _positive(fallback_price)


@dataclass(frozen=True)
class LatestSnapshot:
    """Card metrics computed from the most recent sample only."""
    current_equity: Optional[float]
    current_roi: float
    unrealized_pnl: float
    quote_balance: float
    stock_balance: Optional[float]
    stock_price: Optional[float]
    benchmark_return: Optional[float]


def latest_snapshot(
    curve: EquityCurve,
    initial_funds: float,
    stock_balance: Optional[float] = None,
    quote_balance: Optional[float] = None,
) -> LatestSnapshot:
    """
    Lightweight metrics from the last sample of a curve.

    Explicit balances override the ones reported on the sample. Equity is
    quote + stock * price when a price can be resolved, otherwise the
    reported equity, otherwise the initial funds.
    """
    funds = to_finite(initial_funds) or 0.0

    if not curve.samples:
        return LatestSnapshot(
            current_equity=None,
            current_roi=0.0,
            unrealized_pnl=0.0,
            quote_balance=0.0,
            stock_balance=None,
            stock_price=None,
            benchmark_return=None,
        )

    latest = curve.samples[-1]

    stock = to_finite(stock_balance)
    if stock is None:
        stock = to_finite(latest.stock_balance) or 0.0
    quote = to_finite(quote_balance)
    if quote is None:
        quote = to_finite(latest.quote_balance) or 0.0

    price = resolve_effective_stock_price(samples=[latest], baseline_price=curve.baseline_price)

    if price is not None:
        equity = quote + stock * price
    else:
        reported = to_finite(latest.equity)
        equity = reported if reported is not None else funds

    pnl = equity - funds
    benchmark = to_finite(latest.benchmark_return)

    return LatestSnapshot(
        current_equity=equity,
        current_roi=pnl / funds * 100 if funds > 0 else 0.0,
        unrealized_pnl=pnl,
        quote_balance=quote,
        stock_balance=stock,
        stock_price=price,
        benchmark_return=benchmark * 100 if benchmark is not None else None,
    )


def format_roi(roi: float) -> str:
    """Signed percentage, e.g. "+15.50%" or "-8.20%"."""
    sign = "+" if roi >= 0 else ""
    return f"{sign}{roi:.2f}%"
