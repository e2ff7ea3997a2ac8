"""
Unit tests for performance metrics.
"""

import pytest

from trading_perf.data.models import (
    EquityCurve,
    LogKind,
    RawEquitySample,
    TradingCandlestickPoint,
    TradingDataPoint,
    TradingLogEvent,
    TradingMetrics,
    parse_timestamp,
)
from trading_perf.dashboard.metrics import (
    PerformanceMetrics,
    compute_metrics,
    first_valid_stock_price,
    format_roi,
    latest_snapshot,
    resolve_effective_stock_price,
)


def ts(hour: int) -> str:
    return f"2024-01-01T{hour:02d}:00:00Z"


def make_series(values, price=None):
    return [
        TradingDataPoint(
            date="2024-01-01",
            timestamp=ts(hour),
            timestamp_numeric=parse_timestamp(ts(hour)),
            net_value=value,
            roi=0.0,
            benchmark_price=price,
        )
        for hour, value in enumerate(values)
    ]


def log(hour: int, kind: LogKind, price=None) -> TradingLogEvent:
    return TradingLogEvent(event_time=ts(hour), kind=kind, price=price)


class TestComputeMetrics:
    """Tests for compute_metrics."""

    def test_empty_series(self):
        assert compute_metrics([], [], 10000) == TradingMetrics()

    def test_total_roi(self):
        metrics = compute_metrics(make_series([10000, 10500, 11550]), [], 10000)
        assert metrics.total_roi == 15.5

    def test_max_drawdown(self):
        metrics = compute_metrics(make_series([10000, 12000, 9000, 13000]), [], 10000)
        assert metrics.max_drawdown == -25.0

    def test_no_drawdown(self):
        metrics = compute_metrics(make_series([10000, 11000, 12000]), [], 10000)
        assert metrics.max_drawdown == 0.0

    def test_drawdown_from_initial_equity(self):
        metrics = compute_metrics(make_series([9000, 9500]), [], 10000)
        assert metrics.max_drawdown == -10.0

    def test_sharpe_ratio(self):
        metrics = compute_metrics(make_series([100, 110, 104.5]), [], 100)
        assert metrics.sharpe_ratio == pytest.approx(5.29, abs=0.01)

    def test_sharpe_zero_volatility(self):
        metrics = compute_metrics(make_series([10000, 10000, 10000]), [], 10000)
        assert metrics.sharpe_ratio == 0.0

    def test_sharpe_single_point(self):
        metrics = compute_metrics(make_series([10500]), [], 10000)
        assert metrics.sharpe_ratio == 0.0

    def test_initial_price(self):
        metrics = compute_metrics(make_series([10000, 10100], price=2500.0), [], 10000)
        assert metrics.initial_price == 2500.0

    def test_initial_price_missing(self):
        metrics = compute_metrics(make_series([10000]), [], 10000)
        assert metrics.initial_price == 0.0

    def test_invalid_baseline_does_not_raise(self):
        metrics = compute_metrics(make_series([10000, 11000]), [], 0)

        assert metrics.total_roi == 0.0
        assert metrics.max_drawdown == 0.0

    def test_total_trades_counts_trade_kinds_only(self):
        events = [
            log(0, LogKind.DEPOSIT),
            log(1, LogKind.OPEN_LONG, 100),
            log(2, LogKind.OPEN_SHORT, 110),
            log(3, LogKind.STOP_LOSS),
            log(4, LogKind.WITHDRAW),
        ]

        metrics = compute_metrics(make_series([10000]), events, 10000)

        assert metrics.total_trades == 3


class TestWinRate:
    """Tests for long/short pairing."""

    @pytest.fixture
    def series(self):
        return make_series([10000, 10100])

    def test_all_wins(self, series):
        events = [
            log(1, LogKind.OPEN_LONG, 100),
            log(2, LogKind.OPEN_SHORT, 110),
            log(3, LogKind.OPEN_LONG, 105),
            log(4, LogKind.OPEN_SHORT, 120),
        ]

        assert compute_metrics(series, events, 10000).win_rate == 100.0

    def test_half_wins(self, series):
        events = [
            log(1, LogKind.OPEN_LONG, 100),
            log(2, LogKind.OPEN_SHORT, 110),
            log(3, LogKind.OPEN_LONG, 120),
            log(4, LogKind.OPEN_SHORT, 115),
        ]

        assert compute_metrics(series, events, 10000).win_rate == 50.0

    def test_equal_price_is_loss(self, series):
        events = [log(1, LogKind.OPEN_LONG, 100), log(2, LogKind.OPEN_SHORT, 100)]
        assert compute_metrics(series, events, 10000).win_rate == 0.0

    def test_short_before_long_not_paired(self, series):
        events = [log(1, LogKind.OPEN_SHORT, 200), log(2, LogKind.OPEN_LONG, 100)]
        assert compute_metrics(series, events, 10000).win_rate == 0.0

    def test_missing_price_not_completed(self, series):
        events = [
            log(1, LogKind.OPEN_LONG, None),
            log(2, LogKind.OPEN_SHORT, 110),
            log(3, LogKind.OPEN_LONG, 100),
            log(4, LogKind.OPEN_SHORT, 90),
        ]

        assert compute_metrics(series, events, 10000).win_rate == 0.0

    def test_unordered_input(self, series):
        events = [
            log(2, LogKind.OPEN_SHORT, 110),
            log(1, LogKind.OPEN_LONG, 100),
        ]

        assert compute_metrics(series, events, 10000).win_rate == 100.0

    def test_single_short_closes_several_longs(self, series):
        # Pairing is chronological, not position-based: both longs pair
        # with the same short.
        events = [
            log(1, LogKind.OPEN_LONG, 100),
            log(2, LogKind.OPEN_LONG, 120),
            log(3, LogKind.OPEN_SHORT, 110),
        ]

        assert compute_metrics(series, events, 10000).win_rate == 50.0

    def test_custom_trading_days(self):
        series = make_series([100, 110, 104.5])

        default = PerformanceMetrics().calculate_all(series, [], 100)
        daily = PerformanceMetrics(trading_days=1).calculate_all(series, [], 100)

        assert daily.sharpe_ratio == pytest.approx(0.33, abs=0.01)
        assert default.sharpe_ratio > daily.sharpe_ratio


class TestPriceResolution:
    """Tests for stock price resolution."""

    def test_first_valid_stock_price(self):
        samples = [
            RawEquitySample(timestamp=ts(0)),
            RawEquitySample(timestamp=ts(1), stock_price=0),
            RawEquitySample(timestamp=ts(2), stock_price=2500),
        ]
        assert first_valid_stock_price(samples) == 2500

    def test_first_valid_stock_price_none(self):
        assert first_valid_stock_price([RawEquitySample(timestamp=ts(0))]) is None

    def test_candle_close_first(self):
        candle = TradingCandlestickPoint(
            timestamp=ts(0), timestamp_numeric=0, open=1, high=1, low=1, close=3100,
        )
        samples = [RawEquitySample(timestamp=ts(0), stock_price=3000)]

        assert resolve_effective_stock_price([candle], samples, 2900, 2800) == 3100

    def test_sample_then_baseline_then_fallback(self):
        samples = [RawEquitySample(timestamp=ts(0), stock_price=3000)]

        assert resolve_effective_stock_price(None, samples, 2900, 2800) == 3000
        assert resolve_effective_stock_price(None, [], 2900, 2800) == 2900
        assert resolve_effective_stock_price(None, [], None, 2800) == 2800
        assert resolve_effective_stock_price() is None


class TestLatestSnapshot:
    """Tests for latest_snapshot."""

    def test_empty_curve(self):
        snapshot = latest_snapshot(EquityCurve(), 10000)

        assert snapshot.current_equity is None
        assert snapshot.current_roi == 0.0
        assert snapshot.unrealized_pnl == 0.0

    def test_equity_from_balances(self):
        curve = EquityCurve(samples=[
            RawEquitySample(
                timestamp=ts(0),
                equity=1,
                stock_price=3000,
                stock_balance=2,
                quote_balance=5000,
                benchmark_return=0.05,
            ),
        ])

        snapshot = latest_snapshot(curve, 10000)

        assert snapshot.current_equity == 11000
        assert snapshot.unrealized_pnl == 1000
        assert snapshot.current_roi == 10.0
        assert snapshot.benchmark_return == pytest.approx(5.0)

    def test_explicit_balances_override(self):
        curve = EquityCurve(samples=[
            RawEquitySample(timestamp=ts(0), stock_price=100, stock_balance=1, quote_balance=1),
        ])

        snapshot = latest_snapshot(curve, 1000, stock_balance=5, quote_balance=500)

        assert snapshot.current_equity == 1000
        assert snapshot.current_roi == 0.0

    def test_reported_equity_without_price(self):
        curve = EquityCurve(samples=[RawEquitySample(timestamp=ts(0), equity=9500)])

        snapshot = latest_snapshot(curve, 10000)

        assert snapshot.current_equity == 9500
        assert snapshot.current_roi == -5.0
        assert snapshot.stock_price is None


class TestFormatRoi:
    """Tests for ROI formatting."""

    @pytest.mark.parametrize("roi,expected", [
        (15.5, "+15.50%"),
        (-8.2, "-8.20%"),
        (0.0, "+0.00%"),
    ])
    def test_format(self, roi, expected):
        assert format_roi(roi) == expected
