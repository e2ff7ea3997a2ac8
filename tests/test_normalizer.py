"""
Unit tests for equity point normalization and raw curve preparation.
"""

import pytest

from trading_perf.data.models import (
    EquityCurve,
    RawEquitySample,
    RawOhlcv,
    Timeframe,
    TradingDataPoint,
    parse_timestamp,
    round2,
)
from trading_perf.dashboard.normalizer import (
    InvalidBaselineError,
    benchmark_series,
    dedupe_curve,
    dedupe_samples,
    is_incoming_preferred,
    merge_equity_samples,
    normalize_equity_series,
    split_by_start_time,
    trim_to_end_time,
    validate_initial_equity,
)


def ts(hour: int, minute: int = 0) -> str:
    return f"2024-01-01T{hour:02d}:{minute:02d}:00Z"


def sample(hour: int, equity=None, price=None, benchmark=None, balance=None, ohlcv=None, minute=0):
    return RawEquitySample(
        timestamp=ts(hour, minute),
        equity=equity,
        benchmark_return=benchmark,
        stock_price=price,
        stock_balance=balance,
        ohlcv=ohlcv,
    )


class TestValidateInitialEquity:
    """Tests for baseline validation."""

    def test_valid(self):
        assert validate_initial_equity(10000) == 10000.0

    @pytest.mark.parametrize("value", [None, 0, -5, float("nan"), float("inf"), "abc"])
    def test_invalid(self, value):
        with pytest.raises(InvalidBaselineError):
            validate_initial_equity(value)

    def test_is_value_error(self):
        assert issubclass(InvalidBaselineError, ValueError)


class TestNormalizeEquitySeries:
    """Tests for normalize_equity_series."""

    def test_roi_from_initial_equity(self):
        points = normalize_equity_series(
            [sample(0, equity=11000, price=3000, benchmark=0.01)],
            initial_equity=10000,
        )

        assert len(points) == 1
        assert points[0].net_value == 11000.0
        assert points[0].roi == 10.0
        assert points[0].benchmark_return == 1.0
        assert points[0].benchmark_price == 3000.0
        assert points[0].is_partial is False

    def test_equity_only_sample(self):
        points = normalize_equity_series(
            [RawEquitySample(timestamp="2024-01-01T00:00:00Z", equity=11000)],
            initial_equity=10000,
        )

        assert points[0].net_value == 11000.0
        assert points[0].roi == 10.0

    def test_date_and_timestamp(self):
        points = normalize_equity_series([sample(5, equity=10000)], 10000)

        assert points[0].date == "2024-01-01"
        assert points[0].timestamp == ts(5)
        assert points[0].timestamp_numeric == parse_timestamp(ts(5))

    def test_forward_fill_marks_partial(self):
        points = normalize_equity_series(
            [
                sample(0, equity=10500, price=3000, benchmark=0.02, balance=1.5),
                sample(1),
            ],
            initial_equity=10000,
        )

        second = points[1]
        assert second.net_value == 10500.0
        assert second.roi == 5.0
        assert second.benchmark_price == 3000.0
        assert second.benchmark_return == 2.0
        assert second.position == 1.5
        assert second.is_partial is True

    def test_first_sample_without_equity_uses_initial(self):
        points = normalize_equity_series([sample(0, price=3000, benchmark=0.0)], 10000)

        assert points[0].net_value == 10000.0
        assert points[0].roi == 0.0
        assert points[0].is_partial is True

    def test_baseline_price_used_until_reported(self):
        points = normalize_equity_series(
            [sample(0, equity=10000), sample(1, equity=10100, price=2600)],
            initial_equity=10000,
            baseline_price=2500,
        )

        assert points[0].benchmark_price == 2500.0
        assert points[1].benchmark_price == 2600.0

    def test_no_price_anywhere(self):
        points = normalize_equity_series([sample(0, equity=10000)], 10000)

        assert points[0].benchmark_price is None
        assert points[0].benchmark_return == 0.0
        assert points[0].position == 0.0

    def test_position_rounded_to_four_places(self):
        points = normalize_equity_series([sample(0, equity=10000, balance=1.234567)], 10000)
        assert points[0].position == 1.2346

    def test_unparsable_timestamp_skipped(self):
        points = normalize_equity_series(
            [
                sample(0, equity=10100),
                RawEquitySample(timestamp="garbage", equity=99999),
                sample(2),
            ],
            initial_equity=10000,
        )

        assert len(points) == 2
        assert points[1].net_value == 10100.0

    def test_duplicate_timestamp_later_wins(self):
        points = normalize_equity_series(
            [sample(0, equity=10100), sample(0, equity=10200)],
            initial_equity=10000,
        )

        assert len(points) == 1
        assert points[0].net_value == 10200.0

    @pytest.mark.parametrize("initial", [None, 0, -100, float("nan")])
    def test_invalid_baseline_raises(self, initial):
        with pytest.raises(InvalidBaselineError):
            normalize_equity_series([sample(0, equity=10000)], initial)

    def test_empty_input(self):
        assert normalize_equity_series([], 10000) == []

    def test_timestamps_increasing_and_roi_consistent(self):
        equities = [10000, 10250.5, None, 9800.25, 12000, None]
        samples = [sample(hour, equity=eq, price=3000, benchmark=0.0) for hour, eq in enumerate(equities)]

        points = normalize_equity_series(samples, 10000)

        stamps = [p.timestamp_numeric for p in points]
        assert stamps == sorted(set(stamps))
        for point in points:
            assert point.roi == round2((point.net_value - 10000) / 10000 * 100)


class TestIsIncomingPreferred:
    """Tests for duplicate sample preference."""

    def test_no_existing(self):
        assert is_incoming_preferred(None, sample(0))

    def test_valid_equity_beats_invalid(self):
        valid = sample(0, equity=10000)
        invalid = sample(0)

        assert is_incoming_preferred(invalid, valid)
        assert not is_incoming_preferred(valid, invalid)

    def test_higher_coverage_wins(self):
        low = sample(0, equity=10000, ohlcv=RawOhlcv(1, 1, 1, 1, coverage=0.5))
        high = sample(0, equity=10000, ohlcv=RawOhlcv(1, 1, 1, 1, coverage=0.9))

        assert is_incoming_preferred(low, high)
        assert not is_incoming_preferred(high, low)

    def test_final_wins(self):
        live = sample(0, equity=10000, ohlcv=RawOhlcv(1, 1, 1, 1, final=False))
        final = sample(0, equity=10000, ohlcv=RawOhlcv(1, 1, 1, 1, final=True))

        assert is_incoming_preferred(live, final)
        assert not is_incoming_preferred(final, live)

    def test_later_wins_when_equal(self):
        assert is_incoming_preferred(sample(0, equity=1), sample(0, equity=2))


class TestMergeEquitySamples:
    """Tests for merging and deduping raw samples."""

    def test_sorted_and_unique(self):
        result = dedupe_samples([sample(2, equity=3), sample(0, equity=1), sample(2, equity=4)])

        assert [s.timestamp for s in result] == [ts(0), ts(2)]
        assert result[1].equity == 4

    def test_unparsable_dropped(self):
        result = dedupe_samples([RawEquitySample(timestamp="nope", equity=1), sample(0, equity=1)])
        assert len(result) == 1

    def test_incoming_replaces_existing(self):
        existing = [sample(0, equity=10000), sample(1, equity=10100)]
        incoming = [sample(1, equity=10200), sample(2, equity=10300)]

        result = merge_equity_samples(existing, incoming)

        assert [s.equity for s in result] == [10000, 10200, 10300]

    def test_incoming_gap_does_not_replace_valid(self):
        existing = [sample(1, equity=10100)]
        incoming = [sample(1)]

        result = merge_equity_samples(existing, incoming)

        assert result[0].equity == 10100


class TestCurvePreparation:
    """Tests for curve-level dedupe and trimming."""

    def test_dedupe_curve_refreshes_bounds(self):
        curve = EquityCurve(
            samples=[sample(3, equity=1), sample(1, equity=1)],
            initial_equity=10000,
        )

        result = dedupe_curve(curve)

        assert result.start_time == ts(1)
        assert result.end_time == ts(3)
        assert result.initial_equity == 10000

    def test_dedupe_empty_curve_unchanged(self):
        curve = EquityCurve(samples=[], initial_equity=10000)
        assert dedupe_curve(curve) is curve

    def test_trim_to_end_time(self):
        curve = EquityCurve(samples=[sample(0, equity=1), sample(1, equity=1), sample(2, equity=1)])

        result = trim_to_end_time(curve, parse_timestamp(ts(1)))

        assert [s.timestamp for s in result.samples] == [ts(0), ts(1)]
        assert result.end_time == ts(1)

    def test_trim_everything(self):
        curve = EquityCurve(samples=[sample(5, equity=1)], start_time=ts(5))

        result = trim_to_end_time(curve, parse_timestamp(ts(0)))

        assert result.samples == []
        assert result.end_time == ts(5)


class TestSplitByStartTime:
    """Tests for splitting at trading start."""

    @pytest.fixture
    def series(self):
        samples = [sample(hour, equity=10000) for hour in (9, 10, 11)]
        return normalize_equity_series(samples, 10000)

    def test_no_start(self, series):
        before, after = split_by_start_time(series, None, Timeframe.H1)

        assert before == []
        assert after == series

    def test_start_floored_to_bucket(self, series):
        start = parse_timestamp(ts(10, 30))

        before, after = split_by_start_time(series, start, Timeframe.H1)

        assert [p.timestamp for p in before] == [ts(9)]
        assert [p.timestamp for p in after] == [ts(10), ts(11)]

    def test_string_timeframe(self, series):
        before, after = split_by_start_time(series, parse_timestamp(ts(11)), "1h")

        assert len(before) == 2
        assert len(after) == 1


class TestBenchmarkSeries:
    """Tests for benchmark-only view."""

    def test_portfolio_fields_zeroed(self):
        point = TradingDataPoint(
            date="2024-01-01",
            timestamp=ts(0),
            timestamp_numeric=parse_timestamp(ts(0)),
            net_value=10500.0,
            roi=5.0,
            benchmark_return=1.5,
            benchmark_price=None,
            position=2.0,
            is_partial=True,
        )

        result = benchmark_series([point])[0]

        assert result.net_value == 0.0
        assert result.roi == 0.0
        assert result.benchmark_return == 1.5
        assert result.benchmark_price == 0.0
        assert result.position is None
        assert result.is_partial is False
        assert result.timestamp_numeric == point.timestamp_numeric
