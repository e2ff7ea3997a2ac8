"""Raw and canonical data models, and the upstream REST client."""

from trading_perf.data.models import (
    LogKind,
    Timeframe,
    RawOhlcv,
    RawEquitySample,
    TradingLogEvent,
    EquityCurve,
    MatchedEvent,
    TradingDataPoint,
    TradingCandlestickPoint,
    TradingMetrics,
    Baseline,
    parse_timestamp,
    timeframe_to_milliseconds,
)
from trading_perf.data.api_client import TradingApiClient, TradingApiError

__all__ = [
    # Enums
    "LogKind",
    "Timeframe",
    # Raw types
    "RawOhlcv",
    "RawEquitySample",
    "TradingLogEvent",
    "EquityCurve",
    # Canonical types
    "MatchedEvent",
    "TradingDataPoint",
    "TradingCandlestickPoint",
    "TradingMetrics",
    "Baseline",
    # Helpers
    "parse_timestamp",
    "timeframe_to_milliseconds",
    # Client
    "TradingApiClient",
    "TradingApiError",
]
