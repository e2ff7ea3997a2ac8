"""
Data models for the performance engine.

Raw shapes delivered by the upstream REST source and the canonical,
chart-ready structures produced from them.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class LogKind(Enum):
    """Trading-log event kind."""
    OPEN_LONG = "long"
    OPEN_SHORT = "short"
    STOP_LOSS = "stop_loss"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"

    @property
    def is_trade(self) -> bool:
        """Counts towards total trades."""
        return self in (LogKind.OPEN_LONG, LogKind.OPEN_SHORT, LogKind.STOP_LOSS)

    @property
    def marker(self) -> str:
        """Chart marker type for a matched event."""
        return _MARKERS[self]


_MARKERS = {
    LogKind.OPEN_LONG: "buy",
    LogKind.OPEN_SHORT: "sell",
    LogKind.STOP_LOSS: "stop_loss",
    LogKind.DEPOSIT: "deposit",
    LogKind.WITHDRAW: "withdraw",
}


class Timeframe(Enum):
    """Nominal sampling interval of a series."""
    M1 = "1m"
    M5 = "5m"
    H1 = "1h"
    H4 = "4h"
    H8 = "8h"
    D1 = "1d"
    W1 = "1w"

    @property
    def milliseconds(self) -> int:
        return _TIMEFRAME_MS[self]


_TIMEFRAME_MS = {
    Timeframe.M1: 60 * 1000,
    Timeframe.M5: 5 * 60 * 1000,
    Timeframe.H1: 60 * 60 * 1000,
    Timeframe.H4: 4 * 60 * 60 * 1000,
    Timeframe.H8: 8 * 60 * 60 * 1000,
    Timeframe.D1: 24 * 60 * 60 * 1000,
    Timeframe.W1: 7 * 24 * 60 * 60 * 1000,
}


def timeframe_to_milliseconds(timeframe: Union[Timeframe, str]) -> int:
    """Duration of a timeframe in ms; unknown values fall back to one minute."""
    if isinstance(timeframe, Timeframe):
        return timeframe.milliseconds
    try:
        return Timeframe(timeframe).milliseconds
    except ValueError:
        return Timeframe.M1.milliseconds


# =============================================================================
# Helpers
# =============================================================================

_FRACTION_RE = re.compile(r"(?<=:\d\d)\.(\d+)")


def parse_timestamp(value: Any) -> Optional[int]:
    """
    Parse an ISO-8601 string, datetime or epoch-ms number into epoch millis.

    Naive timestamps are treated as UTC. Returns None when unparsable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            text = value.strip().replace("Z", "+00:00")
            # fromisoformat before 3.11 only takes 3 or 6 fraction digits
            text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def to_finite(value: Any) -> Optional[float]:
    """Coerce to a finite float, or None. Numeric strings are accepted."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def round_to(value: float, places: int = 2) -> float:
    """Round half-up on the decimal representation of the value."""
    try:
        quantum = Decimal(1).scaleb(-places)
        return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return value


def round2(value: float) -> float:
    return round_to(value, 2)


def round4(value: float) -> float:
    return round_to(value, 4)


# =============================================================================
# Raw Data Types
# =============================================================================

@dataclass(frozen=True, slots=True)
class RawOhlcv:
    """OHLCV candle embedded in an equity sample (or delivered standalone)."""
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None
    final: Optional[bool] = None
    coverage: Optional[float] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional["RawOhlcv"]:
        """Parse an OHLCV object; None if any of open/high/low/close is missing."""
        if not data:
            return None

        prices = [to_finite(data.get(key)) for key in ("open", "high", "low", "close")]
        if any(price is None for price in prices):
            return None

        final = data.get("final")
        return cls(
            open=prices[0],
            high=prices[1],
            low=prices[2],
            close=prices[3],
            volume=to_finite(data.get("volume")),
            final=bool(final) if final is not None else None,
            coverage=to_finite(data.get("coverage")),
            timestamp=data.get("timestamp"),
        )


@dataclass(frozen=True, slots=True)
class RawEquitySample:
    """
    One timestamped observation from the upstream source.

    Any numeric field may be None, signalling a reporting gap for that instant.
    """
    timestamp: str
    equity: Optional[float] = None
    benchmark_return: Optional[float] = None
    stock_price: Optional[float] = None
    stock_balance: Optional[float] = None
    quote_balance: Optional[float] = None
    ohlcv: Optional[RawOhlcv] = None

    @property
    def timestamp_numeric(self) -> Optional[int]:
        return parse_timestamp(self.timestamp)

    @property
    def has_valid_equity(self) -> bool:
        """At least one field from which a portfolio value can be derived."""
        equity = to_finite(self.equity)
        price = to_finite(self.stock_price)
        return (
            (equity is not None and equity > 0)
            or (price is not None and price > 0)
            or to_finite(self.stock_balance) is not None
            or to_finite(self.quote_balance) is not None
        )

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RawEquitySample":
        return cls(
            timestamp=data.get("timestamp") or data.get("time") or "",
            equity=to_finite(data.get("equity")),
            benchmark_return=to_finite(data.get("benchmark_return")),
            stock_price=to_finite(data.get("stock_price")),
            stock_balance=to_finite(data.get("stock_balance")),
            quote_balance=to_finite(data.get("quote_balance")),
            ohlcv=RawOhlcv.from_api(data.get("ohlcv")),
        )


@dataclass(frozen=True, slots=True)
class TradingLogEvent:
    """Trading-log entry. Immutable, consumed read-only."""
    event_time: str
    kind: LogKind
    message: str = ""
    price: Optional[float] = None
    id: Optional[str] = None

    @property
    def timestamp_numeric(self) -> Optional[int]:
        return parse_timestamp(self.event_time)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> Optional["TradingLogEvent"]:
        """Parse a log entry; None for kinds the engine does not know."""
        try:
            kind = LogKind(data.get("type"))
        except ValueError:
            return None

        info = data.get("info") or {}
        return cls(
            event_time=data.get("event_time", ""),
            kind=kind,
            message=data.get("message", "") or "",
            price=to_finite(info.get("price")),
            id=data.get("id"),
        )


@dataclass(frozen=True, slots=True)
class EquityCurve:
    """Equity curve response envelope with its baseline and warm-up status."""
    samples: List[RawEquitySample] = field(default_factory=list)
    initial_equity: Optional[float] = None
    baseline_price: Optional[float] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    warming_up: bool = False
    status: Optional[str] = None
    gap_count: int = 0
    retry_after: Optional[float] = None
    message: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "EquityCurve":
        initial_equity = None
        for key in ("initial_equity", "initial_balance", "initial_funds"):
            initial_equity = to_finite(data.get(key))
            if initial_equity is not None:
                break

        return cls(
            samples=[RawEquitySample.from_api(p) for p in data.get("data_points") or []],
            initial_equity=initial_equity,
            baseline_price=to_finite(data.get("baseline_price")),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            warming_up=bool(data.get("warming_up", False)),
            status=data.get("status"),
            gap_count=int(data.get("gap_count") or 0),
            retry_after=to_finite(data.get("retry_after")),
            message=data.get("message"),
        )


# =============================================================================
# Canonical Types
# =============================================================================

@dataclass(frozen=True, slots=True)
class MatchedEvent:
    """Trading-log event attached to a chart point."""
    type: str
    description: str
    event_time: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TradingDataPoint:
    """Unit of the chart-ready equity series."""
    date: str
    timestamp: str
    timestamp_numeric: int
    net_value: float
    roi: float
    benchmark_return: Optional[float] = None
    benchmark_price: Optional[float] = None
    position: Optional[float] = None
    matched_event: Optional[MatchedEvent] = None
    is_partial: bool = False


@dataclass(frozen=True, slots=True)
class TradingCandlestickPoint:
    """Price-action bar aligned with a canonical point."""
    timestamp: str
    timestamp_numeric: int
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None
    final: Optional[bool] = None
    coverage: Optional[float] = None


@dataclass(frozen=True, slots=True)
class TradingMetrics:
    """Performance summary, fully recomputed from a canonical series."""
    total_roi: float = 0.0
    win_rate: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    total_trades: int = 0
    initial_price: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalROI": self.total_roi,
            "winRate": self.win_rate,
            "sharpeRatio": self.sharpe_ratio,
            "maxDrawdown": self.max_drawdown,
            "totalTrades": self.total_trades,
            "initialPrice": self.initial_price,
        }


@dataclass(frozen=True, slots=True)
class Baseline:
    """ROI reference: initial equity and optional asset price at series start."""
    initial_equity: float
    baseline_price: Optional[float] = None

    @property
    def is_valid(self) -> bool:
        equity = to_finite(self.initial_equity)
        return equity is not None and equity > 0
