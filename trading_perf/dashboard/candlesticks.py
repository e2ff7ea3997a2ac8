"""
Candlestick Normalizer

Builds the price series aligned with the canonical equity series.
"""
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from loguru import logger

from trading_perf.data.models import (
    RawEquitySample,
    RawOhlcv,
    TradingCandlestickPoint,
    TradingDataPoint,
    parse_timestamp,
    round2,
)


def ohlcv_by_timestamp(samples: Iterable[RawEquitySample]) -> Dict[int, RawOhlcv]:
    """Index the embedded OHLCV of each sample by the sample's timestamp."""
    result: Dict[int, RawOhlcv] = {}
    for sample in samples:
        timestamp_ms = parse_timestamp(sample.timestamp)
        if timestamp_ms is not None and sample.ohlcv is not None:
            result[timestamp_ms] = sample.ohlcv
    return result


def build_candlesticks(
    series: Sequence[TradingDataPoint],
    ohlcv_by_sample: Mapping[int, RawOhlcv],
) -> List[TradingCandlestickPoint]:
    """
    One candle per canonical point.

    A real OHLCV sample is passed through; otherwise a zero-range candle is
    synthesized from the forward-filled price on the point. Points with no
    price at all produce no candle.

    Args:
        series: Canonical points
        ohlcv_by_sample: Raw OHLCV keyed by the sample's timestamp_numeric

    Returns:
        Candles in series order
    """
    candles: List[TradingCandlestickPoint] = []
    synthetic = 0

    for point in series:
        raw = ohlcv_by_sample.get(point.timestamp_numeric)

        if raw is not None:
            timestamp = point.timestamp
            timestamp_ms = point.timestamp_numeric
            raw_ms = parse_timestamp(raw.timestamp)
            if raw_ms is not None:
                timestamp, timestamp_ms = raw.timestamp, raw_ms

            candles.append(TradingCandlestickPoint(
                timestamp=timestamp,
                timestamp_numeric=timestamp_ms,
                open=raw.open,
                high=raw.high,
                low=raw.low,
                close=raw.close,
                volume=raw.volume,
                final=raw.final,
                coverage=raw.coverage,
            ))
            continue

        if point.benchmark_price is None:
            continue

        price = round2(point.benchmark_price)
        candles.append(TradingCandlestickPoint(
            timestamp=point.timestamp,
            timestamp_numeric=point.timestamp_numeric,
            open=price,
            high=price,
            low=price,
            close=price,
        ))
        synthetic += 1

    if synthetic:
        logger.debug(f"Synthesized {synthetic} flat candles from carried price")

    return candles


def _prefer_candle(
    existing: Optional[TradingCandlestickPoint],
    incoming: TradingCandlestickPoint,
) -> bool:
    if existing is None:
        return True
    if incoming.final and not existing.final:
        return True
    if not existing.final and not incoming.final:
        return (incoming.coverage or 0) >= (existing.coverage or 0)
    return bool(existing.final) == bool(incoming.final)


def dedupe_candles(candles: Iterable[TradingCandlestickPoint]) -> List[TradingCandlestickPoint]:
    """
    One candle per timestamp, sorted.

    Final beats provisional; between provisional candles the wider coverage
    wins (ties to the later one); between finals the later one wins.
    """
    by_timestamp: Dict[int, TradingCandlestickPoint] = {}
    for candle in candles:
        if _prefer_candle(by_timestamp.get(candle.timestamp_numeric), candle):
            by_timestamp[candle.timestamp_numeric] = candle
    return [by_timestamp[ts] for ts in sorted(by_timestamp)]
