"""
Event Matcher

Attaches trading-log events to the nearest chart point.
"""
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence, Set, Tuple, Union

from loguru import logger

from trading_perf.data.models import (
    MatchedEvent,
    Timeframe,
    TradingDataPoint,
    TradingLogEvent,
    timeframe_to_milliseconds,
)

MIN_MATCH_TOLERANCE_MS = 60_000


def match_tolerance_ms(timeframe: Union[Timeframe, str]) -> int:
    """Half a timeframe, never less than one minute."""
    return max(timeframe_to_milliseconds(timeframe) // 2, MIN_MATCH_TOLERANCE_MS)


def index_events(events: Iterable[TradingLogEvent]) -> Dict[int, MatchedEvent]:
    """
    Map exact event time to its chart marker.

    Events are stable-sorted by time first, so iteration order is
    chronological regardless of upstream order. A later event at the same
    instant overwrites the earlier one.
    """
    timed: List[Tuple[int, TradingLogEvent]] = []
    for event in events:
        timestamp_ms = event.timestamp_numeric
        if timestamp_ms is not None:
            timed.append((timestamp_ms, event))

    timed.sort(key=lambda item: item[0])

    by_time: Dict[int, MatchedEvent] = {}
    for timestamp_ms, event in timed:
        by_time[timestamp_ms] = MatchedEvent(
            type=event.kind.marker,
            description=event.message,
            event_time=timestamp_ms,
        )
    return by_time


def match_events(
    series: Sequence[TradingDataPoint],
    events: Iterable[TradingLogEvent],
    timeframe: Union[Timeframe, str],
) -> List[TradingDataPoint]:
    """
    Attach each event to the nearest free point within tolerance.

    Greedy, one scan per event in chronological order: the closest point
    not yet carrying an event wins, ties go to the earlier point. Events
    with no point in range are dropped. An event whose instant is already
    on the series is not matched again, so a second pass is a no-op.

    Returns:
        New list; points that received an event are replaced, the rest
        are the input objects.
    """
    tolerance = match_tolerance_ms(timeframe)
    result = list(series)

    matched_times: Set[int] = {
        p.matched_event.event_time for p in result
        if p.matched_event is not None and p.matched_event.event_time is not None
    }
    taken = [p.matched_event is not None for p in result]
    unmatched = 0

    for event_time, marker in index_events(events).items():
        if event_time in matched_times:
            continue

        best_index = -1
        best_diff = tolerance + 1

        for index, point in enumerate(result):
            if taken[index]:
                continue
            diff = abs(point.timestamp_numeric - event_time)
            if diff <= tolerance and diff < best_diff:
                best_index = index
                best_diff = diff

        if best_index < 0:
            unmatched += 1
            logger.debug(f"No point within {tolerance}ms of event at {event_time} ({marker.type})")
            continue

        result[best_index] = replace(result[best_index], matched_event=marker)
        taken[best_index] = True

    if unmatched:
        logger.debug(f"{unmatched} trading events left unmatched")

    return result
