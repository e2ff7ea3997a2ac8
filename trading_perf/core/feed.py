"""
Performance feed.

Polls the trading platform for equity and log updates, runs them through
the chart pipeline and keeps one reconciled dataset per timeframe.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Union

import aiohttp
from loguru import logger

from trading_perf.data.api_client import TradingApiError
from trading_perf.data.models import (
    EquityCurve,
    Timeframe,
    TradingLogEvent,
    parse_timestamp,
)
from trading_perf.dashboard.chart_data import ChartDataset, build_chart_dataset, reconcile_dataset
from trading_perf.dashboard.merge import merge_trading_logs
from trading_perf.dashboard.normalizer import InvalidBaselineError, merge_equity_samples

DEFAULT_WARMUP_RETRY_MS = 2_000
MIN_WARMUP_RETRY_MS = 1_500


@dataclass(frozen=True)
class WarmupState:
    """Whether the server is still building the series, and when to retry."""
    active: bool = False
    retry_after_ms: int = 0


def warmup_state_from_curve(
    curve: Optional[EquityCurve],
    default_retry_ms: int = DEFAULT_WARMUP_RETRY_MS,
    min_retry_ms: int = MIN_WARMUP_RETRY_MS,
) -> WarmupState:
    """Warm-up is active when flagged, status is "warming", or gaps remain."""
    if curve is None:
        return WarmupState()

    status = curve.status.lower() if isinstance(curve.status, str) else None
    warming = curve.warming_up or status == "warming" or curve.gap_count > 0
    if not warming:
        return WarmupState()

    retry_seconds = curve.retry_after if curve.retry_after is not None else default_retry_ms / 1000
    return WarmupState(
        active=True,
        retry_after_ms=max(int(round(retry_seconds * 1000)), min_retry_ms),
    )


@dataclass
class _CacheEntry:
    dataset: ChartDataset
    curve: EquityCurve
    last_timestamp: Optional[int] = None


@dataclass(frozen=True)
class FeedState:
    """Snapshot of what the feed currently displays."""
    timeframe: Timeframe
    dataset: Optional[ChartDataset]
    error: Optional[Exception]
    warmup: WarmupState
    stats: Dict[str, Any] = field(default_factory=dict)


class PerformanceFeed:
    """
    Periodic fetch-and-transform loop for one trading.

    The transforms are pure; the feed only owns the displayed state. Every
    timeframe change bumps a generation counter and results fetched under
    an older generation are discarded.
    """

    def __init__(
        self,
        source,
        trading_id: str,
        timeframe: Union[Timeframe, str] = Timeframe.H1,
        poll_interval: float = 5.0,
        max_points: int = 500,
        trading_start_ms: Optional[int] = None,
        end_time_ms: Optional[int] = None,
        is_backtest: bool = False,
        warmup_retry: float = DEFAULT_WARMUP_RETRY_MS / 1000,
        min_warmup_retry: float = MIN_WARMUP_RETRY_MS / 1000,
        on_update: Optional[Callable[[ChartDataset], None]] = None,
    ):
        """
        Initialize the feed.

        Args:
            source: Data source with get_equity_curve, get_equity_curve_range
                and get_trading_logs coroutines
            trading_id: Trading to follow
            timeframe: Initial timeframe
            poll_interval: Seconds between incremental refreshes
            max_points: Sample cap for live tradings
            trading_start_ms: Trading start, splits the series
            end_time_ms: Hard end of the series (finished tradings)
            is_backtest: Backtests are not capped to max_points
            warmup_retry: Default warm-up retry delay in seconds
            min_warmup_retry: Lower bound for the warm-up retry delay
            on_update: Called with the dataset whenever it changes
        """
        self.source = source
        self.trading_id = trading_id
        self.poll_interval = poll_interval
        self.max_points = max_points
        self.trading_start_ms = trading_start_ms
        self.end_time_ms = end_time_ms
        self.is_backtest = is_backtest
        self.warmup_retry_ms = int(warmup_retry * 1000)
        self.min_warmup_retry_ms = int(min_warmup_retry * 1000)
        self.on_update = on_update

        self._timeframe = Timeframe(timeframe)
        self._generation = 0
        self._cache: Dict[Timeframe, _CacheEntry] = {}
        self._logs: List[TradingLogEvent] = []
        self._last_log_ms: Optional[int] = None
        self._error: Optional[Exception] = None
        self._warmup = WarmupState()

        self._refreshing = False
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._load_task: Optional[asyncio.Task] = None

        # Stats
        self._loads = 0
        self._refreshes = 0
        self._changes = 0
        self._errors = 0
        self._discarded = 0

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def timeframe(self) -> Timeframe:
        return self._timeframe

    @property
    def dataset(self) -> Optional[ChartDataset]:
        entry = self._cache.get(self._timeframe)
        return entry.dataset if entry else None

    @property
    def logs(self) -> List[TradingLogEvent]:
        return list(self._logs)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "loads": self._loads,
            "refreshes": self._refreshes,
            "changes": self._changes,
            "errors": self._errors,
            "discarded": self._discarded,
            "cached_timeframes": [tf.value for tf in self._cache],
        }

    @property
    def state(self) -> FeedState:
        return FeedState(
            timeframe=self._timeframe,
            dataset=self.dataset,
            error=self._error,
            warmup=self._warmup,
            stats=self.stats,
        )

    # =========================================================================
    # Fetch and transform
    # =========================================================================

    def _now_ms(self) -> int:
        return int(time.time() * 1000)

    def _effective_end_ms(self) -> int:
        now = self._now_ms()
        return min(self.end_time_ms, now) if self.end_time_ms is not None else now

    def _remember_logs(self, logs: List[TradingLogEvent]) -> bool:
        if not logs:
            return False
        self._logs = merge_trading_logs(self._logs, logs)
        self._last_log_ms = self._logs[-1].timestamp_numeric
        return True

    def _handle_fetch_error(self, error: Exception) -> None:
        self._errors += 1
        if isinstance(error, TradingApiError) and error.is_warming_up:
            logger.warning(f"Trading {self.trading_id} is warming up, will retry")
            if not self._warmup.active:
                self._warmup = WarmupState(active=True, retry_after_ms=self.warmup_retry_ms)
            return

        self._error = error
        self._warmup = WarmupState()
        logger.warning(f"Failed to fetch trading data for {self.trading_id}: {error}")

    def _apply(
        self,
        timeframe: Timeframe,
        curve: EquityCurve,
    ) -> Optional[ChartDataset]:
        """Build, reconcile and store the dataset for a timeframe."""
        try:
            fresh = build_chart_dataset(
                curve,
                self._logs,
                timeframe,
                trading_start_ms=self.trading_start_ms,
                end_time_ms=self.end_time_ms,
            )
        except InvalidBaselineError as e:
            self._errors += 1
            self._error = e
            return None

        entry = self._cache.get(timeframe)
        previous = entry.dataset if entry else None
        dataset = reconcile_dataset(previous, fresh)

        last_timestamp = dataset.last_timestamp
        if last_timestamp is None and curve.samples:
            last_timestamp = curve.samples[-1].timestamp_numeric

        self._cache[timeframe] = _CacheEntry(dataset=dataset, curve=curve, last_timestamp=last_timestamp)
        self._error = None
        self._warmup = warmup_state_from_curve(curve, self.warmup_retry_ms, self.min_warmup_retry_ms)

        if dataset is not previous:
            self._changes += 1
            logger.debug(f"Dataset for {timeframe.value} changed ({len(dataset.data)} points)")
            if self.on_update and timeframe is self._timeframe:
                self.on_update(dataset)

        return dataset

    async def load(self) -> Optional[ChartDataset]:
        """
        Full fetch of the current timeframe.

        Returns:
            The displayed dataset, or None if the fetch failed or was
            superseded by a timeframe change
        """
        generation = self._generation
        timeframe = self._timeframe

        try:
            curve, logs = await asyncio.gather(
                self.source.get_equity_curve(
                    self.trading_id, timeframe, self.max_points, self.end_time_ms,
                ),
                self.source.get_trading_logs(self.trading_id),
            )
        except (TradingApiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            if generation == self._generation:
                self._handle_fetch_error(e)
            return None

        if generation != self._generation:
            self._discarded += 1
            logger.debug(f"Discarding stale {timeframe.value} load")
            return None

        self._loads += 1
        self._remember_logs(logs)
        dataset = self._apply(timeframe, curve)
        if dataset is not None:
            logger.info(
                f"Loaded {self.trading_id} ({timeframe.value}): {len(dataset.data)} points"
            )
        return dataset

    async def refresh(self) -> Optional[ChartDataset]:
        """
        Incremental fetch since the last cached point of the current timeframe.

        No-op when nothing is cached yet or a refresh is already running.
        """
        timeframe = self._timeframe
        entry = self._cache.get(timeframe)
        if entry is None or self._refreshing:
            return None

        end_ms = self._effective_end_ms()
        last_ms = entry.last_timestamp
        if last_ms is None:
            return entry.dataset
        if self.end_time_ms is not None and last_ms >= self.end_time_ms:
            return entry.dataset

        start_ms = last_ms - timeframe.milliseconds
        earliest = parse_timestamp(entry.curve.start_time)
        if earliest is not None:
            start_ms = max(start_ms, earliest)
        if end_ms <= start_ms:
            return entry.dataset

        generation = self._generation
        self._refreshing = True
        try:
            incremental, new_logs = await asyncio.gather(
                self.source.get_equity_curve_range(self.trading_id, timeframe, start_ms, end_ms),
                self.source.get_trading_logs(self.trading_id, since=self._last_log_ms),
            )
        except (TradingApiError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            if generation == self._generation:
                self._handle_fetch_error(e)
            return None
        finally:
            self._refreshing = False

        if generation != self._generation:
            self._discarded += 1
            return None

        self._refreshes += 1

        samples = merge_equity_samples(entry.curve.samples, incremental.samples)
        samples = [s for s in samples if (s.timestamp_numeric or 0) <= end_ms]
        if not self.is_backtest and len(samples) > self.max_points:
            samples = samples[-self.max_points:]

        curve = replace(
            entry.curve,
            samples=samples,
            start_time=samples[0].timestamp if samples else entry.curve.start_time,
            end_time=samples[-1].timestamp if samples else entry.curve.end_time,
            warming_up=incremental.warming_up,
            status=incremental.status or entry.curve.status,
            gap_count=incremental.gap_count,
            retry_after=(
                incremental.retry_after if incremental.retry_after is not None
                else entry.curve.retry_after
            ),
            message=incremental.message or entry.curve.message,
        )

        has_updates = bool(incremental.samples) | self._remember_logs(new_logs)
        if not has_updates:
            entry.curve = curve
            self._warmup = warmup_state_from_curve(curve, self.warmup_retry_ms, self.min_warmup_retry_ms)
            return entry.dataset

        logger.debug(
            f"Incremental {timeframe.value}: {len(incremental.samples)} samples, {len(new_logs)} logs"
        )
        return self._apply(timeframe, curve)

    async def set_timeframe(self, timeframe: Union[Timeframe, str]) -> Optional[ChartDataset]:
        """
        Switch timeframe, serving the cached dataset when there is one.

        Any in-flight load for the old timeframe is cancelled and its
        result discarded.
        """
        timeframe = Timeframe(timeframe)
        self._generation += 1

        if self._load_task and not self._load_task.done():
            self._load_task.cancel()

        self._timeframe = timeframe
        logger.info(f"Timeframe changed to {timeframe.value}")

        entry = self._cache.get(timeframe)
        if entry is not None:
            if self.on_update:
                self.on_update(entry.dataset)
            return entry.dataset

        task = asyncio.create_task(self.load())
        self._load_task = task
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """Initial load, then refresh every poll_interval (or retry warm-up)."""
        self._running = True
        logger.info(
            f"Performance feed started for {self.trading_id} "
            f"({self._timeframe.value}, every {self.poll_interval}s)"
        )

        delay = 0.0
        while self._running:
            try:
                if delay:
                    await asyncio.sleep(delay)
                if self._warmup.active or self.dataset is None:
                    await self.load()
                else:
                    await self.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._errors += 1
                self._error = e
                logger.error(f"Performance feed error: {e}")

            if self._warmup.active or self.dataset is None:
                delay = max(
                    self._warmup.retry_after_ms or self.warmup_retry_ms,
                    self.min_warmup_retry_ms,
                ) / 1000
            else:
                delay = self.poll_interval

    def start(self) -> asyncio.Task:
        """Run the feed in a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Stop the background task."""
        self._running = False

        for task in (self._task, self._load_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._task = None
        self._load_task = None
        logger.info(f"Performance feed stopped. {self._loads} loads, {self._refreshes} refreshes")
