#!/usr/bin/env python3
"""
Performance feed runner.

Follows one trading, logging the metrics summary whenever the chart
dataset changes.

Usage:
    python scripts/watch_performance.py TRADING_ID --timeframe 1h

Press Ctrl+C to exit.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
from loguru import logger

from trading_perf.core.feed import PerformanceFeed
from trading_perf.dashboard.chart_data import ChartDataset
from trading_perf.dashboard.metrics import format_roi
from trading_perf.data.api_client import TradingApiClient
from trading_perf.data.models import parse_timestamp
from trading_perf.utils.config import (
    get_api_token,
    load_config,
    print_config_summary,
    validate_config,
)
from trading_perf.utils.logger import setup_logger


def parse_args():
    parser = argparse.ArgumentParser(description="Follow trading performance")

    parser.add_argument("trading_id", help="Trading to follow")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config file",
    )
    parser.add_argument(
        "--timeframe",
        help="Override feed timeframe (1m, 5m, 1h, 4h, 8h, 1d, 1w)",
    )
    parser.add_argument(
        "--start",
        help="Trading start time (ISO-8601), splits pre-start points off",
    )
    parser.add_argument(
        "--end",
        help="Trading end time (ISO-8601) for finished tradings",
    )
    parser.add_argument(
        "--backtest",
        action="store_true",
        help="Do not cap the number of points",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args()


def log_summary(dataset: ChartDataset) -> None:
    metrics = dataset.metrics
    if metrics is None:
        return

    logger.info(
        f"points={len(dataset.data)} roi={format_roi(metrics.total_roi)} "
        f"win_rate={metrics.win_rate:.2f}% sharpe={metrics.sharpe_ratio:.2f} "
        f"max_dd={metrics.max_drawdown:.2f}% trades={metrics.total_trades}"
    )


async def main():
    load_dotenv()
    args = parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    if args.timeframe:
        config["feed"]["timeframe"] = args.timeframe
    if args.debug:
        config["logging"]["level"] = "DEBUG"

    setup_logger(level=config["logging"]["level"], log_file=config["logging"]["file"])

    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error(f"Config error: {error}")
        sys.exit(1)

    print_config_summary(config)

    api = config["api"]
    feed_config = config["feed"]

    async with TradingApiClient(
        base_url=api["base_url"],
        token=get_api_token(config),
        timeout=api["timeout"],
        public_first=api["public_first"],
    ) as client:
        feed = PerformanceFeed(
            client,
            args.trading_id,
            timeframe=feed_config["timeframe"],
            poll_interval=feed_config["poll_interval"],
            max_points=feed_config["max_points"],
            trading_start_ms=parse_timestamp(args.start),
            end_time_ms=parse_timestamp(args.end),
            is_backtest=args.backtest,
            warmup_retry=feed_config["warmup_retry"],
            min_warmup_retry=feed_config["min_warmup_retry"],
            on_update=log_summary,
        )

        try:
            await feed.run()
        finally:
            await feed.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopped")
