# Dashboard Module
from .normalizer import InvalidBaselineError, normalize_equity_series
from .events import match_events
from .candlesticks import build_candlesticks
from .metrics import PerformanceMetrics, compute_metrics
from .merge import MergeResult, merge_series
from .chart_data import ChartDataset, build_chart_dataset, reconcile_dataset

__all__ = [
    "InvalidBaselineError",
    "normalize_equity_series",
    "match_events",
    "build_candlesticks",
    "PerformanceMetrics",
    "compute_metrics",
    "MergeResult",
    "merge_series",
    "ChartDataset",
    "build_chart_dataset",
    "reconcile_dataset",
]
