"""
Utility modules for the performance engine.
"""

from trading_perf.utils.logger import setup_logger
from trading_perf.utils.config import (
    DEFAULT_CONFIG,
    load_config,
    validate_config,
    get_api_token,
    merge_configs,
    print_config_summary,
)

__all__ = [
    # Logger
    "setup_logger",
    # Config
    "DEFAULT_CONFIG",
    "load_config",
    "validate_config",
    "get_api_token",
    "merge_configs",
    "print_config_summary",
]
