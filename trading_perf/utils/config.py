"""
Configuration loading and validation.

Handles loading YAML configs, applying defaults and validating fields.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml
from loguru import logger

from trading_perf.data.models import Timeframe


DEFAULT_CONFIG: Dict[str, Any] = {
    "api": {
        "base_url": "",
        "token_env": "TRADING_API_TOKEN",
        "timeout": 10.0,
        "public_first": True,
    },
    "feed": {
        "timeframe": "1h",
        "poll_interval": 5.0,
        "max_points": 500,
        "warmup_retry": 2.0,
        "min_warmup_retry": 1.5,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def load_config(config_path: str = "config/settings.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file, merged over the defaults.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r") as f:
        config = yaml.safe_load(f) or {}

    logger.debug(f"Loaded config from {config_path}")
    return merge_configs(DEFAULT_CONFIG, config)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate configuration.

    Args:
        config: Configuration dictionary

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []

    api = config.get("api", {})
    if not api.get("base_url"):
        errors.append("api.base_url must be specified")

    feed = config.get("feed", {})

    timeframe = feed.get("timeframe", "1h")
    try:
        Timeframe(timeframe)
    except ValueError:
        valid = ", ".join(tf.value for tf in Timeframe)
        errors.append(f"feed.timeframe must be one of {valid}, got {timeframe}")

    poll_interval = feed.get("poll_interval", 5.0)
    if not isinstance(poll_interval, (int, float)) or poll_interval <= 0:
        errors.append(f"feed.poll_interval must be positive, got {poll_interval}")

    max_points = feed.get("max_points", 500)
    if not isinstance(max_points, int) or max_points < 1:
        errors.append(f"feed.max_points must be at least 1, got {max_points}")

    level = str(config.get("logging", {}).get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        errors.append(f"logging.level must be one of {', '.join(LOG_LEVELS)}")

    return errors


def get_api_token(config: Dict[str, Any]) -> str:
    """
    Get the API token from the environment.

    Args:
        config: Configuration dictionary

    Returns:
        Token from the variable named by api.token_env (empty if unset)
    """
    token_env = config.get("api", {}).get("token_env", "TRADING_API_TOKEN")
    return os.getenv(token_env, "")


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge multiple configuration dictionaries.

    Later configs override earlier ones.

    Args:
        *configs: Configuration dictionaries to merge

    Returns:
        Merged configuration
    """
    result = {}

    for config in configs:
        result = _deep_merge(result, config)

    return result


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def print_config_summary(config: Dict[str, Any]) -> None:
    """
    Log a summary of the configuration.

    Args:
        config: Configuration dictionary
    """
    api = config.get("api", {})
    feed = config.get("feed", {})

    logger.info("-" * 40)
    logger.info("Configuration Summary")
    logger.info("-" * 40)
    logger.info(f"API: {api.get('base_url')}")
    logger.info(f"Timeframe: {feed.get('timeframe')}")
    logger.info(f"Poll interval: {feed.get('poll_interval')}s")
    logger.info(f"Max points: {feed.get('max_points')}")
    logger.info("-" * 40)
