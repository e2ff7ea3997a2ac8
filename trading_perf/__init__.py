"""
Trading Performance Engine
==========================

Reconciles equity curves, trading logs and price candles into a
chart-ready series with performance metrics.

Modules:
    core: Polling feed
    data: Raw and canonical models, REST client
    dashboard: Normalization, event matching, candles, metrics, merging
    utils: Logging and configuration
"""

__version__ = "0.1.0"
