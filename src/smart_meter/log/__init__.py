"""
Logging for smart_meter.

Structured logging with JSON output for production and human-readable
console output for development.

Usage:
    from smart_meter.log import logger, stats_logger

    logger.info("event_name", key="value")
    stats_logger.increment("readings_decoded")
"""

from .structured_log import StatisticsLogger, get_logger, get_stats_logger

logger = get_logger("smart_meter")

# Statistics logger (thread starts on stats_logger.start())
stats_logger = get_stats_logger()

__all__ = ["logger", "stats_logger", "get_logger", "get_stats_logger", "StatisticsLogger"]
