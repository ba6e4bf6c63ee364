"""
Structured logging for the smart meter reader, built on structlog.

Logs go through the standard library logging module so that third party
loggers (paho, pyserial) end up in the same stream. Production output is
JSON, development output is a colored console rendering.

Configuration via environment variables:
  - SMART_METER_LOGLEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
  - SMART_METER_LOG_FORMAT: JSON or TEXT (default: JSON)
  - SMART_METER_STATS_LOG_INTERVAL: seconds between statistics records (default: 300, 0 disables)

Usage:
    from smart_meter.log import logger, stats_logger

    logger.info("reading_published", registers=12)
    stats_logger.increment("resync_bytes")

        This program is free software: you can redistribute it and/or modify
        it under the terms of the GNU General Public License as published by
        the Free Software Foundation, either version 3 of the License, or
        (at your option) any later version.

        This program is distributed in the hope that it will be useful,
        but WITHOUT ANY WARRANTY; without even the implied warranty of
        MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
        GNU General Public License for more details.

        You should have received a copy of the GNU General Public License
        along with this program.  If not, see <http://www.gnu.org/licenses/>.
"""

import logging
import os
import sys
import threading
import time

import structlog
from structlog.typing import Processor

LOGLEVEL_ENV = "SMART_METER_LOGLEVEL"
LOG_FORMAT_ENV = "SMART_METER_LOG_FORMAT"
STATS_INTERVAL_ENV = "SMART_METER_STATS_LOG_INTERVAL"

STATISTICS = (
    "messages_received",
    "readings_decoded",
    "decode_errors",
    "resync_bytes",
    "soft_failures",
    "read_errors",
    "decryption_errors",
    "mqtt_messages_sent",
    "mqtt_errors",
)


def _get_log_level(level_str: str) -> int:
    """Convert log level string to logging constant."""
    level = logging.getLevelName(level_str.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the stdlib root logger.

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    log_format = os.environ.get(LOG_FORMAT_ENV, "JSON").upper()
    log_level = _get_log_level(os.environ.get(LOGLEVEL_ENV, "INFO"))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "JSON":
        final_processor: Processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_processor,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    # Silence overly verbose loggers
    logging.getLogger("paho.mqtt").setLevel(logging.WARNING)
    logging.getLogger("serial").setLevel(logging.WARNING)

    return structlog.get_logger()


class StatisticsLogger:
    """
    Counts reader and publisher events and logs them at a fixed interval.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger, interval: int = 300):
        """
        Args:
            logger: The structlog logger to use
            interval: Logging interval in seconds (0 to disable)
        """
        self._logger = logger
        self._interval = interval
        self._stats: dict[str, int] = dict.fromkeys(STATISTICS, 0)
        self._lock = threading.Lock()
        self._last_log_time = time.time()
        self._running = False
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the statistics logging thread."""
        if self._interval <= 0:
            self._logger.info("statistics_logging_disabled")
            return

        self._running = True
        self._thread = threading.Thread(target=self._log_periodically, daemon=True)
        self._thread.start()
        self._logger.info("statistics_logging_started", interval_seconds=self._interval)

    def stop(self) -> None:
        """Stop the statistics logging thread and log a final record."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2)
        self._log_stats()

    def increment(self, stat_name: str, count: int = 1) -> None:
        """Increment a known counter; unknown names are ignored."""
        with self._lock:
            if stat_name in self._stats:
                self._stats[stat_name] += count

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return self._stats.copy()

    def _log_periodically(self) -> None:
        while self._running:
            time.sleep(1)  # Check every second for shutdown
            current_time = time.time()
            if current_time - self._last_log_time >= self._interval:
                self._log_stats()
                self._last_log_time = current_time

    def _log_stats(self) -> None:
        self._logger.info("statistics", **self.snapshot())


_logger: structlog.stdlib.BoundLogger | None = None
_stats_logger: StatisticsLogger | None = None


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance, configuring logging on first use.

    Args:
        name: Optional logger name for context
    """
    global _logger
    if _logger is None:
        _logger = setup_logging()

    if name:
        return _logger.bind(logger=name)
    return _logger


def get_stats_logger() -> StatisticsLogger:
    """Get the process wide statistics logger."""
    global _stats_logger
    if _stats_logger is None:
        # Read the interval directly to avoid a circular import with config
        try:
            interval = int(os.environ.get(STATS_INTERVAL_ENV, "300"))
        except ValueError:
            interval = 300

        _stats_logger = StatisticsLogger(get_logger(), interval)

    return _stats_logger
