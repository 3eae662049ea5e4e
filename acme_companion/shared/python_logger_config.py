"""Python logging configuration for the ACME companion.

Sets up console logging for every component. The level comes from the
configuration: LOG_LEVEL (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL),
overridden to DEBUG when the DEBUG flag is set.

Environment Variables:
    PYTHON_LOG_FORMAT: Log message format (default: see below)
"""

import logging
import os
import sys
from typing import Optional

from .log_levels import resolve_level, setup_trace_logging

# Ensure TRACE level is set up
setup_trace_logging()

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    # ANSI color codes
    COLORS = {
        'TRACE': '\033[90m',     # Dark gray
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        """Format the log record with colors if supported."""
        msg = super().format(record)

        if sys.stdout.isatty():
            color = self.COLORS.get(record.levelname, '')
            if color:
                msg = f"{color}{msg}{self.RESET}"

        return msg


def setup_python_logging(
    log_level: Optional[str] = None,
    use_colors: bool = True,
    log_format: Optional[str] = None
) -> logging.Logger:
    """Configure Python logging with console output.

    Args:
        log_level: Logging level (if None, reads LOG_LEVEL from env)
        use_colors: Whether to use colored output for TTY
        log_format: Custom log format (if None, uses default)

    Returns:
        Configured root logger
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')
    log_level = log_level.upper()

    if log_format is None:
        log_format = os.getenv('PYTHON_LOG_FORMAT', DEFAULT_LOG_FORMAT)

    level = resolve_level(log_level)

    # Remove any existing handlers to avoid duplicates
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if use_colors and sys.stdout.isatty():
        formatter = ColoredFormatter(log_format)
    else:
        formatter = logging.Formatter(log_format)

    console_handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    silence_noisy_loggers()

    root_logger.info(f"Python logging configured: level={log_level}, colors={use_colors and sys.stdout.isatty()}")

    return root_logger


def silence_noisy_loggers():
    """Reduce verbosity of noisy third-party loggers."""
    noisy_loggers = [
        'asyncio',
        'httpx',
        'httpcore',
        'hpack',
        'hypercorn.access',
        'acme.client',
        'urllib3',
        'apscheduler.executors.default',
        'apscheduler.scheduler',
        'python_on_whales',
    ]

    for logger_name in noisy_loggers:
        # WARNING still surfaces errors
        logging.getLogger(logger_name).setLevel(logging.WARNING)
