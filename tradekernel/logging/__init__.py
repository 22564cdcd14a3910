"""
Logging infrastructure for the trade kernel.

Features:
- JSON structured logging
- Correlation ID tracking (trade id through a transition and its automation)
- One log stream per kernel component
- Performance timing decorator
"""

from .logger import (
    get_logger,
    setup_logging,
    reset_logging,
    LogContext,
    log_performance,
    set_correlation_id,
    get_correlation_id,
    LogStream,
)

from .formatters import (
    JSONFormatter,
    ConsoleFormatter,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "reset_logging",
    "LogContext",
    "log_performance",
    "set_correlation_id",
    "get_correlation_id",
    "LogStream",
    "JSONFormatter",
    "ConsoleFormatter",
]
