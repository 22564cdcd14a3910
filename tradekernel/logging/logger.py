"""
Stream loggers for the trade kernel.

Each kernel component logs to its own stream (tradekernel.<stream>), so
transition decisions, automation firings and audit checks can be shipped
and searched separately. While a transition is in flight the trade id is
carried as the correlation id on every record, including records written
by automation that the transition triggers.
"""

import functools
import logging
import logging.handlers
import time
from contextvars import ContextVar
from pathlib import Path
from typing import List, Optional

from tradekernel.config.schema import LoggingConfig

_correlation_id: ContextVar[Optional[str]] = ContextVar('tradekernel_correlation_id', default=None)

LOGGER_PREFIX = "tradekernel"


class LogStream:
    """Log stream identifiers."""
    SYSTEM = "system"            # Startup, config, shutdown, event bus
    TRANSITIONS = "transitions"  # Transition engine decisions and commits
    GUARDS = "guards"            # Guard evaluation detail
    AUTOMATION = "automation"    # Automation rule firings
    AUDIT = "audit"              # Audit log appends, chain verification
    STREAM = "stream"            # Event stream reader queries
    PERFORMANCE = "performance"  # Timing

    ALL = (SYSTEM, TRANSITIONS, GUARDS, AUTOMATION, AUDIT, STREAM, PERFORMANCE)


# ============================================================================
# CORRELATION (TRADE) ID
# ============================================================================

def set_correlation_id(correlation_id: Optional[str]) -> Optional[str]:
    _correlation_id.set(correlation_id)
    return correlation_id


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


class LogContext:
    """
    Tag every record logged inside the block with a trade id.

    Nested contexts restore the outer id on exit.

    Usage:
        with LogContext("T-1001"):
            logger.info("Evaluating transition")
    """

    def __init__(self, trade_id: Optional[str]):
        self.trade_id = trade_id
        self._token = None

    def __enter__(self) -> Optional[str]:
        self._token = _correlation_id.set(self.trade_id)
        return self.trade_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)
        self._token = None


_original_factory = logging.getLogRecordFactory()


def _correlation_id_factory(*args, **kwargs):
    record = _original_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


logging.setLogRecordFactory(_correlation_id_factory)


# ============================================================================
# SETUP / TEARDOWN
# ============================================================================

# Handlers installed by setup_logging, removed again by reset_logging
_installed: List[tuple] = []


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Install the console handler and one rotating file per stream.

    Files land in <log_dir>/<stream>.log (e.g. logs/transitions.log).
    Calling it again is a no-op until reset_logging() runs.

    Args:
        config: LoggingConfig block; defaults when None
    """
    if _installed:
        return

    from .formatters import JSONFormatter, ConsoleFormatter

    config = config or LoggingConfig()
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    file_level = getattr(logging, config.log_level.value)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    console = logging.StreamHandler()
    console.setLevel(getattr(logging, config.console_level.value))
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)
    _installed.append((root, console))

    for stream in LogStream.ALL:
        handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{stream}.log",
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        handler.setLevel(file_level)
        if config.json_logs:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s'
            ))

        logger = get_logger(stream)
        logger.addHandler(handler)
        logger.setLevel(file_level)
        _installed.append((logger, handler))

    get_logger(LogStream.SYSTEM).info("Logging initialized", extra={
        "log_dir": str(log_dir),
        "log_level": config.log_level.value,
        "json_logs": config.json_logs,
    })


def reset_logging() -> None:
    """Remove and close every handler setup_logging installed."""
    while _installed:
        logger, handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()
    for stream in LogStream.ALL:
        get_logger(stream).setLevel(logging.NOTSET)


def get_logger(stream: str) -> logging.Logger:
    """
    Logger for one stream.

    Example:
        logger = get_logger(LogStream.TRANSITIONS)
        logger.info("Transition applied", extra={"trade_id": "T-1"})
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{stream}")


# ============================================================================
# TIMING
# ============================================================================

def log_performance(stream: str = LogStream.PERFORMANCE, slow_ms: Optional[float] = None):
    """
    Time the wrapped call on the given stream.

    Completed calls log at DEBUG, or WARNING when slower than slow_ms.
    Failures log the exception type and re-raise.

    Usage:
        @log_performance(LogStream.PERFORMANCE, slow_ms=250)
        def attempt_transition(...):
            ...
    """
    def decorator(func):
        logger = get_logger(stream)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.info(f"{func.__qualname__} raised {type(e).__name__}", extra={
                    "function": func.__qualname__,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                    "error_type": type(e).__name__,
                })
                raise

            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            level = logging.WARNING if slow_ms is not None and duration_ms > slow_ms else logging.DEBUG
            logger.log(level, f"{func.__qualname__} took {duration_ms}ms", extra={
                "function": func.__qualname__,
                "duration_ms": duration_ms,
            })
            return result

        return wrapper
    return decorator
