"""
Log formatters.

- JSONFormatter: one flat JSON object per line for log shipping
- ConsoleFormatter: short colored lines for operators
"""

import json
import logging
from datetime import datetime, timezone

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "correlation_id",
}


def record_extras(record: logging.LogRecord) -> dict:
    """Fields passed through extra={...} on the logging call."""
    return {
        key: value for key, value in vars(record).items()
        if key not in _RESERVED and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    Flat JSON lines. Extra fields sit at top level next to the fixed keys:

    {"ts": "2026-01-15T12:00:00.123456+00:00", "level": "INFO",
     "stream": "transitions", "trade": "T-1001",
     "msg": "Transition APPLIED: inquiry -> rfq_open", "sequence": 1, ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "stream": record.name.rsplit(".", 1)[-1],
            "trade": getattr(record, "correlation_id", None),
            "msg": record.getMessage(),
        }
        for key, value in record_extras(record).items():
            entry.setdefault(key, value)

        if record.exc_info:
            entry["exc_type"] = record.exc_info[0].__name__
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, sort_keys=False)


class ConsoleFormatter(logging.Formatter):
    """
    12:00:00 WARNING  automation   T-1001  Automation auto_customs_clearance BLOCKED ...
    """

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        clock = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime('%H:%M:%S')
        level = f"{record.levelname:8}"
        if self.use_colors and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.RESET}"

        stream = record.name.rsplit(".", 1)[-1]
        trade = getattr(record, "correlation_id", None) or "-"
        line = f"{clock} {level} {stream:12} {trade:8} {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
