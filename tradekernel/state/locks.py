"""
Per-trade exclusive locks.

Mutual exclusion is scoped to a single trade id: two actors racing to
advance the same trade serialize here, transitions on different trades
never touch the same lock.

DESIGN:
    with locks.hold("T-1"):        # blocks up to timeout
        evaluate + write

    Lock objects are reference counted and dropped once no thread holds
    or waits on them, so the registry does not grow with the trade count.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List

from tradekernel.exceptions import LockTimeoutError
from tradekernel.logging import get_logger, LogStream


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class TradeLockManager:
    """Registry of one threading.Lock per trade id."""

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive: {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self._entries: Dict[str, _Entry] = {}
        self._registry_lock = threading.Lock()
        self.logger = get_logger(LogStream.TRANSITIONS)

    def _checkout(self, trade_id: str) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(trade_id)
            if entry is None:
                entry = self._entries[trade_id] = _Entry()
            entry.refs += 1
            return entry

    def _checkin(self, trade_id: str, entry: _Entry) -> None:
        with self._registry_lock:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(trade_id) is entry:
                del self._entries[trade_id]

    @contextmanager
    def hold(self, trade_id: str, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the exclusive lock for trade_id.

        Raises:
            LockTimeoutError: lock not acquired within timeout
        """
        wait = self.timeout_seconds if timeout is None else timeout
        entry = self._checkout(trade_id)
        try:
            if not entry.lock.acquire(timeout=wait):
                self.logger.warning(
                    f"Lock timeout on trade {trade_id}",
                    extra={"trade_id": trade_id, "timeout": wait},
                )
                raise LockTimeoutError(trade_id, wait)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(trade_id, entry)

    def is_locked(self, trade_id: str) -> bool:
        with self._registry_lock:
            entry = self._entries.get(trade_id)
            return entry is not None and entry.lock.locked()

    def active_trades(self) -> List[str]:
        """Trade ids currently held or waited on."""
        with self._registry_lock:
            return sorted(self._entries)
