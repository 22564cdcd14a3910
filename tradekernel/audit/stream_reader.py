"""
Event stream reader: bounded, ordered audit feed for UIs and observers.

Reads go straight to the store on the caller's own connection. They never
take a trade lock and, with WAL, never wait on a writer.
"""

from typing import Any, Dict, List, Optional

from tradekernel.config import StreamConfig
from tradekernel.logging import get_logger, LogStream
from tradekernel.state.trade_store import TradeStore

from .log import AuditLog, AuditRecord

SCOPE_TRADE = "trade"
SCOPE_COMPANY = "company"


class EventStreamReader:
    """
    Recent-history queries over the audit log.

    The key passed to read_recent is a trade id when such a trade exists,
    otherwise it is treated as a company id (buyer, seller or logistics).
    """

    def __init__(self, store: TradeStore, config: Optional[StreamConfig] = None):
        self.store = store
        self.config = config or StreamConfig()
        self.logger = get_logger(LogStream.STREAM)

    def _effective_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValueError(f"limit must be an integer, got {limit!r}")
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        return min(limit, self.config.max_limit)

    def resolve_scope(self, key: str) -> str:
        return SCOPE_TRADE if self.store.trade_exists(key) else SCOPE_COMPANY

    def read_recent(self, key: str, limit: Optional[int] = None) -> List[AuditRecord]:
        """
        Most recent records for a trade or company, oldest first.

        Raises:
            ValueError: limit < 1
        """
        if self.resolve_scope(key) == SCOPE_TRADE:
            return self.read_recent_for_trade(key, limit)
        return self.read_recent_for_company(key, limit)

    def read_recent_for_trade(self, trade_id: str, limit: Optional[int] = None) -> List[AuditRecord]:
        return self._read_tail(limit, trade_id=trade_id)

    def read_recent_for_company(self, company_id: str, limit: Optional[int] = None) -> List[AuditRecord]:
        return self._read_tail(limit, company_id=company_id)

    def read_since(
        self, key: str, after_sequence: int = 0, limit: Optional[int] = None
    ) -> List[AuditRecord]:
        """Records after a cursor sequence, oldest first (for polling)."""
        n = self._effective_limit(limit)
        if after_sequence < 0:
            raise ValueError(f"after_sequence must be >= 0, got {after_sequence}")

        scope = {"trade_id": key} if self.resolve_scope(key) == SCOPE_TRADE else {"company_id": key}
        rows = self.store.fetch_audit_rows(
            after_sequence=after_sequence, limit=n, newest_first=False, **scope
        )
        return [AuditLog.record_from_row(row) for row in rows]

    def _read_tail(self, limit: Optional[int], **scope: Any) -> List[AuditRecord]:
        n = self._effective_limit(limit)
        rows = self.store.fetch_audit_rows(limit=n, newest_first=True, **scope)
        records = [AuditLog.record_from_row(row) for row in reversed(rows)]

        self.logger.debug("Stream read", extra={**scope, "limit": n, "returned": len(records)})
        return records

    @staticmethod
    def to_feed(records: List[AuditRecord]) -> List[Dict[str, Any]]:
        """Flatten records into the dict shape served to observers."""
        return [record.to_dict() for record in records]
