"""
Audit log, NDJSON journal mirror and event stream reader.
"""

from .journal import AuditJournal
from .log import AuditLog, AuditRecord, chain_hash
from .stream_reader import EventStreamReader

__all__ = [
    "AuditJournal",
    "AuditLog",
    "AuditRecord",
    "EventStreamReader",
    "chain_hash",
]
