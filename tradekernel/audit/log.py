"""
Audit/event log: the dispute-resolution record of truth.

- Append-only: records are inserted inside the caller's store transaction
  and never updated or deleted
- Ordered by a monotonic database sequence, not wall-clock time
- Tamper-evident: each record's hash covers its payload and the previous
  record's hash (SHA-256 chain starting from GENESIS_HASH)
- Optional NDJSON journal mirror, written after commit
"""

import hashlib
import json
from dataclasses import replace
from typing import Iterable, List, Optional, Union

from tradekernel.exceptions import AuditLogCorruptionError
from tradekernel.logging import get_logger, LogStream
from tradekernel.state.models import AutomationEvent, SignatureRecord, TransitionAttempt
from tradekernel.state.trade_store import (
    GENESIS_HASH,
    StoreTransaction,
    TradeStore,
    canonical_json,
)

from .journal import AuditJournal

AuditRecord = Union[TransitionAttempt, AutomationEvent, SignatureRecord]

RECORD_TRANSITION_ATTEMPT = "transition_attempt"
RECORD_AUTOMATION_EVENT = "automation_event"
RECORD_SIGNATURE = "signature"


def chain_hash(prev_hash: str, payload: str) -> str:
    return hashlib.sha256(f"{prev_hash}:{payload}".encode("utf-8")).hexdigest()


def _hashable_payload(record: AuditRecord) -> str:
    data = record.to_dict()
    data.pop("sequence", None)
    data.pop("record_hash", None)
    return canonical_json(data)


class AuditLog:
    """
    Append and read audit records.

    USAGE:
        with store.transaction() as tx:
            attempt = audit.append(tx, attempt)   # sequence + hash assigned
        audit.mirror([attempt])                   # after commit
    """

    def __init__(self, store: TradeStore, journal: Optional[AuditJournal] = None):
        self.store = store
        self.journal = journal
        self.logger = get_logger(LogStream.AUDIT)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def append(self, tx: StoreTransaction, record: AuditRecord) -> AuditRecord:
        """Insert record in tx. Returns a copy carrying sequence and record_hash."""
        if isinstance(record, TransitionAttempt):
            record_type = RECORD_TRANSITION_ATTEMPT
            record_id = record.attempt_id
        elif isinstance(record, AutomationEvent):
            record_type = RECORD_AUTOMATION_EVENT
            record_id = record.automation_id
        elif isinstance(record, SignatureRecord):
            record_type = RECORD_SIGNATURE
            record_id = record.signature_id
        else:
            raise TypeError(f"Unsupported audit record type: {type(record)!r}")

        payload = _hashable_payload(record)
        prev_hash = tx.last_audit_hash()
        record_hash = chain_hash(prev_hash, payload)

        sequence = tx.insert_audit_record(
            record_id=record_id,
            record_type=record_type,
            trade_id=record.trade_id,
            decision=record.decision.value,
            reason_code=record.reason_code.value,
            payload=payload,
            created_at=record.timestamp,
            prev_hash=prev_hash,
            record_hash=record_hash,
        )
        return replace(record, sequence=sequence, record_hash=record_hash)

    def mirror(self, records: Iterable[AuditRecord]) -> None:
        """Copy committed records to the journal, if one is configured."""
        if self.journal is None:
            return
        for record in records:
            self.journal.append(record.to_dict())

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    @staticmethod
    def record_from_row(row) -> AuditRecord:
        data = json.loads(row["payload"])
        data["sequence"] = row["sequence"]
        data["record_hash"] = row["record_hash"]
        if row["record_type"] == RECORD_AUTOMATION_EVENT:
            return AutomationEvent.from_dict(data)
        if row["record_type"] == RECORD_SIGNATURE:
            return SignatureRecord.from_dict(data)
        return TransitionAttempt.from_dict(data)

    def history(self, trade_id: str, limit: int = 10_000) -> List[AuditRecord]:
        """All records for a trade, oldest first."""
        rows = self.store.fetch_audit_rows(trade_id=trade_id, limit=limit, newest_first=False)
        return [self.record_from_row(row) for row in rows]

    def verify_chain(self) -> int:
        """
        Recompute the hash chain over every record.

        Returns:
            Number of records verified

        Raises:
            AuditLogCorruptionError: first record whose payload, link or hash does not match
        """
        expected_prev = GENESIS_HASH
        count = 0
        for row in self.store.iter_audit_rows():
            seq = row["sequence"]
            if row["prev_hash"] != expected_prev:
                raise AuditLogCorruptionError(
                    f"Audit chain broken at sequence {seq}: prev_hash does not match preceding record"
                )
            actual = chain_hash(row["prev_hash"], row["payload"])
            if actual != row["record_hash"]:
                raise AuditLogCorruptionError(
                    f"Audit chain broken at sequence {seq}: record hash mismatch"
                )
            expected_prev = row["record_hash"]
            count += 1

        self.logger.info("Audit chain verified", extra={"records": count})
        return count
