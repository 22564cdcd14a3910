"""
SQLite-backed trade store with ACID guarantees.

CRITICAL PROPERTIES:
1. SQLite backend with WAL mode (readers never block the writer)
2. One write transaction per kernel operation: trade row, audit record(s)
   and outbox event(s) commit together or not at all
3. Optimistic per-row version check on every trade update
4. Decimal values stored as TEXT (no float drift)
5. Thread-local connections; every connection is closed on close()
6. Audit and context-update tables are insert-only (no UPDATE/DELETE API)

TABLES:
- trades            aggregate rows
- context_updates   append-only history of context writes
- audit_log         append-only attempts + automation events, hash chained
- outbox            committed events awaiting / done publishing
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from tradekernel.events.types import EventType, TradeEvent
from tradekernel.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    TradeAlreadyExistsError,
)
from tradekernel.logging import get_logger, LogStream

from .lifecycle import TradeState
from .models import Trade

GENESIS_HASH = "0" * 64


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonical_json(data: Any) -> str:
    """Stable JSON used for storage and hashing."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_json_default)


class StoreTransaction:
    """
    Write handle valid inside TradeStore.transaction().

    All methods run on the transaction's connection; nothing is visible to
    other connections until the block exits cleanly.
    """

    def __init__(self, store: "TradeStore", conn: sqlite3.Connection):
        self._store = store
        self._conn = conn

    # -- trades --------------------------------------------------------------

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        row = self._conn.execute(
            "SELECT * FROM trades WHERE trade_id = ?", (trade_id,)
        ).fetchone()
        return self._store._row_to_trade(row) if row is not None else None

    def insert_trade(self, trade: Trade) -> None:
        try:
            self._conn.execute("""
                INSERT INTO trades (
                    trade_id, state, buyer_id, seller_id, logistics_id,
                    quantity, unit_price, currency, rfq_id, quote_id,
                    context, version, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                trade.trade_id,
                trade.state.value,
                trade.buyer_id,
                trade.seller_id,
                trade.logistics_id,
                str(trade.quantity),
                str(trade.unit_price),
                trade.currency,
                trade.rfq_id,
                trade.quote_id,
                canonical_json(trade.context),
                trade.version,
                trade.created_at.isoformat(),
                trade.updated_at.isoformat() if trade.updated_at else None,
            ))
        except sqlite3.IntegrityError as e:
            raise TradeAlreadyExistsError(trade.trade_id) from e

    def update_trade(
        self,
        trade_id: str,
        *,
        expected_version: int,
        updated_at: datetime,
        state: Optional[TradeState] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Write state and/or context if the row is still at expected_version.

        Returns:
            The new version

        Raises:
            ConcurrentModificationError: row changed since it was read
        """
        sets = ["version = version + 1", "updated_at = ?"]
        params: List[Any] = [updated_at.isoformat()]
        if state is not None:
            sets.append("state = ?")
            params.append(state.value)
        if context is not None:
            sets.append("context = ?")
            params.append(canonical_json(context))
        params.extend([trade_id, expected_version])

        cursor = self._conn.execute(
            f"UPDATE trades SET {', '.join(sets)} WHERE trade_id = ? AND version = ?",
            params,
        )
        if cursor.rowcount != 1:
            raise ConcurrentModificationError(trade_id, expected_version)
        return expected_version + 1

    def insert_context_update(
        self, trade_id: str, updates: Dict[str, Any], source: str, created_at: datetime
    ) -> int:
        cursor = self._conn.execute(
            "INSERT INTO context_updates (trade_id, updates, source, created_at) VALUES (?, ?, ?, ?)",
            (trade_id, canonical_json(updates), source, created_at.isoformat()),
        )
        return cursor.lastrowid

    # -- audit ---------------------------------------------------------------

    def last_audit_hash(self) -> str:
        row = self._conn.execute(
            "SELECT record_hash FROM audit_log ORDER BY sequence DESC LIMIT 1"
        ).fetchone()
        return row["record_hash"] if row is not None else GENESIS_HASH

    def insert_audit_record(
        self,
        *,
        record_id: str,
        record_type: str,
        trade_id: str,
        decision: str,
        reason_code: str,
        payload: str,
        created_at: datetime,
        prev_hash: str,
        record_hash: str,
    ) -> int:
        cursor = self._conn.execute("""
            INSERT INTO audit_log (
                record_id, record_type, trade_id, decision, reason_code,
                payload, created_at, prev_hash, record_hash
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            record_id, record_type, trade_id, decision, reason_code,
            payload, created_at.isoformat(), prev_hash, record_hash,
        ))
        return cursor.lastrowid

    # -- outbox --------------------------------------------------------------

    def enqueue_event(self, event: TradeEvent) -> None:
        self._conn.execute("""
            INSERT INTO outbox (event_id, trade_id, event_type, payload, published, created_at)
            VALUES (?, ?, ?, ?, 0, ?)
        """, (
            event.event_id,
            event.trade_id,
            event.event_type.value,
            canonical_json(event.to_dict()),
            event.timestamp.isoformat(),
        ))


class TradeStore:
    """
    SQLite persistence for trades, audit records and the event outbox.

    USAGE:
        store = TradeStore(Path("data/kernel/trades.db"))

        with store.transaction() as tx:
            trade = tx.get_trade("T-1")
            tx.update_trade("T-1", expected_version=trade.version,
                            updated_at=now, state=TradeState.RFQ_OPEN)
            tx.enqueue_event(event)

        trade = store.get_trade("T-1")
    """

    SCHEMA_VERSION = 1

    SCHEMA_SQL = (
        """
        CREATE TABLE IF NOT EXISTS trades (
            trade_id TEXT PRIMARY KEY,
            state TEXT NOT NULL,
            buyer_id TEXT NOT NULL,
            seller_id TEXT NOT NULL,
            logistics_id TEXT,
            quantity TEXT NOT NULL,
            unit_price TEXT NOT NULL,
            currency TEXT NOT NULL,
            rfq_id TEXT,
            quote_id TEXT,
            context TEXT NOT NULL,
            version INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_trades_buyer ON trades (buyer_id)",
        "CREATE INDEX IF NOT EXISTS idx_trades_seller ON trades (seller_id)",
        "CREATE INDEX IF NOT EXISTS idx_trades_logistics ON trades (logistics_id)",
        """
        CREATE TABLE IF NOT EXISTS context_updates (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            trade_id TEXT NOT NULL,
            updates TEXT NOT NULL,
            source TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS audit_log (
            sequence INTEGER PRIMARY KEY AUTOINCREMENT,
            record_id TEXT NOT NULL UNIQUE,
            record_type TEXT NOT NULL,
            trade_id TEXT NOT NULL,
            decision TEXT NOT NULL,
            reason_code TEXT NOT NULL,
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL,
            prev_hash TEXT NOT NULL,
            record_hash TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_audit_trade ON audit_log (trade_id, sequence)",
        """
        CREATE TABLE IF NOT EXISTS outbox (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            event_id TEXT NOT NULL UNIQUE,
            trade_id TEXT NOT NULL,
            event_type TEXT NOT NULL,
            payload TEXT NOT NULL,
            published INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_outbox_pending ON outbox (published, seq)",
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY
        )
        """,
    )

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5_000):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self.logger = get_logger(LogStream.SYSTEM)

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        self._initialize_db()

        self.logger.info("TradeStore initialized", extra={
            "db_path": str(self.db_path),
            "schema_version": self.SCHEMA_VERSION,
        })

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        """Thread-local connection, created on first use."""
        conn = getattr(self._local, "connection", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    check_same_thread=False,
                    timeout=self.busy_timeout_ms / 1000.0,
                )
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            except sqlite3.Error as e:
                raise PersistenceError(f"Cannot open trade store at {self.db_path}: {e}") from e

            # We control transactions explicitly
            conn.isolation_level = None
            conn.row_factory = sqlite3.Row

            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            for statement in self.SCHEMA_SQL:
                conn.execute(statement)
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
                )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Failed to initialize trade store schema: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """
        One atomic write unit (BEGIN IMMEDIATE ... COMMIT).

        Any exception inside the block rolls everything back. sqlite3
        errors surface as PersistenceError; kernel errors pass through.
        """
        conn = self._get_connection()
        if conn.in_transaction:
            raise PersistenceError("Nested store transactions are not supported")

        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot begin transaction: {e}") from e

        try:
            yield StoreTransaction(self, conn)
        except sqlite3.Error as e:
            conn.rollback()
            self.logger.error("Store transaction failed", extra={"error": str(e)}, exc_info=True)
            raise PersistenceError(f"Store transaction failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise

        try:
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            self.logger.error("Store commit failed", extra={"error": str(e)}, exc_info=True)
            raise PersistenceError(f"Store commit failed: {e}") from e

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"Store query failed: {e}") from e

    # ------------------------------------------------------------------
    # Trades (read side)
    # ------------------------------------------------------------------

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        rows = self._query("SELECT * FROM trades WHERE trade_id = ?", (trade_id,))
        return self._row_to_trade(rows[0]) if rows else None

    def trade_exists(self, trade_id: str) -> bool:
        return bool(self._query("SELECT 1 FROM trades WHERE trade_id = ?", (trade_id,)))

    def list_trades(
        self, company_id: Optional[str] = None, state: Optional[TradeState] = None
    ) -> List[Trade]:
        clauses, params = [], []
        if company_id is not None:
            clauses.append("(buyer_id = ? OR seller_id = ? OR logistics_id = ?)")
            params.extend([company_id] * 3)
        if state is not None:
            clauses.append("state = ?")
            params.append(state.value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._query(f"SELECT * FROM trades {where} ORDER BY created_at, trade_id", params)
        return [self._row_to_trade(row) for row in rows]

    def context_history(self, trade_id: str) -> List[Dict[str, Any]]:
        rows = self._query(
            "SELECT * FROM context_updates WHERE trade_id = ? ORDER BY seq", (trade_id,)
        )
        return [
            {
                "seq": row["seq"],
                "updates": json.loads(row["updates"]),
                "source": row["source"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Audit (read side)
    # ------------------------------------------------------------------

    def fetch_audit_rows(
        self,
        *,
        trade_id: Optional[str] = None,
        company_id: Optional[str] = None,
        after_sequence: Optional[int] = None,
        limit: int,
        newest_first: bool,
    ) -> List[sqlite3.Row]:
        clauses, params = [], []
        if trade_id is not None:
            clauses.append("trade_id = ?")
            params.append(trade_id)
        if company_id is not None:
            clauses.append(
                "trade_id IN (SELECT trade_id FROM trades "
                "WHERE buyer_id = ? OR seller_id = ? OR logistics_id = ?)"
            )
            params.extend([company_id] * 3)
        if after_sequence is not None:
            clauses.append("sequence > ?")
            params.append(after_sequence)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = "DESC" if newest_first else "ASC"
        params.append(limit)
        return self._query(
            f"SELECT * FROM audit_log {where} ORDER BY sequence {order} LIMIT ?", params
        )

    def iter_audit_rows(self, batch_size: int = 500) -> Iterator[sqlite3.Row]:
        """All audit rows in sequence order, fetched in batches."""
        last = 0
        while True:
            rows = self._query(
                "SELECT * FROM audit_log WHERE sequence > ? ORDER BY sequence LIMIT ?",
                (last, batch_size),
            )
            if not rows:
                return
            yield from rows
            last = rows[-1]["sequence"]

    # ------------------------------------------------------------------
    # Outbox
    # ------------------------------------------------------------------

    def pending_events(self, limit: int = 1000) -> List[TradeEvent]:
        rows = self._query(
            "SELECT payload FROM outbox WHERE published = 0 ORDER BY seq LIMIT ?", (limit,)
        )
        return [TradeEvent.from_dict(json.loads(row["payload"])) for row in rows]

    def mark_published(self, event_ids: Sequence[str]) -> int:
        if not event_ids:
            return 0
        conn = self._get_connection()
        placeholders = ",".join("?" * len(event_ids))
        try:
            cursor = conn.execute(
                f"UPDATE outbox SET published = 1 WHERE event_id IN ({placeholders})",
                list(event_ids),
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to mark events published: {e}") from e
        return cursor.rowcount

    def outbox_counts(self) -> Dict[str, int]:
        rows = self._query("SELECT published, COUNT(*) AS n FROM outbox GROUP BY published")
        counts = {"pending": 0, "published": 0}
        for row in rows:
            counts["published" if row["published"] else "pending"] = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_trade(row: sqlite3.Row) -> Trade:
        return Trade(
            trade_id=row["trade_id"],
            state=TradeState(row["state"]),
            buyer_id=row["buyer_id"],
            seller_id=row["seller_id"],
            logistics_id=row["logistics_id"],
            quantity=Decimal(row["quantity"]),
            unit_price=Decimal(row["unit_price"]),
            currency=row["currency"],
            rfq_id=row["rfq_id"],
            quote_id=row["quote_id"],
            context=json.loads(row["context"]),
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as e:
                self.logger.warning("Error closing connection", extra={"error": str(e)})
        self._local = threading.local()

        self.logger.info("TradeStore closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
