"""
Append-only NDJSON journal mirroring audit records off the database.

Properties:
- Newline-delimited JSON: one audit record per line
- CRC32 checksum prefix per line ("xxxxxxxx:{json}") for corruption detection
- Explicit flush + fsync after each append
- Thread-safe via lock
- Reading fails fast on a corrupt line
"""

from __future__ import annotations

import json
import os
import threading
import zlib
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from tradekernel.exceptions import AuditLogCorruptionError, AuditLogError
from tradekernel.logging import get_logger, LogStream


def _checksum(text: str) -> str:
    return f"{zlib.crc32(text.encode('utf-8')) & 0xFFFFFFFF:08x}"


class AuditJournal:
    """
    NDJSON mirror of the audit log.

    The database audit table stays the source of truth; the journal exists
    so records can be shipped to cold storage or another system line by line.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self.logger = get_logger(LogStream.AUDIT)
        self._lock = threading.Lock()
        self._file = None  # type: Optional[Any]
        self._open_file()

    def _open_file(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, mode="a", encoding="utf-8", buffering=1)
        except OSError as e:
            raise AuditLogError(f"Failed to open audit journal at {self.path}: {e}") from e

    # ------------------------
    # Write path
    # ------------------------

    def append(self, record: Dict[str, Any]) -> None:
        """Append one record as a checksummed JSON line."""
        line = json.dumps(record, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)

        with self._lock:
            if self._file is None:
                self._open_file()
            try:
                self._file.write(f"{_checksum(line)}:{line}\n")
                self._file.flush()
                try:
                    os.fsync(self._file.fileno())
                except (OSError, AttributeError):
                    # Some filesystems do not support fsync
                    pass
            except OSError as e:
                self.logger.error("Failed to append to audit journal", extra={"error": str(e)}, exc_info=True)
                raise AuditLogError(f"Failed to append to audit journal: {e}") from e

    # ------------------------
    # Read path
    # ------------------------

    def iter_records(self) -> Iterator[Dict[str, Any]]:
        """
        Iterate records, validating every checksum.

        Raises:
            AuditLogCorruptionError: checksum mismatch or malformed line
        """
        if not self.path.exists():
            return

        with open(self.path, mode="r", encoding="utf-8") as f:
            for line_num, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue

                checksum, sep, payload = line.partition(":")
                if not sep or len(checksum) != 8:
                    raise AuditLogCorruptionError(
                        f"Audit journal corruption at {self.path}:{line_num}: missing checksum"
                    )

                actual = _checksum(payload)
                if actual != checksum.lower():
                    raise AuditLogCorruptionError(
                        f"Audit journal corruption at {self.path}:{line_num}: "
                        f"checksum mismatch (expected={checksum}, actual={actual})"
                    )

                try:
                    yield json.loads(payload)
                except json.JSONDecodeError as e:
                    raise AuditLogCorruptionError(
                        f"Audit journal corruption at {self.path}:{line_num}: invalid JSON: {e}"
                    ) from e

    def read_all(self) -> List[Dict[str, Any]]:
        return list(self.iter_records())

    # ------------------------
    # Lifecycle
    # ------------------------

    def close(self) -> None:
        with self._lock:
            try:
                if self._file is not None:
                    self._file.flush()
                    self._file.close()
            finally:
                self._file = None
        self.logger.info("AuditJournal closed", extra={"path": str(self.path)})

    def __enter__(self) -> "AuditJournal":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
