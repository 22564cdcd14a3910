"""
Kernel exception hierarchy.

Domain rejections (invalid edge, wrong actor, missing required actions,
guard failures) are NOT exceptions: they come back as BLOCKED
TransitionAttempt records. Everything here is either a caller error
(unknown trade, refused signature) or an infrastructure failure the caller
should retry.
"""


class KernelError(Exception):
    """Base exception for trade kernel errors."""
    pass


class TradeNotFoundError(KernelError):
    """No trade with the given id."""

    def __init__(self, trade_id: str):
        super().__init__(f"Trade not found: {trade_id}")
        self.trade_id = trade_id


class TradeAlreadyExistsError(KernelError):
    """create_trade called with an id that is already taken."""

    def __init__(self, trade_id: str):
        super().__init__(f"Trade already exists: {trade_id}")
        self.trade_id = trade_id


class SignatureRejectedError(KernelError):
    """record_signature called by an actor who may not sign this trade."""

    def __init__(self, trade_id: str, reason: str):
        super().__init__(f"Signature rejected on trade {trade_id}: {reason}")
        self.trade_id = trade_id
        self.reason = reason


class InfrastructureError(KernelError):
    """Lock, persistence or log failure. Safe to retry the whole call."""
    pass


class LockTimeoutError(InfrastructureError):
    """Per-trade lock could not be acquired in time."""

    def __init__(self, trade_id: str, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for lock on trade {trade_id}")
        self.trade_id = trade_id
        self.timeout = timeout


class PersistenceError(InfrastructureError):
    """The store rejected or failed a read/write."""
    pass


class ConcurrentModificationError(PersistenceError):
    """Optimistic version check failed: another writer committed first."""

    def __init__(self, trade_id: str, expected_version: int):
        super().__init__(
            f"Trade {trade_id} was modified concurrently (expected version {expected_version})"
        )
        self.trade_id = trade_id
        self.expected_version = expected_version


class AuditLogError(InfrastructureError):
    """Audit log append or read failure."""
    pass


class AuditLogCorruptionError(AuditLogError):
    """Hash chain or checksum mismatch in audit records."""
    pass
