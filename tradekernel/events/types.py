"""
Kernel event types.

Events are committed to the store's outbox in the same transaction as the
state change that produced them, then published. Consumers must be
idempotent on event_id: delivery is at-least-once.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return f"EVT-{uuid.uuid4().hex}"


class EventType(str, Enum):
    STATE_TRANSITION = "state_transition"
    CONTEXT_UPDATED = "context_updated"


@dataclass(frozen=True)
class TradeEvent:
    """
    One kernel event.

    payload for STATE_TRANSITION: from_state, to_state, attempt_id, actor
    payload for CONTEXT_UPDATED:  updates, source, state
    caused_by_rule names the automation rule whose transition produced
    the event (None for actor-driven events).
    """
    event_type: EventType
    trade_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    caused_by_rule: Optional[str] = None
    event_id: str = field(default_factory=new_event_id)
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "trade_id": self.trade_id,
            "payload": self.payload,
            "caused_by_rule": self.caused_by_rule,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradeEvent":
        return cls(
            event_type=EventType(data["event_type"]),
            trade_id=data["trade_id"],
            payload=dict(data.get("payload") or {}),
            caused_by_rule=data.get("caused_by_rule"),
            event_id=data["event_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )
