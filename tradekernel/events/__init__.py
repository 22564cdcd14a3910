"""
Kernel events and the synchronous event bus.
"""

from .types import EventType, TradeEvent, new_event_id
from .bus import TradeEventBus

__all__ = [
    "EventType",
    "TradeEvent",
    "TradeEventBus",
    "new_event_id",
]
