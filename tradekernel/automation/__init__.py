"""
Automation rules and the trigger bus that runs them.
"""

from .rules import (
    AutomationRule,
    AUTO_CUSTOMS_CLEARANCE,
    AUTO_COMPLETE_ON_DUAL_CONFIRMATION,
    DEFAULT_RULES,
)
from .trigger_bus import AutomationTriggerBus

__all__ = [
    "AutomationRule",
    "AutomationTriggerBus",
    "AUTO_CUSTOMS_CLEARANCE",
    "AUTO_COMPLETE_ON_DUAL_CONFIRMATION",
    "DEFAULT_RULES",
]
