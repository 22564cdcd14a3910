"""
Configuration system with Pydantic validation.
"""

from .schema import (
    KernelConfig,
    StoreConfig,
    LockConfig,
    AutomationConfig,
    StreamConfig,
    AuditConfig,
    LoggingConfig,
    LogLevel,
)

from .loader import (
    ConfigLoader,
    load_config,
    env_flag,
)

__all__ = [
    "KernelConfig",
    "StoreConfig",
    "LockConfig",
    "AutomationConfig",
    "StreamConfig",
    "AuditConfig",
    "LoggingConfig",
    "LogLevel",
    "ConfigLoader",
    "load_config",
    "env_flag",
]
