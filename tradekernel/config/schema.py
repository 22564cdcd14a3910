"""
Configuration schema using Pydantic for validation.

Single source of truth for all kernel parameters.
Validates on load, fails fast on invalid config.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================================
# STORE CONFIGURATION
# ============================================================================

class StoreConfig(BaseModel):
    """SQLite trade store settings."""

    db_path: Path = Field(
        default=Path("data/kernel/trades.db"),
        description="SQLite database holding trades, audit log and outbox"
    )

    busy_timeout_ms: int = Field(
        ge=0,
        le=60_000,
        default=5_000,
        description="SQLite busy timeout for write transactions"
    )


# ============================================================================
# LOCK CONFIGURATION
# ============================================================================

class LockConfig(BaseModel):
    """Per-trade lock settings."""

    timeout_seconds: float = Field(
        gt=0.0,
        le=60.0,
        default=5.0,
        description="Max seconds to wait for a trade's lock before LockTimeoutError"
    )


# ============================================================================
# AUTOMATION CONFIGURATION
# ============================================================================

class AutomationConfig(BaseModel):
    """Automation trigger bus settings."""

    enabled: bool = Field(
        default=True,
        description="Subscribe the automation trigger bus to kernel events"
    )

    disabled_rules: List[str] = Field(
        default_factory=list,
        description="Rule names to skip"
    )

    dedupe_window: int = Field(
        ge=100,
        le=1_000_000,
        default=10_000,
        description="Number of processed event ids remembered for redelivery dedupe"
    )

    @field_validator("disabled_rules")
    @classmethod
    def strip_rule_names(cls, v: List[str]) -> List[str]:
        names = []
        for name in v:
            name = name.strip()
            if not name:
                raise ValueError("Empty rule name not allowed")
            names.append(name)
        return names


# ============================================================================
# STREAM CONFIGURATION
# ============================================================================

class StreamConfig(BaseModel):
    """Event stream reader limits."""

    default_limit: int = Field(
        ge=1,
        le=10_000,
        default=50,
        description="Records returned when caller passes no limit"
    )

    max_limit: int = Field(
        ge=1,
        le=10_000,
        default=500,
        description="Upper bound on records returned per read"
    )

    @model_validator(mode="after")
    def validate_limits(self):
        if self.default_limit > self.max_limit:
            raise ValueError(
                f"default_limit ({self.default_limit}) must be <= max_limit ({self.max_limit})"
            )
        return self


# ============================================================================
# AUDIT CONFIGURATION
# ============================================================================

class AuditConfig(BaseModel):
    """Audit log settings."""

    journal_path: Optional[Path] = Field(
        default=None,
        description="Optional NDJSON mirror of audit records (CRC32 per line)"
    )

    verify_on_startup: bool = Field(
        default=True,
        description="Verify the audit hash chain when the kernel is built"
    )


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class LoggingConfig(BaseModel):
    """Logging configuration."""

    log_dir: Path = Field(
        default=Path("logs"),
        description="Base log directory"
    )

    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="File logging level"
    )

    console_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Console logging level"
    )

    json_logs: bool = Field(
        default=True,
        description="Use JSON formatting"
    )

    max_bytes: int = Field(
        ge=1_000_000,
        le=100_000_000,
        default=10_000_000,
        description="Max bytes per log file"
    )

    backup_count: int = Field(
        ge=1,
        le=20,
        default=5,
        description="Number of backup files"
    )


# ============================================================================
# MASTER CONFIGURATION
# ============================================================================

class KernelConfig(BaseModel):
    """
    Master configuration schema.

    Every block has defaults, so an empty YAML document is a valid config.
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    locks: LockConfig = Field(default_factory=LockConfig)
    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(validate_assignment=True)

    def ensure_directories(self) -> None:
        """Create directories for the store, journal and logs."""
        self.store.db_path.parent.mkdir(parents=True, exist_ok=True)
        if self.audit.journal_path is not None:
            self.audit.journal_path.parent.mkdir(parents=True, exist_ok=True)
        self.logging.log_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_yaml(cls, path: Path) -> "KernelConfig":
        """Load config from YAML file."""
        import yaml
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KernelConfig":
        """Load config from dictionary."""
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save config to YAML file."""
        import yaml
        data = self.model_dump(mode="json")
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
