"""
Kernel configuration loading.

Sources, lowest to highest precedence:
1. config.yaml in the config directory (optional; defaults fill gaps)
2. .env.local in the same directory, loaded into the process environment
   without replacing variables that are already set
3. TRADEKERNEL_* environment variables
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict, Tuple

import yaml
from dotenv import load_dotenv

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}


def env_flag(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in _TRUE_VALUES


# env var -> (section, key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "TRADEKERNEL_DB_PATH": ("store", "db_path", str),
    "TRADEKERNEL_BUSY_TIMEOUT_MS": ("store", "busy_timeout_ms", int),
    "TRADEKERNEL_LOCK_TIMEOUT": ("locks", "timeout_seconds", float),
    "TRADEKERNEL_STREAM_DEFAULT_LIMIT": ("stream", "default_limit", int),
    "TRADEKERNEL_STREAM_MAX_LIMIT": ("stream", "max_limit", int),
    "TRADEKERNEL_JOURNAL_PATH": ("audit", "journal_path", str),
    "TRADEKERNEL_LOG_DIR": ("logging", "log_dir", str),
    "TRADEKERNEL_LOG_LEVEL": ("logging", "log_level", str.upper),
    "TRADEKERNEL_AUTOMATION_ENABLED": ("automation", "enabled", lambda raw: raw.lower() in _TRUE_VALUES),
}


class ConfigLoader:
    """
    Builds a KernelConfig for one config directory.

    USAGE:
        config = ConfigLoader(Path("config")).load_and_validate()
    """

    def __init__(self, config_dir: Path = Path("config")):
        self.config_dir = Path(config_dir)
        self.yaml_path = self.config_dir / "config.yaml"
        self.env_path = self.config_dir / ".env.local"

    def _read_yaml(self) -> Dict[str, Any]:
        if not self.yaml_path.exists():
            return {}
        with open(self.yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.yaml_path} must contain a mapping, got {type(data).__name__}")
        return data

    @staticmethod
    def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
        for env_name, (section, key, convert) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                value = convert(raw.strip())
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_name}: {raw!r}") from e
            data.setdefault(section, {})[key] = value
        return data

    def load(self) -> Dict[str, Any]:
        """
        Raw merged settings, not yet validated.

        Raises:
            ValueError: config.yaml is not a mapping, or an env override does not parse
        """
        data = self._read_yaml()
        if self.env_path.exists():
            load_dotenv(self.env_path, override=False)
        return self._apply_env(data)

    def load_and_validate(self):
        """
        Merged settings as a KernelConfig.

        Raises:
            ValueError: wraps any schema violation
        """
        from .schema import KernelConfig

        data = self.load()
        try:
            return KernelConfig(**data)
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}") from e


def load_config(config_dir: Path = Path("config")):
    """KernelConfig from config_dir (see ConfigLoader)."""
    return ConfigLoader(config_dir).load_and_validate()
