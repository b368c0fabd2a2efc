"""
Configuration management and loading.

Reads the tracker's YAML settings into frozen, validated dataclasses.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

LOG_LEVELS = ("debug", "info", "warning", "error")


@dataclass(frozen=True)
class DatabaseConfig:
    """Where the event store lives."""
    path: str = "skill_usage.db"

    def __post_init__(self):
        if not self.path:
            raise ValueError("database.path cannot be empty")


@dataclass(frozen=True)
class TrackingConfig:
    """Settings for the execution wrapper and its submission path."""
    default_category: str = "default"
    api_base_url: Optional[str] = None
    api_key_env: str = "SKILL_TRACKER_API_KEY"
    timeout_seconds: float = 5.0
    background: bool = False

    def __post_init__(self):
        if not self.default_category:
            raise ValueError("tracking.default_category cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("tracking.timeout_seconds must be > 0")

    @property
    def api_key(self) -> Optional[str]:
        """Bearer key read from the configured environment variable."""
        value = os.getenv(self.api_key_env, "").strip()
        return value or None


@dataclass(frozen=True)
class AnalyticsConfig:
    """Default lookback windows for the aggregation endpoints."""
    summary_days: int = 7
    tools_days: int = 7
    retention_days: int = 30
    errors_days: int = 7
    errors_limit: int = 50

    def __post_init__(self):
        for name in ("summary_days", "tools_days", "retention_days", "errors_days", "errors_limit"):
            if getattr(self, name) <= 0:
                raise ValueError(f"analytics.{name} must be > 0")


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server binding."""
    host: str = "127.0.0.1"
    port: int = 8787
    log_level: str = "info"

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError("server.port must be between 1 and 65535")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"server.log_level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class TrackerConfig:
    """Complete tracker configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def default_config() -> TrackerConfig:
    """Configuration with every value at its default."""
    return TrackerConfig()


# Expected type for each key, per section.
_SCHEMA: Dict[str, Dict[str, type]] = {
    "database": {"path": str},
    "tracking": {
        "default_category": str,
        "api_base_url": str,
        "api_key_env": str,
        "timeout_seconds": float,
        "background": bool,
    },
    "analytics": {
        "summary_days": int,
        "tools_days": int,
        "retention_days": int,
        "errors_days": int,
        "errors_limit": int,
    },
    "server": {"host": str, "port": int, "log_level": str},
}

_SECTIONS = {
    "database": DatabaseConfig,
    "tracking": TrackingConfig,
    "analytics": AnalyticsConfig,
    "server": ServerConfig,
}


def load_tracker_config(path: str) -> TrackerConfig:
    """Load and validate tracker configuration from a YAML file.

    Every section and key is optional. Unknown keys and mistyped values
    are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated TrackerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Tracker config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(name, raw_config.get(name) or {})
        for name in _SECTIONS
    }
    return TrackerConfig(**sections)


def _parse_section(name: str, data: Any):
    """Validate one section and build its dataclass.

    Args:
        name: Section name, also used in error messages
        data: Raw section data

    Returns:
        The section's config dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    schema = _SCHEMA[name]
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        # null keeps the default
        if value is None:
            continue
        values[key] = _coerce(f"{name}.{key}", value, schema[key])

    return _SECTIONS[name](**values)


def _coerce(path: str, value: Any, expected: type) -> Any:
    if expected is bool:
        if not isinstance(value, bool):
            raise ValueError(f"'{path}' must be true or false")
        return value
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{path}' must be an integer")
        return value
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{path}' must be a number")
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    return value
