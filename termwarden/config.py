"""
Configuration Management
========================

Handles loading configuration from environment variables and config files.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Optional
from dataclasses import dataclass, field, fields

from termwarden.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///.termwarden/warden.db"
CONFIG_FILENAME = "termwarden_config.json"
ENV_PREFIX = "TERMWARDEN_"

DEFAULT_MONITORING_INTERVAL = 30   # seconds
DEFAULT_STALL_THRESHOLD = 300      # seconds
MAX_COMMAND_LENGTH = 10_000


@dataclass(frozen=True)
class InsightThresholds:
    """Severity bands (minutes unchanged) and the low-confidence cut-off."""
    warning_minutes: float = 15
    error_minutes: float = 30
    critical_minutes: float = 60
    low_confidence: float = 0.7

    def __post_init__(self):
        if not (0 < self.warning_minutes <= self.error_minutes <= self.critical_minutes):
            raise ConfigurationError(
                "Severity bands must be positive and ascending "
                f"({self.warning_minutes}, {self.error_minutes}, {self.critical_minutes})"
            )
        if not 0 <= self.low_confidence <= 1:
            raise ConfigurationError(f"low_confidence must be in [0, 1]: {self.low_confidence}")


@dataclass
class WardenConfig:
    """termwarden configuration."""
    database_url: str = DEFAULT_DATABASE_URL
    default_monitoring_interval: int = DEFAULT_MONITORING_INTERVAL
    default_stall_threshold: int = DEFAULT_STALL_THRESHOLD
    max_command_length: int = MAX_COMMAND_LENGTH
    capture_lines: int = 100
    tmux_binary: str = "tmux"
    heuristic_confidence: float = 0.7
    thresholds: InsightThresholds = field(default_factory=InsightThresholds)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "WardenConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables (TERMWARDEN_*)
        2. Local config file (termwarden_config.json)
        3. Default values
        """
        config: dict[str, Any] = {}

        if config_path is None:
            config_path = Path(os.environ.get(f"{ENV_PREFIX}CONFIG", CONFIG_FILENAME))
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    config.update(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", config_path, e)

        for f in fields(cls):
            if f.name == "thresholds":
                continue
            raw = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is not None:
                config[f.name] = raw

        thresholds = dict(config.pop("thresholds", None) or {})
        for name in ("warning_minutes", "error_minutes", "critical_minutes", "low_confidence"):
            raw = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                thresholds[name] = raw

        return cls.from_dict(config, thresholds)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        thresholds: Optional[dict[str, Any]] = None,
    ) -> "WardenConfig":
        """Build a config from loosely typed values, coercing numbers."""
        known = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or key == "thresholds":
                continue
            default = known[key].default
            kwargs[key] = _coerce(key, value, type(default))

        band_kwargs = {
            key: _coerce(key, value, float)
            for key, value in (thresholds or {}).items()
            if key in {f.name for f in fields(InsightThresholds)}
        }
        config = cls(**kwargs, thresholds=InsightThresholds(**band_kwargs))
        config.validate()
        return config

    def validate(self) -> None:
        for name in ("default_monitoring_interval", "default_stall_threshold",
                     "max_command_length", "capture_lines"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if not 0 <= self.heuristic_confidence <= 1:
            raise ConfigurationError("heuristic_confidence must be in [0, 1]")


def _coerce(name: str, value: Any, target: type) -> Any:
    if target is str or isinstance(value, target):
        return value
    try:
        return target(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e
