"""
Configuration loading and models for clusterwatch.

Version: 0.3.0
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from clusterwatch.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "clusterwatch.yaml"


@dataclass
class TrackerConfig:
    """Configuration for the metrics tracker.

    Attributes:
        max_history: Number of counter snapshots kept for rate derivation.
        max_chart_points: Number of derived points kept for charts.
        min_interval_seconds: Intervals shorter than this yield zero metrics.
        max_rate_per_sec: Rates above this are reported as 0.
        max_latency_ms: Latencies above this are capped.
        retention_seconds: Age after which the sweep evicts entries.
        cleanup_interval_seconds: Period of the background sweep.
    """

    max_history: int = 120
    max_chart_points: int = 60
    min_interval_seconds: float = 1.0
    max_rate_per_sec: float = 50_000_000
    max_latency_ms: float = 300_000
    retention_seconds: float = 600
    cleanup_interval_seconds: float = 300


@dataclass
class AlertingConfig:
    """Configuration for the alert evaluator and its default settings."""

    dwell_seconds: float = 30.0
    enabled: bool = True
    browser_notifications: bool = True
    sound_alerts: bool = False
    max_history_days: int = 30


@dataclass
class StorageConfig:
    """Where engine state is persisted. ``path`` None keeps it in memory."""

    path: Optional[str] = "state/clusterwatch.json"


@dataclass
class ServerConfig:
    """Configuration for the API server."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class LoggingConfig:
    """Configuration for logging.

    Attributes:
        level: Log verbosity level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        path: Log file destination path.
        reset_on_start: If True, delete log file on startup. If False, add separator.
    """

    level: str = "INFO"
    path: Optional[str] = "logs/clusterwatch.log"
    reset_on_start: bool = True


@dataclass
class NotificationsConfig:
    """Outbound notification channels. No URL means log only."""

    webhook_url: Optional[str] = None
    timeout: float = 5.0
    retry_count: int = 0
    retry_delay: float = 1.0


def _section(section_cls: type, data: Any) -> Any:
    """Build a section dataclass, ignoring keys it does not know."""
    if not isinstance(data, dict):
        return section_cls()
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", section_cls.__name__, ", ".join(unknown))
    return section_cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class ClusterwatchConfig:
    """Global configuration."""

    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClusterwatchConfig:
        """Create a config object from a dictionary."""
        return cls(
            tracker=_section(TrackerConfig, data.get("tracker")),
            alerting=_section(AlertingConfig, data.get("alerting")),
            storage=_section(StorageConfig, data.get("storage")),
            server=_section(ServerConfig, data.get("server")),
            logging=_section(LoggingConfig, data.get("logging")),
            notifications=_section(NotificationsConfig, data.get("notifications")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def resolve_config_path(root_path: Path, config_file: str | None = None) -> Path:
    """Return the config file path, relative names resolved against ``root_path``."""
    if config_file:
        candidate = Path(config_file)
        return candidate if candidate.is_absolute() else root_path / candidate
    return root_path / CONFIG_FILE_NAME


def load_config(root_path: Path, config_file: str | None = None) -> ClusterwatchConfig:
    """Load configuration from a YAML file.

    A missing file, unreadable YAML or a malformed section all fall back to
    defaults; the problem is logged.
    """
    config_path = resolve_config_path(root_path, config_file)

    if not config_path.is_file():
        logger.debug("No config file found at %s, using defaults.", config_path)
        return ClusterwatchConfig()

    logger.info("Loading config from %s", config_path)
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.error("Config file %s does not contain a mapping, using defaults.", config_path)
            return ClusterwatchConfig()
        return ClusterwatchConfig.from_dict(data)
    except Exception as e:
        logger.error("Failed to load config file: %s", e)
        return ClusterwatchConfig()


def save_config(config: ClusterwatchConfig, root_path: Path, config_file: str | None = None) -> Path:
    """Write ``config`` to the YAML file and return its path."""
    config_path = resolve_config_path(root_path, config_file)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w", encoding="utf-8") as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False)
        logger.info("Saved config to %s", config_path)
    except Exception as e:
        logger.error("Failed to save config file: %s", e)
        raise ConfigError(f"Cannot write {config_path}: {e}", details={"path": str(config_path)}) from e
    return config_path
