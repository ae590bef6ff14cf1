"""Configuration system for clusterwatch."""

from .config import (
    AlertingConfig,
    ClusterwatchConfig,
    LoggingConfig,
    NotificationsConfig,
    ServerConfig,
    StorageConfig,
    TrackerConfig,
    load_config,
    save_config,
)

__all__ = [
    "AlertingConfig",
    "ClusterwatchConfig",
    "LoggingConfig",
    "NotificationsConfig",
    "ServerConfig",
    "StorageConfig",
    "TrackerConfig",
    "load_config",
    "save_config",
]
