"""Logging setup shared by the CLI and the API server.

Version: 0.3.0
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# uvicorn installs its own handlers; their levels follow ours
SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

LEVEL_ALIASES = {
    "CRITIC": "CRITICAL",
    "CRITICAL": "CRITICAL",
    "ERROR": "ERROR",
    "WARN": "WARNING",
    "WARNING": "WARNING",
    "INFO": "INFO",
    "DEBUG": "DEBUG",
}

LOG_RESTART_SEPARATOR = """

================================================================================
=== CLUSTERWATCH RESTART - {timestamp} ===
================================================================================

"""


def normalize_log_level(level_name: str | None) -> str:
    """Map a user supplied level name (``warn``, ``critic``...) to a logging level name.

    Unknown or empty names give ``INFO``.
    """
    if not level_name:
        return "INFO"
    return LEVEL_ALIASES.get(level_name.strip().upper(), "INFO")


def prepare_log_file(log_file: str | Path, reset_on_start: bool = True) -> None:
    """Truncate the previous run's log, or mark the restart in it.

    Args:
        log_file: Path to the log file.
        reset_on_start: Delete the previous file when True, otherwise append
            a restart separator.
    """
    if not log_file:
        return

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if not log_path.exists():
        return

    try:
        if reset_on_start:
            log_path.unlink()
            return
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with log_path.open("a", encoding="utf-8") as f:
            f.write(LOG_RESTART_SEPARATOR.format(timestamp=stamp))
    except OSError as exc:
        logger.warning("Failed to prepare log file %s: %s", log_path, exc)


def _has_file_handler(target: logging.Logger, log_path: Path) -> bool:
    wanted = str(log_path.resolve())
    return any(
        isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == wanted
        for h in target.handlers
    )


def _attach_file_handler(target: logging.Logger, log_path: Path, level: int, reset_on_start: bool) -> bool:
    """Add a file handler for ``log_path`` unless one is already attached."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if _has_file_handler(target, log_path):
        return False
    prepare_log_file(log_path, reset_on_start)
    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    target.addHandler(handler)
    return True


def configure_logging(
    level_name: str | None,
    extra_loggers: Iterable[str] | None = None,
    log_file: Optional[str | Path] = None,
    reset_on_start: bool = True,
) -> str:
    """Apply one level to the root logger, its handlers and the server loggers.

    Calling this again with the same ``log_file`` only changes levels; the
    file handler is attached once.

    Args:
        level_name: Level name, aliases accepted.
        extra_loggers: Additional logger names to align.
        log_file: Optional path of a file handler to attach.
        reset_on_start: If True, clear the log file. If False, add a separator.

    Returns:
        The normalized level name effectively applied.
    """
    normalized = normalize_log_level(level_name)
    level = getattr(logging, normalized, logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)

    for name in (*SERVER_LOGGERS, *(extra_loggers or ())):
        logging.getLogger(name).setLevel(level)

    if log_file:
        try:
            _attach_file_handler(root_logger, Path(log_file), level, reset_on_start)
        except OSError as exc:  # pragma: no cover - filesystem specific
            logger.warning("Failed to attach file handler %s: %s", log_file, exc)

    return normalized
