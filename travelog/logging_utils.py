"""Logging helpers for the travelog runtime.

Everything under the ``travelog`` logger goes to ``<data_dir>/logs``: a
rotating text log and, when structured logging is on, a JSON lines file
that carries the sync context (user, record, phase) attached through
``extra=``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Dict, Union

LOG_SUBPATH = Path("logs") / "travelog.log"
STRUCTURED_LOG_SUBPATH = Path("logs") / "travelog.jsonl"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".travelog_runtime"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

CONTEXT_FIELDS = ("user_id", "record_id", "phase")
# Libraries whose INFO chatter would drown the sync log.
NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, plus whichever sync context fields are set."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    data_dir: Path,
    level: Union[str, int] = logging.WARNING,
    structured: bool = True,
    console: bool = True,
) -> Path:
    """Configure the ``travelog`` logger hierarchy.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        data_dir: Directory that receives the ``logs/`` folder.
        level: Logging level (string name or int constant).
        structured: Whether to add the JSON lines handler.
        console: Whether to echo warnings and errors to stderr.

    Returns:
        Path to the primary (text) log file.
    """
    text_formatter = logging.Formatter(TEXT_FORMAT)
    log_path = _writable_path(data_dir, LOG_SUBPATH, "logs")

    logger = logging.getLogger("travelog")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(_resolve_level(level))
    logger.propagate = False

    logger.addHandler(_rotating_handler(log_path, text_formatter))
    if console:
        stderr_handler = logging.StreamHandler()
        stderr_handler.setFormatter(text_formatter)
        stderr_handler.setLevel(logging.WARNING)
        logger.addHandler(stderr_handler)
    if structured:
        json_path = _writable_path(data_dir, STRUCTURED_LOG_SUBPATH, "structured logs")
        logger.addHandler(_rotating_handler(json_path, JSONFormatter()))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_path


def _rotating_handler(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.WARNING)
    return int(level)


def _writable_path(data_dir: Path, subpath: Path, label: str) -> Path:
    """``data_dir / subpath``, or the repo-local fallback when it cannot be created."""
    target = data_dir / subpath
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        target = FALLBACK_ROOT / subpath
        target.parent.mkdir(parents=True, exist_ok=True)
        # Logging is not configured yet, so this goes straight to stderr.
        print(
            f"[config] Unable to write {label} under '{data_dir}'; "
            f"falling back to '{target.parent}'.",
            file=sys.stderr,
        )
    return target


def log_path_within(log_path: Path, data_dir: Path) -> bool:
    try:
        log_path.relative_to(data_dir)
    except ValueError:
        return False
    return True


__all__ = [
    "setup_logging",
    "log_path_within",
    "JSONFormatter",
    "LOG_SUBPATH",
    "STRUCTURED_LOG_SUBPATH",
    "FALLBACK_ROOT",
]
