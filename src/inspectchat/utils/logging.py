"""Logging setup for the chat engine and its terminal host.

A rotating file under ``~/.inspectchat/logs`` always records the session.
Console output is reserved for chat replies, so a stderr handler only
exists while debug logging is on. :func:`set_debug_logging` flips that
state in place: it re-levels the handlers installed here, adds or drops
the console handler, and lets ``httpx`` request lines through, without
touching handlers that belong to anyone else.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "set_debug_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".inspectchat" / "logs"
_LOG_FILE_NAME = "inspectchat.log"
_HANDLER_ROLE = "_inspectchat_role"
_FORMATTER = logging.Formatter(
    fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def setup_logging(
    *,
    debug: bool = False,
    log_dir: Path | str | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path:
    """Install the rotating file handler and apply the debug state.

    Calling it again replaces the handlers from the previous call.
    """

    root = logging.getLogger()
    for handler in _own_handlers(root):
        root.removeHandler(handler)
        handler.close()

    target_dir = Path(log_dir or os.environ.get("INSPECTCHAT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    _claim(file_handler, "file")
    root.addHandler(file_handler)
    logging.captureWarnings(True)

    set_debug_logging(debug)
    return log_path


def set_debug_logging(enabled: bool) -> None:
    """Switch between INFO and DEBUG output without rebuilding the file handler."""

    root = logging.getLogger()
    level = logging.DEBUG if enabled else logging.INFO
    console = next((handler for handler in _own_handlers(root) if _role(handler) == "console"), None)
    if enabled and console is None:
        console = logging.StreamHandler(sys.stderr)
        _claim(console, "console")
        root.addHandler(console)
    elif not enabled and console is not None:
        root.removeHandler(console)
        console.close()

    root.setLevel(level)
    for handler in _own_handlers(root):
        handler.setLevel(level)
    # httpx logs one INFO line per request; httpcore is wire-level noise either way.
    logging.getLogger("httpx").setLevel(logging.INFO if enabled else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _claim(handler: logging.Handler, role: str) -> None:
    handler.setFormatter(_FORMATTER)
    setattr(handler, _HANDLER_ROLE, role)


def _role(handler: logging.Handler) -> str | None:
    return getattr(handler, _HANDLER_ROLE, None)


def _own_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [handler for handler in logger.handlers if _role(handler) is not None]
