"""Logging setup for the chat sync process.

Call ``setup_logging("Server")`` once at startup; modules keep using
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

from chatsync.config import Settings, get_settings

_STREAM_HANDLER_NAME = "_chatsync_stream"
_FILE_HANDLER_NAME = "_chatsync_file"


class RoleFormatter(logging.Formatter):
    """Produces lines like:

    2026-10-19 09:12:00 [Server][INFO] chatsync.services.chat_directory:88 - Applied snapshot 3
    """

    def __init__(self, role: str, datefmt: str | None = None) -> None:
        super().__init__(datefmt=datefmt)
        self.role = role

    def format(self, record: logging.LogRecord) -> str:
        prefix = f"[{self.role}][{record.levelname}]" if self.role else f"[{record.levelname}]"
        timestamp = self.formatTime(record, self.datefmt)
        formatted = f"{timestamp} {prefix} {record.name}:{record.lineno} - {record.getMessage()}"
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            formatted += "\n" + record.exc_text
        if record.stack_info:
            formatted += "\n" + record.stack_info
        return formatted


def setup_logging(role: str, settings: Settings | None = None) -> None:
    """Configure the root logger for *role*. Safe to call more than once."""
    settings = settings or get_settings()
    root = logging.getLogger()

    if any(getattr(h, "name", None) == _STREAM_HANDLER_NAME for h in root.handlers):
        return

    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    formatter = RoleFormatter(role, datefmt="%Y-%m-%d %H:%M:%S")

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.name = _STREAM_HANDLER_NAME
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.name = _FILE_HANDLER_NAME
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in ("pymongo", "httpx", "httpcore", "urllib3", "websockets"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if "server" in role.lower():
        for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
            uv_logger = logging.getLogger(name)
            uv_logger.handlers.clear()
            uv_logger.propagate = True
