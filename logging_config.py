"""
Logging setup for migration runs.

Worker threads tag their records with the show they are processing through
show_context(), so every line emitted while upserting a show carries its id
without passing it around. Console output is human-readable by default or
JSON lines with STRUCTURED_LOGGING; LOG_FILE adds a rotating JSON log.
"""

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

# Id of the show the current worker thread is upserting
show_context_var: ContextVar[Optional[str]] = ContextVar('show_context', default=None)

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5


def get_show_context() -> Optional[str]:
    """Show id of the current worker, None on the main thread."""
    return show_context_var.get()


@contextmanager
def show_context(show_id):
    """
    Tag log records emitted inside the block with a show id.

    Usage:
        with show_context(show.id):
            logger.info("Creating content")
    """
    token = show_context_var.set(str(show_id))
    try:
        yield
    finally:
        show_context_var.reset(token)


def _worker_name() -> str:
    """"upsert_3" for pool threads, "main" otherwise."""
    name = threading.current_thread().name
    return "main" if name == "MainThread" else name


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"ts": "...", "level": "INFO", "worker": "upsert_2", "show_id": "1001", "message": "..."}

    Known `extra=` fields from the pipeline and the Heartcore client are
    copied when present.
    """

    EXTRA_FIELDS = (
        'show_name', 'outcome', 'culture', 'status_code', 'duration_ms',
    )

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "worker": _worker_name(),
            "show_id": get_show_context(),
            "message": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key)) for key in self.EXTRA_FIELDS if hasattr(record, key)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    """
    Console lines for interactive runs.

    12:00:01 INFO     [show 1001] Created: Under the Dome

    The timestamp is omitted with timestamps=False.
    """

    LEVEL_COLORS = {
        'DEBUG': '\033[36m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True, timestamps: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()
        self.timestamps = timestamps

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        color = self.LEVEL_COLORS.get(record.levelname) if self.use_colors else None
        if color:
            level = f"{color}{level}{self.RESET}"

        show_id = get_show_context()
        parts = [level, f"[show {show_id}] {record.getMessage()}" if show_id else record.getMessage()]
        if self.timestamps:
            parts.insert(0, datetime.fromtimestamp(record.created).strftime("%H:%M:%S"))

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    structured: bool = False,
    use_colors: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Install console (and optional file) handlers on the root logger.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        structured: JSON lines on the console instead of human format
        use_colors: Color level names on a terminal (human format only)
        log_file: Also write JSON lines to this rotating file
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(StructuredFormatter() if structured else HumanFormatter(use_colors=use_colors))
    root.addHandler(console)

    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(StructuredFormatter())
        root.addHandler(file_handler)

    for noisy in ("urllib3", "requests", "PIL"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
