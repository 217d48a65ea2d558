# src/kanbot/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "kanbot.log"

# Background loggers: they run every minute, so only their problems reach the console.
BACKGROUND_LOGGERS: tuple[str, ...] = (
    "kanbot.connectors.matrix_",
    "kanbot.reminders.",
)

# Third-party loggers pinned to a minimum level (the file handler sees the same records).
NOISY_LIBRARY_LEVELS: dict[str, int] = {
    "nio": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
}


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' / 'WARNING' / ... -> logging level; unknown names -> default."""
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else default


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the interactive console readable:
    - kanbot logs pass, except background loggers below WARNING
    - Python warnings and third-party logs only at ERROR+
    """

    def __init__(self, background_prefixes: tuple[str, ...] = BACKGROUND_LOGGERS) -> None:
        super().__init__()
        self._background = background_prefixes

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("kanbot."):
            if name.startswith(self._background):
                return record.levelno >= logging.WARNING
            return True

        # py.warnings, nio.crypto first-sync spam, ...
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/kanbot",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Console handler (filtered) on stderr + full DEBUG log in <log_dir>/kanbot.log.

    Call once, before the first log line. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    fh = logging.FileHandler(str(log_file), encoding="utf-8")
    fh.setLevel(file_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    for name, level in NOISY_LIBRARY_LEVELS.items():
        # nio follows the console level when that is stricter
        logging.getLogger(name).setLevel(max(level, console_level) if name == "nio" else level)

    logging.captureWarnings(True)
    return log_file
