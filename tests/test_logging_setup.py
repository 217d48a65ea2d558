# tests/test_logging_setup.py

from __future__ import annotations

import logging

import pytest

from kanbot.logging_setup import LOG_FILE_NAME, _ConsoleNoiseFilter, level_from_name, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


@pytest.mark.parametrize(
    ("name", "level", "shown"),
    [
        ("kanbot.bot.router", logging.INFO, True),
        ("kanbot.reminders.scheduler", logging.INFO, False),
        ("kanbot.reminders.dispatcher", logging.WARNING, True),
        ("kanbot.connectors.matrix_connector", logging.INFO, False),
        ("kanbot.connectors.console_connector", logging.INFO, True),
        ("nio.crypto", logging.WARNING, False),
        ("py.warnings", logging.ERROR, True),
        ("httpx", logging.INFO, False),
    ],
)
def test_console_filter(name: str, level: int, shown: bool) -> None:
    assert _ConsoleNoiseFilter().filter(_record(name, level)) is shown


def test_level_from_name() -> None:
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name(" Warning ") == logging.WARNING
    assert level_from_name("loud") == logging.INFO
    assert level_from_name(None, default=logging.ERROR) == logging.ERROR


def test_setup_logging_writes_debug_to_file(tmp_path) -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        log_file = setup_logging(log_dir=tmp_path / "logs", console_level=logging.WARNING)
        logging.getLogger("kanbot.reminders.scheduler").debug("tick done")
        for h in root.handlers:
            h.flush()

        assert log_file == tmp_path / "logs" / LOG_FILE_NAME
        assert "tick done" in log_file.read_text(encoding="utf-8")
        assert logging.getLogger("nio").level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
        logging.captureWarnings(False)
