"""
Tests for structured logging setup.
"""

import logging

import pytest
import structlog

from app.core.config import get_settings
from app.core.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


@pytest.mark.parametrize("level,expected", [
    ("debug", logging.DEBUG),
    ("info", logging.INFO),
    ("WARNING", logging.WARNING),
    ("error", logging.ERROR),
])
def test_level_names_map_to_stdlib_levels(level, expected):
    configure_logging(level, "json")
    assert logging.getLogger().level == expected


def test_unknown_level_falls_back_to_info():
    configure_logging("chatty", "text")
    assert logging.getLogger().level == logging.INFO


def test_filtering_logger_drops_lower_levels(capsys):
    configure_logging("warning", "json")
    log = structlog.get_logger()
    log.info("task.created")
    log.warning("assignment.cross_department")

    out = capsys.readouterr().out
    assert "assignment.cross_department" in out
    assert "task.created" not in out


def test_stdlib_records_share_the_handler():
    configure_logging("info", "json")
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
