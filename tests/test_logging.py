import logging
import os
from pathlib import Path

import pytest

from pagedpdf.pdf_builder_application import setup_logging


@pytest.fixture(autouse=True)
def cleanup_handlers():
    """Remove root handlers around each test so log files are not shared."""
    root_logger = logging.getLogger()
    previous_level = root_logger.level
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    yield

    for handler in root_logger.handlers[:]:
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.setLevel(previous_level)


@pytest.fixture
def log_dir(tmp_path):
    log_dir = tmp_path / "logs"
    os.environ["LOG_DIR"] = str(log_dir)
    yield log_dir
    if "LOG_DIR" in os.environ:
        del os.environ["LOG_DIR"]


def read_log(log_file: Path) -> str:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return log_file.read_text(encoding="utf-8")


def test_log_file_creation(log_dir):
    """The log directory is created on demand and holds a timestamped log file."""
    log_file = setup_logging()
    assert log_file.exists()
    assert log_file.parent == log_dir
    assert log_file.name.startswith("paged-pdf-builder_")
    assert log_file.name.endswith(".log")
    assert "Logging initialized with level: INFO" in read_log(log_file)


def test_log_level_from_env(log_dir, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    setup_logging()
    assert logging.getLogger().getEffectiveLevel() == logging.DEBUG
    assert logging.getLogger("playwright").level == logging.DEBUG
    assert logging.getLogger("docker").level == logging.DEBUG


@pytest.mark.parametrize("value", ["INVALID", "BASIC_FORMAT"])
def test_invalid_log_level(log_dir, monkeypatch: pytest.MonkeyPatch, value: str):
    """Unknown names and non-level attributes of the logging module fall back to INFO."""
    monkeypatch.setenv("LOG_LEVEL", value)
    setup_logging()
    assert logging.getLogger().getEffectiveLevel() == logging.INFO


def test_log_message_format(log_dir):
    log_file = setup_logging()
    logging.getLogger("pagedpdf.pdf_builder").warning("Page count mismatch")

    lines = [line for line in read_log(log_file).splitlines() if "Page count mismatch" in line]
    assert len(lines) == 1
    parts = lines[0].split(" - ")
    assert len(parts) == 4
    assert parts[1] == "pagedpdf.pdf_builder"
    assert parts[2] == "WARNING"
    assert parts[3] == "Page count mismatch"


def test_debug_messages_filtered_at_info(log_dir):
    log_file = setup_logging()
    logging.debug("viewer:response 200 file:///workspace/intro.html")
    logging.info("Building pages")

    content = read_log(log_file)
    assert "Building pages" in content
    assert "viewer:response" not in content


def test_setup_logging_replaces_previous_handlers(log_dir):
    setup_logging()
    setup_logging()
    handlers = logging.getLogger().handlers
    assert len([h for h in handlers if isinstance(h, logging.FileHandler)]) == 1
    assert len(handlers) == 2
