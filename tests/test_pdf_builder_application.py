"""Tests for the in-container command line entry point."""

import logging
from unittest.mock import AsyncMock, patch

import pytest

from pagedpdf.exceptions import TimeoutBudgetExhausted
from pagedpdf.options import BuildOptions
from pagedpdf.pdf_builder_application import main


@pytest.fixture(autouse=True)
def isolated_logging(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    root_logger = logging.getLogger()
    previous_handlers = root_logger.handlers[:]
    previous_level = root_logger.level
    yield
    for handler in root_logger.handlers[:]:
        if handler not in previous_handlers:
            handler.close()
            root_logger.removeHandler(handler)
    root_logger.setLevel(previous_level)


def test_main_runs_build_with_bypassed_options(build_options: BuildOptions):
    with patch("pagedpdf.pdf_builder_application.build_pdf", new_callable=AsyncMock, return_value="/data/out/book.pdf") as mock_build:
        exit_code = main(["--bypassed-pdf-builder-option", build_options.model_dump_json()])

    assert exit_code == 0
    (options,) = mock_build.await_args.args
    assert options.model_dump() == build_options.model_dump()


def test_main_reports_build_errors(build_options: BuildOptions, tmp_path):
    with patch(
        "pagedpdf.pdf_builder_application.build_pdf",
        new_callable=AsyncMock,
        side_effect=TimeoutBudgetExhausted(),
    ):
        exit_code = main(["--bypassed-pdf-builder-option", build_options.model_dump_json()])

    assert exit_code == 1
    log_file = next((tmp_path / "logs").glob("paged-pdf-builder_*.log"))
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "Build failed: Typesetting process timed out" in log_file.read_text(encoding="utf-8")


@pytest.mark.parametrize("payload", ['{"input": "book.md"}', "not json", '{"input": "a", "target": {"path": "b"}, "workspace_dir": "w", "entry_context_dir": "c", "timeout": 0}'])
def test_main_rejects_invalid_options(payload: str):
    with patch("pagedpdf.pdf_builder_application.build_pdf", new_callable=AsyncMock) as mock_build:
        assert main(["--bypassed-pdf-builder-option", payload]) == 2
    mock_build.assert_not_awaited()


def test_main_requires_options():
    with pytest.raises(SystemExit):
        main([])
