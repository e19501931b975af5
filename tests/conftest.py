"""Pytest configuration and fixtures for paged-pdf-builder tests."""

from pathlib import Path

import pytest

from pagedpdf.options import BuildOptions, ManuscriptEntry, PdfOutput
from tests.utils_browser import RecordingReporter


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    workspace_dir = tmp_path / "workspace"
    workspace_dir.mkdir()
    return workspace_dir


@pytest.fixture
def entries(tmp_path: Path, workspace: Path) -> list[ManuscriptEntry]:
    return [
        ManuscriptEntry(source=str(tmp_path / "src" / "intro.md"), target=str(workspace / "intro.html"), title="Introduction"),
        ManuscriptEntry(source=str(tmp_path / "src" / "chapter1.md"), target=str(workspace / "chapter1.html"), title="Chapter 1"),
        ManuscriptEntry(source=str(tmp_path / "src" / "chapter2.md"), target=str(workspace / "chapter2.html")),
    ]


@pytest.fixture
def build_options(tmp_path: Path, workspace: Path, entries: list[ManuscriptEntry]) -> BuildOptions:
    return BuildOptions(
        input=str(workspace / "publication.json"),
        target=PdfOutput(path=str(tmp_path / "out" / "book.pdf")),
        workspace_dir=str(workspace),
        entry_context_dir=str(tmp_path / "src"),
        entries=entries,
        timeout=5000,
        viewer="file:///opt/viewer/index.html",
    )
