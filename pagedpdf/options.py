import os

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_TIMEOUT_MS = 120_000


def _default_timeout() -> int:
    """Build timeout from BUILD_TIMEOUT_MS, falling back to two minutes."""
    try:
        value = int(os.environ.get("BUILD_TIMEOUT_MS", DEFAULT_TIMEOUT_MS))
    except ValueError:
        return DEFAULT_TIMEOUT_MS
    return value if value > 0 else DEFAULT_TIMEOUT_MS


class ManuscriptEntry(BaseModel):
    """A source document contributing to the publication"""

    model_config = ConfigDict(frozen=True)

    source: str = Field(title="Source", description="Absolute path of the manuscript source file")
    target: str = Field(title="Target", description="Absolute path of the processed document served to the viewer")
    title: str | None = Field(default=None, title="Title", description="Human readable title used in progress output")


class PdfOutput(BaseModel):
    """Output target of a PDF build"""

    model_config = ConfigDict(frozen=True)

    path: str = Field(title="Path", description="Path of the PDF file to write")
    preflight: str | None = Field(default=None, title="Preflight", description="'press-ready', 'press-ready-local' or None")
    preflight_option: list[str] = Field(default_factory=list, title="Preflight Options", description="Extra options passed to press-ready")


class BuildOptions(BaseModel):
    """
    Resolved configuration of a single PDF build.

    Attributes:
        input: Path or URL of the publication entry point opened by the viewer.
        target: Output descriptor.
        workspace_dir: Directory the processed documents are written to.
        entry_context_dir: Directory manuscript source paths are displayed relative to.
        size: Page size override passed to the viewer as a user style.
        custom_style: Author style sheet injected into the viewer.
        custom_user_style: User style sheet injected into the viewer.
        single_doc: Load only the input document instead of the whole book.
        executable_chromium: Browser executable; None selects the Playwright managed Chromium.
        image: Container image used for containerized builds and press-ready.
        sandbox: Keep the Chromium sandbox enabled.
        verbose: Forward viewer console output to the log.
        timeout: Build timeout in milliseconds.
        entries: Manuscript entries, used to report progress.
        http_server: Serve the viewer over HTTP instead of file URLs.
        viewer: URL of a custom viewer; None uses the bundled viewer.
        viewer_param: Extra hash parameters appended to the viewer URL.
    """

    model_config = ConfigDict(frozen=True)

    input: str
    target: PdfOutput
    workspace_dir: str
    entry_context_dir: str
    size: str | None = None
    custom_style: str | None = None
    custom_user_style: str | None = None
    single_doc: bool = False
    executable_chromium: str | None = None
    image: str = "paged-pdf-builder:latest"
    sandbox: bool = True
    verbose: bool = False
    timeout: int = Field(default_factory=_default_timeout, gt=0)
    entries: list[ManuscriptEntry] = Field(default_factory=list)
    http_server: bool = False
    viewer: str | None = None
    viewer_param: str | None = None
