"""
Exceptions raised by the PDF build pipeline.

Every fatal condition of a build surfaces as a subclass of BuildError.
Network failures and in-page script errors are not represented here because
they are only logged and never abort a build.
"""


class BuildError(RuntimeError):
    """Base exception for all fatal build errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "PDF build failed."


class BrowserUnavailable(BuildError):
    """Raised when the browser executable cannot be found or acquired."""

    @property
    def default_message(self) -> str:
        return "Cannot find the browser."


class RendererLoadFailure(BuildError):
    """Raised when the viewer bootstrap script reports an error."""

    @property
    def default_message(self) -> str:
        return "The viewer failed to load."


class NavigationTimeout(BuildError):
    """Raised when navigating to the viewer exceeds the timeout."""

    @property
    def default_message(self) -> str:
        return "Navigation to the viewer timed out."


class ReadinessTimeout(BuildError):
    """Raised when the viewer does not report completion in time."""

    @property
    def default_message(self) -> str:
        return "Viewer did not become ready in time."


class CaptureTimeout(BuildError):
    """Raised when printing the page to PDF exceeds the remaining budget."""

    @property
    def default_message(self) -> str:
        return "PDF capture timed out."


class TimeoutBudgetExhausted(BuildError):
    """Raised when no time is left for the capture phase."""

    @property
    def default_message(self) -> str:
        return "Typesetting process timed out"


class ContainerExecutionError(BuildError):
    """Raised when the containerized build exits unsuccessfully."""

    @property
    def default_message(self) -> str:
        return "Containerized build failed."


class PreflightError(BuildError):
    """Raised when the preflight pass over the saved PDF fails."""

    @property
    def default_message(self) -> str:
        return "Preflight processing failed."
