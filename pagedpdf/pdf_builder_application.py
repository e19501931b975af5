import argparse
import asyncio
import logging
import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from pagedpdf.exceptions import BuildError
from pagedpdf.options import BuildOptions
from pagedpdf.pdf_builder import build_pdf


def setup_logging() -> Path:
    """
    Configure logging for the PDF builder with both file and console output.

    The function:
    - Sets log level from LOG_LEVEL environment variable (defaults to INFO)
    - Creates timestamped log files in the LOG_DIR directory (defaults to <tmp>/paged-pdf-builder/logs)
    - Configures both file and console logging handlers
    - Uses format: timestamp - logger name - log level - message

    Returns:
        Path: The path to the created log file
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = Path(os.getenv("LOG_DIR", Path(tempfile.gettempdir()) / "paged-pdf-builder" / "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    current_time = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_dir / f"paged-pdf-builder_{current_time}.log"

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    file_handler = logging.FileHandler(log_file, encoding="utf-8", delay=False)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    configured_level = getattr(logging, log_level, logging.INFO)
    if not isinstance(configured_level, int):
        configured_level = logging.INFO
    root_logger.setLevel(configured_level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # Third-party loggers follow LOG_LEVEL as well
    for logger_name in ["playwright", "pypdf", "docker", "uvicorn"]:
        logging.getLogger(logger_name).setLevel(configured_level)

    root_logger.info(f"Logging initialized with level: {log_level}")
    root_logger.info(f"Log file: {log_file}")

    for handler in root_logger.handlers:
        handler.flush()

    return log_file


def main(argv: list[str] | None = None) -> int:
    """
    Entry point used inside the build container.

    Reads the already resolved build options, serialized as JSON, from
    --bypassed-pdf-builder-option and runs the build.
    """
    parser = argparse.ArgumentParser(description="Paged PDF builder")
    parser.add_argument("--bypassed-pdf-builder-option", required=True, help="Resolved build options as JSON")
    args = parser.parse_args(argv)

    setup_logging()

    try:
        options = BuildOptions.model_validate_json(args.bypassed_pdf_builder_option)
    except ValidationError as e:
        logging.error("Invalid build options: %s", e)
        return 2

    try:
        output = asyncio.run(build_pdf(options))
    except BuildError as e:
        logging.error("Build failed: %s", e.message)
        return 1

    logging.info("Finished building %s", output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
