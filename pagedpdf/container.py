"""
Running build steps inside a container with the Docker SDK.

Host paths are mounted below CONTAINER_ROOT_DIR, keeping their absolute
layout, so any host path can be translated with `to_container_path`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote, urlparse

import docker
from docker.errors import DockerException, ImageNotFound

from pagedpdf.exceptions import ContainerExecutionError
from pagedpdf.sanitization import sanitize_for_logging

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

CONTAINER_ROOT_DIR = "/data"
IN_CONTAINER_ENV = "PAGEDPDF_IN_CONTAINER"


def check_container_environment() -> bool:
    """Return True when running inside a container."""
    env_value = os.environ.get(IN_CONTAINER_ENV)
    if env_value is not None:
        return env_value.lower() in ("true", "1", "yes", "on")
    return Path("/.dockerenv").exists()


def to_container_path(location: str) -> str:
    """
    Translate a host path or file URL into its location inside the container.

    Remote URLs are returned unchanged. Windows drive letters become a lower-case
    directory, e.g. `C:\\books\\a.md` -> `/data/c/books/a.md`.
    """
    parsed = urlparse(location)
    if parsed.scheme == "file":
        path = unquote(parsed.path)
        if PureWindowsPath(path.lstrip("/")).drive:
            path = path.lstrip("/")
        return f"file://{quote(to_container_path(path))}"
    # A one letter scheme is a Windows drive, not a URL
    if len(parsed.scheme) > 1:
        return location

    windows_path = PureWindowsPath(location)
    if windows_path.drive:
        return PurePosixPath(CONTAINER_ROOT_DIR, windows_path.drive[0].lower(), *windows_path.parts[1:]).as_posix()
    return PurePosixPath(CONTAINER_ROOT_DIR, *PurePosixPath(os.path.abspath(location)).parts[1:]).as_posix()


def collect_volume_args(mount_points: Iterable[str]) -> dict[str, dict[str, str]]:
    """
    Docker SDK volume bindings for the given host directories.

    Duplicates and directories nested in another mount point are dropped.
    """
    resolved = [Path(p).resolve() for p in mount_points]
    volumes: dict[str, dict[str, str]] = {}
    for path in resolved:
        if str(path) in volumes:
            continue
        if any(other != path and path.is_relative_to(other) for other in resolved):
            continue
        volumes[str(path)] = {"bind": to_container_path(str(path)), "mode": "rw"}
    return volumes


def _run_container_blocking(
    image: str,
    volumes: dict[str, dict[str, str]],
    command_args: list[str],
    entrypoint: str | None,
) -> None:
    try:
        client = docker.from_env()
    except DockerException as e:
        raise ContainerExecutionError(f"Docker is not available: {e}") from e

    try:
        client.images.get(image)
    except ImageNotFound:
        logger.info("Pulling container image %s", image)
        client.images.pull(image)

    user = f"{os.getuid()}:{os.getgid()}" if hasattr(os, "getuid") else None
    container = client.containers.run(
        image=image,
        command=command_args,
        entrypoint=entrypoint,
        volumes=volumes,
        working_dir=to_container_path(os.getcwd()),
        environment={IN_CONTAINER_ENV: "true"},
        user=user,
        detach=True,
        labels={"app": "paged-pdf-builder"},
    )
    try:
        for line in container.logs(stream=True, follow=True):
            logger.info("[container] %s", sanitize_for_logging(line.decode("utf-8", errors="replace").rstrip()))
        result = container.wait()
    finally:
        try:
            container.remove(force=True)
        except DockerException as e:
            logger.warning("Could not remove container: %s", e)

    status_code = result.get("StatusCode", 1)
    if status_code != 0:
        raise ContainerExecutionError(f"Container exited with status {status_code}")


async def run_container(
    image: str,
    volumes: dict[str, dict[str, str]],
    command_args: list[str],
    entrypoint: str | None = None,
) -> None:
    """
    Run a container to completion, forwarding its output to the log.

    Raises:
        ContainerExecutionError: If Docker is unavailable or the container exits with a non-zero status.
    """
    logger.debug("Running container %s with volumes %s", image, list(volumes))
    await asyncio.to_thread(_run_container_blocking, image, volumes, command_args, entrypoint)
