"""
Content server for the viewer.

Produces the fully qualified viewer URL for a build. Documents are either
loaded through file URLs or, with `http_server`, served from the workspace by
a FastAPI application running on an ephemeral localhost port for the duration
of the build.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import socket
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote, urlparse

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from pagedpdf.exceptions import BuildError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from pagedpdf.options import BuildOptions

logger = logging.getLogger(__name__)

VIEWER_MOUNT = "/__vivliostyle-viewer"
# Characters left alone by JavaScript's encodeURI
_ENCODE_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


def resolve_viewer_dir() -> Path:
    """
    Directory of the bundled viewer build (the one holding index.html).

    Raises:
        BuildError: If PAGEDPDF_VIEWER_DIR is unset or does not contain a viewer.
    """
    env_value = os.environ.get("PAGEDPDF_VIEWER_DIR")
    if not env_value:
        raise BuildError("No viewer available. Set PAGEDPDF_VIEWER_DIR or configure a custom viewer URL.")
    viewer_dir = Path(env_value).expanduser().resolve()
    if not (viewer_dir / "index.html").is_file():
        raise BuildError(f"Viewer index.html not found in {viewer_dir}")
    return viewer_dir


def is_url(value: str) -> bool:
    return urlparse(value).scheme in ("http", "https", "file", "data")


def to_document_url(location: str, workspace_dir: str, root_url: str | None = None) -> str:
    """URL under which the viewer loads a document or style sheet."""
    if is_url(location):
        return location
    path = Path(location).resolve()
    if root_url is not None:
        workspace = Path(workspace_dir).resolve()
        if path.is_relative_to(workspace):
            return f"{root_url}/{quote(path.relative_to(workspace).as_posix())}"
    return path.as_uri()


def get_viewer_params(
    input_url: str,
    single_doc: bool = False,
    style_url: str | None = None,
    user_style_url: str | None = None,
    size: str | None = None,
    viewer_param: str | None = None,
) -> str:
    """Hash parameters understood by the viewer."""
    params = [
        f"src={quote(input_url, safe=_ENCODE_URI_SAFE)}",
        f"bookMode={'false' if single_doc else 'true'}",
        "renderAllPages=true",
    ]
    if style_url:
        params.append(f"style={quote(style_url, safe=_ENCODE_URI_SAFE)}")
    if user_style_url:
        params.append(f"userStyle={quote(user_style_url, safe=_ENCODE_URI_SAFE)}")
    if size:
        page_style = quote(f"@page{{size:{size}!important;}}", safe="!'()*")
        params.append(f"style=data:,/*<viewer>*/{page_style}/*</viewer>*/")
    if viewer_param:
        params.append(viewer_param)
    return "&".join(params)


def create_content_app(workspace_dir: str, viewer_dir: Path | None) -> FastAPI:
    """Static file application serving the workspace at `/` and the viewer at VIEWER_MOUNT."""
    content_app = FastAPI(openapi_url=None, docs_url=None, redoc_url=None)
    if viewer_dir is not None:
        content_app.mount(VIEWER_MOUNT, StaticFiles(directory=viewer_dir, html=True), name="viewer")
    content_app.mount("/", StaticFiles(directory=workspace_dir, html=True), name="workspace")
    return content_app


def _bind_ephemeral_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    return sock


@contextlib.asynccontextmanager
async def prepare_server(options: BuildOptions) -> AsyncGenerator[str]:
    """
    Provide the viewer URL for a build, serving content over HTTP if requested.

    Yields:
        The fully qualified viewer URL including the hash parameters.
    """
    viewer_dir = None if options.viewer else resolve_viewer_dir()

    if not options.http_server:
        viewer_url = options.viewer or (viewer_dir / "index.html").as_uri()  # type: ignore[operator]
        yield _viewer_full_url(viewer_url, options, root_url=None)
        return

    sock = _bind_ephemeral_socket()
    port = sock.getsockname()[1]
    server = uvicorn.Server(
        uvicorn.Config(
            app=create_content_app(options.workspace_dir, viewer_dir),
            log_level="warning",
            lifespan="off",
        )
    )
    serve_task = asyncio.create_task(server.serve(sockets=[sock]))
    try:
        while not server.started:
            if serve_task.done():
                serve_task.result()
                raise BuildError("Content server stopped during startup")
            await asyncio.sleep(0.05)

        root_url = f"http://localhost:{port}"
        logger.debug("Content server listening on %s", root_url)
        viewer_url = options.viewer or f"{root_url}{VIEWER_MOUNT}/index.html"
        yield _viewer_full_url(viewer_url, options, root_url=root_url)
    finally:
        server.should_exit = True
        await serve_task
        sock.close()
        logger.debug("Content server stopped")


def _viewer_full_url(viewer_url: str, options: BuildOptions, root_url: str | None) -> str:
    def url_of(location: str | None) -> str | None:
        return to_document_url(location, options.workspace_dir, root_url) if location else None

    params = get_viewer_params(
        input_url=to_document_url(options.input, options.workspace_dir, root_url),
        single_doc=options.single_doc,
        style_url=url_of(options.custom_style),
        user_style_url=url_of(options.custom_user_style),
        size=options.size,
        viewer_param=options.viewer_param,
    )
    return f"{viewer_url}#{params}"
