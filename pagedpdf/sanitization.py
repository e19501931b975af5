"""Helpers that make browser supplied text safe to log."""

import re
from urllib.parse import urlparse

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")


def sanitize_for_logging(text: object, max_length: int = 1000) -> str:
    """Flatten text to a single line without control characters, truncated to max_length.

    Console messages and error messages come from the rendered document and can
    contain arbitrary content, including escape sequences and multi-line stacks.
    """
    text = str(text).replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
    text = _CONTROL_CHARS.sub("", text)
    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"
    return text


def sanitize_url_for_logging(url: str | None) -> str:
    """Strip credentials, query and fragment from a URL.

    Viewer URLs carry the whole document configuration in their fragment, and
    data URLs can be arbitrarily long, so both are shortened.
    """
    if url is None:
        return "None"

    if url.startswith("data:"):
        return sanitize_for_logging(url, max_length=60)

    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError:
        return sanitize_for_logging(url, max_length=200)

    if parsed.scheme == "file":
        return sanitize_for_logging(f"file://{parsed.path}", max_length=300)

    safe_url = f"{parsed.scheme}://{parsed.hostname or ''}"
    if port:
        safe_url += f":{port}"
    safe_url += parsed.path or "/"
    return sanitize_for_logging(safe_url, max_length=300)
