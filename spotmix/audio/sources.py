from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import requests

from spotmix.errors import DecodeError

log = logging.getLogger(__name__)

HTTP_SCHEMES = {"http", "https"}


def source_path(ref: str) -> Path | None:
    """Local filesystem path for a source reference, or None for remote refs."""

    parsed = urlparse(ref)
    if parsed.scheme in HTTP_SCHEMES:
        return None
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    # single-letter schemes are Windows drive letters
    if parsed.scheme and len(parsed.scheme) > 1:
        raise DecodeError(f"unsupported source scheme: {parsed.scheme}", source=ref)
    return Path(ref).expanduser()


def fetch_source(ref: str, *, timeout: float = 30.0, session: requests.Session | None = None) -> bytes:
    """Return the raw bytes behind a source reference (path, file: URI or http(s) URL)."""

    path = source_path(ref)
    if path is not None:
        try:
            return path.read_bytes()
        except OSError as e:
            raise DecodeError(f"cannot read audio file: {e.strerror or e}", source=ref) from e

    log.debug("fetching %s", ref)
    http = session or requests
    try:
        resp = http.get(ref, timeout=timeout)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise DecodeError(f"download failed: {e}", source=ref) from e
    return resp.content
