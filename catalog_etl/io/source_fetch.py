# catalog_etl/io/source_fetch.py
"""
Source feed fetch (streaming HTTP + local files)

Intent
- Open the catalog export as a *binary stream* without ever holding it in memory.
- Probe the export's Last-Modified instant for change detection.

Supported locations
- http:// and https:// URLs (requests, stream=True)
- file:// URLs and plain filesystem paths (fixtures, pre-downloaded dumps)

Failure policy
- Any non-200 response raises SourceFetchError before a single byte is consumed,
  so the producer aborts with zero chunks emitted.
- Transport errors from requests propagate as-is.

External dependencies
- requests
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import BinaryIO, Iterator, Optional
from urllib.parse import unquote, urlparse

import requests

from catalog_etl.utils.logging import get_logger
from catalog_etl.utils.timestamps import to_utc


class SourceFetchError(RuntimeError):
    """Raised when the source feed cannot be fetched (non-success response)."""

    def __init__(self, url: str, status_code: Optional[int], message: str = "") -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message or f"Failed to download data: HTTP {status_code} ({url})")


def _is_http(url: str) -> bool:
    return urlparse(str(url)).scheme.lower() in ("http", "https")


def _local_path(url: str) -> Path:
    parsed = urlparse(str(url))
    if parsed.scheme.lower() == "file":
        return Path(unquote(parsed.path))
    return Path(str(url))


@contextmanager
def open_source(url: str, *, timeout: float = 60.0) -> Iterator[BinaryIO]:
    """
    Yield a readable binary stream over the source feed; closes it on exit.
    """
    logger = get_logger(__name__)

    if not _is_http(url):
        p = _local_path(url)
        if not p.is_file():
            raise SourceFetchError(str(url), None, f"Source file not found: {p}")
        logger.info("Opening local source: %s", p)
        with p.open("rb") as f:
            yield f
        return

    logger.info("Downloading source feed: %s", url)
    resp = requests.get(url, stream=True, timeout=timeout)
    try:
        if resp.status_code != 200:
            raise SourceFetchError(url, resp.status_code)
        # strip transport-level Content-Encoding only; file-level gzip is left to the sniffer
        resp.raw.decode_content = True
        logger.info("Download started (HTTP %d), streaming body", resp.status_code)
        yield resp.raw
    finally:
        resp.close()


def fetch_last_modified(url: str, *, timeout: float = 60.0) -> Optional[datetime]:
    """
    Return the export's Last-Modified instant (UTC), or None when unknown.

    - HTTP: HEAD request, RFC 1123 `Last-Modified` header.
    - Local: file mtime.
    Non-200 HEAD responses raise SourceFetchError.
    """
    logger = get_logger(__name__)

    if not _is_http(url):
        p = _local_path(url)
        if not p.is_file():
            raise SourceFetchError(str(url), None, f"Source file not found: {p}")
        return datetime.fromtimestamp(p.stat().st_mtime, tz=timezone.utc)

    resp = requests.head(url, timeout=timeout, allow_redirects=True)
    if resp.status_code != 200:
        raise SourceFetchError(url, resp.status_code)

    header = resp.headers.get("Last-Modified")
    if not header:
        logger.warning("No Last-Modified header on %s", url)
        return None

    try:
        return to_utc(parsedate_to_datetime(header))
    except (TypeError, ValueError) as e:
        logger.warning("Unparseable Last-Modified header %r: %s", header, e)
        return None


__all__ = [
    "SourceFetchError",
    "open_source",
    "fetch_last_modified",
]
