# catalog_etl/core/compression.py
"""
Compression Sniffer: gzip on demand or by magic bytes

Intent
- Producer-written chunks are always gzip; hand-made fixtures and some sources
  are plain NDJSON. One code path reads both.

Modes
- FORCE_ON  ("true")  : always gunzip
- FORCE_OFF ("false") : pass through
- AUTO      ("auto")  : peek exactly 2 bytes; gunzip iff they are 1F 8B

Guarantee
- The peeked bytes are replayed: the returned stream yields the complete
  original byte sequence (decompressed or not). Nothing is lost to the lookahead.
- The wrapper only needs `read(n)` from the source, so it works for files,
  HTTP bodies and S3 streaming bodies alike.
"""

from __future__ import annotations

import enum
import gzip
import io
from typing import Any, BinaryIO, Optional

from catalog_etl.utils.logging import get_logger

GZIP_MAGIC = b"\x1f\x8b"


class GzipMode(str, enum.Enum):
    FORCE_ON = "true"
    FORCE_OFF = "false"
    AUTO = "auto"


def resolve_gzip_mode(value: Any) -> GzipMode:
    """
    Map config/env values to a GzipMode:
      True / "true"  -> FORCE_ON
      False / "false" -> FORCE_OFF
      None / "" / "auto" -> AUTO
    """
    if isinstance(value, GzipMode):
        return value
    if value is None:
        return GzipMode.AUTO
    if isinstance(value, bool):
        return GzipMode.FORCE_ON if value else GzipMode.FORCE_OFF

    s = str(value).strip().lower()
    if not s or s == "auto":
        return GzipMode.AUTO
    if s == "true":
        return GzipMode.FORCE_ON
    if s == "false":
        return GzipMode.FORCE_OFF
    raise ValueError(f"Unsupported gzip mode: {value!r}. Expected one of: true|false|auto")


class _ReplayStream(io.RawIOBase):
    """
    Raw stream that first returns `head`, then delegates to `source.read()`.
    """

    def __init__(self, head: bytes, source: Any) -> None:
        super().__init__()
        self._head = head
        self._source = source

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        n = len(b)
        if n == 0:
            return 0
        if self._head:
            k = min(n, len(self._head))
            b[:k] = self._head[:k]
            self._head = self._head[k:]
            return k
        data = self._source.read(n)
        if not data:
            return 0
        k = len(data)
        b[:k] = data
        return k


def _read_exactly(source: Any, n: int) -> bytes:
    buf = b""
    while len(buf) < n:
        data = source.read(n - len(buf))
        if not data:
            break
        buf += data
    return buf


def peek_prefix(source: Any, n: int = 2) -> tuple[bytes, BinaryIO]:
    """
    Read up to `n` leading bytes and return (prefix, stream-with-prefix-replayed).
    """
    head = _read_exactly(source, n)
    replay = io.BufferedReader(_ReplayStream(head, source))
    return head, replay


def open_maybe_gzip(
    stream: Any,
    mode: Any = GzipMode.AUTO,
    *,
    label: Optional[str] = None,
) -> BinaryIO:
    """
    Return a decoded binary stream according to `mode` (see module doc).
    The caller keeps ownership of `stream` and closes it.
    """
    logger = get_logger(__name__)
    m = resolve_gzip_mode(mode)
    what = label or "stream"

    if m is GzipMode.FORCE_ON:
        logger.info("GZIP mode=true: decompressing %s", what)
        return gzip.GzipFile(fileobj=io.BufferedReader(_ReplayStream(b"", stream)), mode="rb")

    if m is GzipMode.FORCE_OFF:
        logger.info("GZIP mode=false: reading %s as plain text", what)
        return io.BufferedReader(_ReplayStream(b"", stream))

    head, replay = peek_prefix(stream, 2)
    if head == GZIP_MAGIC:
        logger.info("GZIP mode=auto: magic bytes detected, decompressing %s", what)
        return gzip.GzipFile(fileobj=replay, mode="rb")

    logger.info("GZIP mode=auto: no magic bytes, reading %s as plain text", what)
    return replay


__all__ = [
    "GZIP_MAGIC",
    "GzipMode",
    "resolve_gzip_mode",
    "peek_prefix",
    "open_maybe_gzip",
]
