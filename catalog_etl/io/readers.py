# catalog_etl/io/readers.py
"""
Readers (NDJSON line streams + JSON artifacts)

Intent
- Iterate an arbitrarily large binary stream line by line, lazily.
- Read the small JSON artifacts the pipelines hand to each other
  (split manifests, chunk result lists).

Primary functions
- iter_lines(stream) -> Iterator[bytes]
- read_json(path) -> Any

Key behaviors / guarantees
- **Bytes, not text:** lines are yielded undecoded. Decoding is a per-line
  concern of the caller so that one bad byte sequence rejects one line, not
  the whole stream.
- **Line terminators stripped:** trailing "\\n" and "\\r\\n" are removed; a
  final line without a terminator is still yielded.
- **No buffering beyond one line:** memory stays flat for multi-GB inputs.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, BinaryIO, Iterator, List


def _strip_cr(line: bytes) -> bytes:
    return line[:-1] if line.endswith(b"\r") else line


def iter_lines(stream: BinaryIO, *, chunk_size: int = 1 << 16) -> Iterator[bytes]:
    """
    Yield each line of a binary stream without its terminator.
    Works with any object exposing read(n) (files, gzip streams, HTTP bodies).
    """
    # pieces of the current, not yet terminated line; joined once per line
    tail: List[bytes] = []
    while True:
        block = stream.read(chunk_size)
        if not block:
            break

        start = 0
        end = block.find(b"\n")
        while end != -1:
            line = block[start:end]
            if tail:
                tail.append(line)
                line = b"".join(tail)
                tail = []
            yield _strip_cr(line)
            start = end + 1
            end = block.find(b"\n", start)

        if start < len(block):
            tail.append(block[start:])

    if tail:
        yield _strip_cr(b"".join(tail))


def read_json(path: str | Path) -> Any:
    """
    Read a UTF-8 JSON file.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"JSON file not found: {p}")
    return json.loads(p.read_text(encoding="utf-8"))


__all__ = ["iter_lines", "read_json"]
