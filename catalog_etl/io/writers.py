# catalog_etl/io/writers.py
"""
Writers (Deterministic Artifacts I/O)

Intent
- One deterministic way to persist the pipeline artifacts:
  - JSON: split manifests, processing reports (local disk or blob payload)
  - CSV: per-chunk result tables (pandas)

Primary functions
- ensure_parent_dir(path) -> None
- dumps_json(obj) -> str
- write_json(path, obj) -> None
- write_csv(path, df) -> None

Key behaviors / guarantees
- JSON: UTF-8, sort_keys=True, ensure_ascii=False, indent=2, trailing newline.
  The same text is used for local files and blob uploads, so both copies of a
  report are byte-identical.
- CSV: UTF-8, index=False, column order exactly df.columns, "\\n" line endings.
- Parent directories are created idempotently.
- Every write emits one INFO log (path + size / shape).

Design notes
- Writers are thin: no schema enforcement, no column mutation.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from catalog_etl.utils.logging import get_logger


def ensure_parent_dir(path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def dumps_json(obj: Any, *, indent: int = 2, sort_keys: bool = True) -> str:
    """
    Deterministic JSON text (with trailing newline).

    Caller must pass JSON-serializable data (e.g. `model.model_dump(mode="json")`).
    """
    return json.dumps(obj, ensure_ascii=False, sort_keys=sort_keys, indent=indent) + "\n"


def write_json(
    path: str | Path,
    obj: Any,
    *,
    indent: int = 2,
    sort_keys: bool = True,
) -> None:
    logger = get_logger(__name__)
    ensure_parent_dir(path)

    p = Path(path)
    text = dumps_json(obj, indent=indent, sort_keys=sort_keys)
    p.write_text(text, encoding="utf-8")

    logger.info("Wrote JSON: %s (bytes=%d)", str(p), len(text.encode("utf-8")))


def write_csv(path: str | Path, df: pd.DataFrame) -> None:
    logger = get_logger(__name__)
    ensure_parent_dir(path)

    p = Path(path)
    df.to_csv(p, index=False, encoding="utf-8", lineterminator="\n")

    logger.info("Wrote CSV: %s (rows=%d, cols=%d)", str(p), int(df.shape[0]), int(df.shape[1]))


__all__ = [
    "ensure_parent_dir",
    "dumps_json",
    "write_json",
    "write_csv",
]
