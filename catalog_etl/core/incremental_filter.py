# catalog_etl/core/incremental_filter.py
"""
Incremental Filter: watermark-based record selection (producer side)

Contract
- should_include(record_json, watermark) -> bool
  - watermark None          -> True (first run imports everything)
  - no `last_modified_t`    -> True (fail open)
  - malformed timestamp     -> True (fail open, WARNING logged)
  - otherwise               -> modified_at > watermark (strict)

Comparison happens on aware UTC datetimes truncated to whole seconds, the
precision of the canonical watermark form; strings only exist at the edges
(`parse_instant` for the watermark).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from catalog_etl.utils.logging import get_logger
from catalog_etl.utils.timestamps import epoch_to_instant, to_utc

MODIFIED_FIELD = "last_modified_t"


def extract_modified_instant(record_json: Mapping[str, Any]) -> Optional[datetime]:
    """
    Return the record's modification instant, or None if absent or malformed.
    """
    if not isinstance(record_json, Mapping):
        return None

    raw = record_json.get(MODIFIED_FIELD)
    if raw is None:
        return None

    try:
        return epoch_to_instant(raw)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        get_logger(__name__).warning(
            "Malformed %s=%r (code=%s): %s; including record",
            MODIFIED_FIELD,
            raw,
            record_json.get("code"),
            e,
        )
        return None


def should_include(record_json: Mapping[str, Any], watermark: Optional[datetime]) -> bool:
    if watermark is None:
        return True

    modified_at = extract_modified_instant(record_json)
    if modified_at is None:
        return True

    # both sides at the canonical second precision
    return modified_at.replace(microsecond=0) > to_utc(watermark).replace(microsecond=0)


__all__ = [
    "MODIFIED_FIELD",
    "extract_modified_instant",
    "should_include",
]
