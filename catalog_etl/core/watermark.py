# catalog_etl/core/watermark.py
"""
Watermark store + change detection

Intent
- Persist the "last processed" instant as a tiny text object in blob storage
  (default key: etl/last-processed-timestamp.txt) and decide whether the
  upstream export is newer than it.

Primary functions
- WatermarkStore.get() -> Optional[datetime]
- WatermarkStore.set(value) -> str            (canonical string actually written)
- detect_changes(watermarks, download_url, ...) -> ChangeDetectionResponse

Behavior
- Missing or blank watermark object -> None (first run).
- Unparseable watermark content -> WARNING + None (treated as first run).
- Latest export instant: HEAD Last-Modified; falls back to "now" when the header
  is absent or unparseable.
- has_updates iff no watermark or latest > watermark.
- The watermark is only ever written by an explicit set(); nothing here advances
  it implicitly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Union

from pydantic import BaseModel

from catalog_etl.io.blob_store import BlobStore
from catalog_etl.io.source_fetch import fetch_last_modified
from catalog_etl.utils.logging import get_logger
from catalog_etl.utils.timestamps import canonicalize, format_instant, parse_instant, utc_now

WATERMARK_CONTENT_TYPE = "text/plain"


class ChangeDetectionResponse(BaseModel):
    has_updates: bool
    download_url: Optional[str] = None
    last_processed_timestamp: Optional[str] = None
    latest_timestamp: Optional[str] = None
    message: str


class WatermarkStore:
    def __init__(self, store: BlobStore, *, bucket: str, key: str) -> None:
        self.store = store
        self.bucket = bucket
        self.key = key

    @property
    def uri(self) -> str:
        return BlobStore.uri(self.bucket, self.key)

    def get(self) -> Optional[datetime]:
        logger = get_logger(__name__)

        text = self.store.read_text(self.bucket, self.key)
        if text is None or not text.strip():
            logger.info("No previous watermark at %s, treating as first run", self.uri)
            return None

        try:
            return parse_instant(text.strip())
        except ValueError as e:
            logger.warning("Unparseable watermark %r at %s (%s), treating as first run", text.strip(), self.uri, e)
            return None

    def set(self, value: Union[str, datetime]) -> str:
        canonical = format_instant(value) if isinstance(value, datetime) else canonicalize(value)
        self.store.put_text(self.bucket, self.key, canonical, content_type=WATERMARK_CONTENT_TYPE)
        get_logger(__name__).info("Updated last processed timestamp to %s (%s)", canonical, self.uri)
        return canonical


def detect_changes(
    watermarks: WatermarkStore,
    download_url: str,
    *,
    timeout: float = 60.0,
    now: Callable[[], datetime] = utc_now,
) -> ChangeDetectionResponse:
    logger = get_logger(__name__)

    last_processed = watermarks.get()
    logger.info("Last processed timestamp: %s", format_instant(last_processed) if last_processed else None)

    latest = fetch_last_modified(download_url, timeout=timeout)
    if latest is None:
        latest = now()
        logger.warning("Export Last-Modified unknown, using current time %s", format_instant(latest))
    logger.info("Latest export timestamp: %s", format_instant(latest))

    if last_processed is None or latest > last_processed:
        return ChangeDetectionResponse(
            has_updates=True,
            download_url=download_url,
            last_processed_timestamp=format_instant(last_processed) if last_processed else None,
            latest_timestamp=format_instant(latest),
            message="New data available for processing",
        )

    return ChangeDetectionResponse(
        has_updates=False,
        last_processed_timestamp=format_instant(last_processed),
        latest_timestamp=format_instant(latest),
        message="No new data available",
    )


__all__ = [
    "WATERMARK_CONTENT_TYPE",
    "ChangeDetectionResponse",
    "WatermarkStore",
    "detect_changes",
]
