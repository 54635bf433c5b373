# catalog_etl/batch/pipeline_1_detect_changes.py
"""
Pipeline 1: Change detection / watermark update

Actions
- check_for_updates : compare the export's Last-Modified with the stored
                      watermark; has_updates iff no watermark or newer export
- update_timestamp  : store `new_timestamp` (canonicalised) as the watermark;
                      a missing timestamp is a ValueError
- anything else     : has_updates=False, message names the action

Storage
- watermark object: {storage.bucket}/{watermark.key}
"""

from __future__ import annotations

import argparse
from typing import Optional

from catalog_etl.core.watermark import ChangeDetectionResponse, WatermarkStore, detect_changes
from catalog_etl.io.blob_store import BlobStore, build_blob_store
from catalog_etl.utils.config import load_parameters
from catalog_etl.utils.logging import configure_logging_from_params, get_logger

CHECK_FOR_UPDATES = "check_for_updates"
UPDATE_TIMESTAMP = "update_timestamp"


def run(
    *,
    action: str,
    new_timestamp: Optional[str] = None,
    download_url: Optional[str] = None,
    parameters_path: str = "configs/parameters.yaml",
    store: Optional[BlobStore] = None,
) -> ChangeDetectionResponse:
    params = load_parameters(parameters_path)
    configure_logging_from_params(params)
    logger = get_logger(__name__)

    store = store or build_blob_store(params)
    watermarks = WatermarkStore(store, bucket=params.storage.bucket, key=params.watermark.key)

    logger.info("Pipeline 1: action=%s | watermark=%s", action, watermarks.uri)

    if action == CHECK_FOR_UPDATES:
        response = detect_changes(
            watermarks,
            download_url or params.source.download_url,
            timeout=params.source.timeout_seconds,
        )
        logger.info("has_updates=%s | %s", response.has_updates, response.message)
        return response

    if action == UPDATE_TIMESTAMP:
        if not new_timestamp or not str(new_timestamp).strip():
            raise ValueError("update_timestamp requires new_timestamp")
        written = watermarks.set(str(new_timestamp))
        return ChangeDetectionResponse(
            has_updates=False,
            last_processed_timestamp=written,
            message="Timestamp updated successfully",
        )

    logger.warning("Unknown action: %s", action)
    return ChangeDetectionResponse(has_updates=False, message=f"Unknown action: {action}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Pipeline 1: detect source changes / update the watermark.")
    parser.add_argument("action", help=f"{CHECK_FOR_UPDATES} | {UPDATE_TIMESTAMP}")
    parser.add_argument("--new-timestamp", default=None)
    parser.add_argument("--download-url", default=None)
    parser.add_argument("--parameters-path", default="configs/parameters.yaml")
    args = parser.parse_args(argv)

    response = run(
        action=args.action,
        new_timestamp=args.new_timestamp,
        download_url=args.download_url,
        parameters_path=args.parameters_path,
    )
    print(response.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["CHECK_FOR_UPDATES", "UPDATE_TIMESTAMP", "run", "main"]
