# catalog_etl/batch/pipeline_3_load_chunk.py
"""
Pipeline 3: Load one chunk into the relational schema (consumer)

Intent
------
Read one chunk object (gzip or plain NDJSON), fold its lines into batched,
idempotent upserts through a single BatchSession, and report counts.

Inputs
------
- bucket, key: the chunk location (as emitted by pipeline 2)
- gzip: optional override (true|false|auto); default consumer.gzip

Output
------
ChunkLoadResponse
- processed_items: records fully enqueued
- successful_items: records in committed batches
- failed_items: processed_items - successful_items
- skipped_items: blank, malformed or barcode-less lines
- elapsed_ms, message

Failure policy
--------------
- Line-level problems are counted, never fatal.
- Storage errors abort the invocation; committed batches stay, the open one is
  rolled back. The caller retries the whole chunk (writes are idempotent).
- Connection errors surface before any line is read.
"""

from __future__ import annotations

import argparse
import time
from contextlib import closing
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.engine import Engine

from catalog_etl.core.compression import open_maybe_gzip
from catalog_etl.core.db_schema import engine_from_credentials
from catalog_etl.core.fact_loader import BatchSession, LoadAccumulator, load_lines
from catalog_etl.io.blob_store import BlobStore, build_blob_store
from catalog_etl.io.readers import iter_lines
from catalog_etl.utils.config import load_parameters
from catalog_etl.utils.logging import configure_logging_from_params, get_logger


class ChunkLoadResponse(BaseModel):
    processed_items: int
    successful_items: int
    failed_items: int
    skipped_items: int
    elapsed_ms: int
    message: str


def _response(acc: LoadAccumulator, started: float) -> ChunkLoadResponse:
    elapsed_ms = int((time.monotonic() - started) * 1000)
    return ChunkLoadResponse(
        processed_items=acc.processed,
        successful_items=acc.succeeded,
        failed_items=acc.failed,
        skipped_items=acc.skipped,
        elapsed_ms=elapsed_ms,
        message=(
            f"Processed {acc.processed} item(s): {acc.succeeded} committed, "
            f"{acc.failed} failed, {acc.skipped} line(s) skipped"
        ),
    )


def run(
    *,
    bucket: str,
    key: str,
    gzip: Any = None,
    parameters_path: str = "configs/parameters.yaml",
    credentials_path: str = "configs/credentials.yaml",
    store: Optional[BlobStore] = None,
    engine: Optional[Engine] = None,
) -> ChunkLoadResponse:
    params = load_parameters(parameters_path)
    configure_logging_from_params(params)

    logger = get_logger(__name__, run_id=key)
    started = time.monotonic()

    store = store or build_blob_store(params)
    engine = engine or engine_from_credentials(credentials_path)
    consumer = params.consumer
    gzip_mode = consumer.gzip if gzip is None else gzip
    uri = BlobStore.uri(bucket, key)

    logger.info(
        "Pipeline 3: load | chunk=%s | batch_size=%d | gzip=%s | language=%s",
        uri,
        consumer.batch_size,
        gzip_mode,
        consumer.language,
    )

    with BatchSession(engine) as session:
        with closing(store.open_object(bucket, key)) as body:
            decoded = open_maybe_gzip(body, gzip_mode, label=uri)
            with closing(decoded):
                acc = load_lines(
                    session,
                    iter_lines(decoded),
                    batch_size=consumer.batch_size,
                    language=consumer.language,
                    verify_counts=consumer.verify_counts,
                    verbose=params.run.verbose,
                    run_id=key,
                )

    response = _response(acc, started)
    logger.info(
        "Chunk done: lines_read=%d | processed=%d | successful=%d | failed=%d | skipped=%d | elapsed_ms=%d",
        acc.lines_read,
        response.processed_items,
        response.successful_items,
        response.failed_items,
        response.skipped_items,
        response.elapsed_ms,
    )
    return response


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Pipeline 3: load one chunk into the database.")
    parser.add_argument("--bucket", required=True)
    parser.add_argument("--key", required=True)
    parser.add_argument("--gzip", default=None, choices=["true", "false", "auto"])
    parser.add_argument("--parameters-path", default="configs/parameters.yaml")
    parser.add_argument("--credentials-path", default="configs/credentials.yaml")
    args = parser.parse_args(argv)

    response = run(
        bucket=args.bucket,
        key=args.key,
        gzip=args.gzip,
        parameters_path=args.parameters_path,
        credentials_path=args.credentials_path,
    )
    print(response.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["ChunkLoadResponse", "run", "main"]
