# catalog_etl/batch/pipeline_2_split_source.py
"""
Pipeline 2: Split the catalog export into gzip chunks (producer)

Intent
------
Stream the (multi-GB, usually gzip) NDJSON export once, keep only records
modified after the watermark, and upload them as bounded gzip chunks to blob
storage. Consumers (pipeline 3) load the chunks independently.

Inputs
------
- download_url: http(s) URL, file:// URL or local path (default: source.download_url)
- last_processed_timestamp: optional watermark, ISO-8601 UTC

Outputs
-------
- chunks: {storage.bucket}/{producer.chunk_prefix}/{run_ts}/chunk-NNNN.jsonl.gz
- manifest: {producer.manifest_dir}/split-{run_ts}.json (the SplitterResponse)

Line handling
-------------
- blank line            -> skipped_lines
- invalid / non-object JSON -> skipped_lines (first few logged)
- filtered by watermark -> not written, not skipped (logged as a total)
- otherwise             -> written verbatim (raw bytes, never re-serialized)

Failure policy
--------------
- Non-200 source response: SourceFetchError before any chunk is written.
- Chunk upload failure: ChunkUploadError, run aborted.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Iterator, List, Optional

from pydantic import BaseModel

from catalog_etl.core.chunk_writer import ChunkDescriptor, ChunkWriter
from catalog_etl.core.compression import GzipMode, open_maybe_gzip
from catalog_etl.core.incremental_filter import should_include
from catalog_etl.io.blob_store import BlobStore, build_blob_store
from catalog_etl.io.readers import iter_lines
from catalog_etl.io.source_fetch import open_source
from catalog_etl.io.writers import write_json
from catalog_etl.utils.config import ensure_dirs, load_parameters
from catalog_etl.utils.logging import configure_logging_from_params, get_logger
from catalog_etl.utils.timestamps import format_instant, parse_optional_instant, utc_now
from catalog_etl.utils.verbosity import VerbosityLogger

_PREVIEW_CHARS = 100


class SplitterResponse(BaseModel):
    chunks: List[ChunkDescriptor]
    total_lines: int
    skipped_lines: int
    processing_timestamp: str


class _SplitStats:
    def __init__(self) -> None:
        self.lines_read = 0
        self.skipped_lines = 0
        self.filtered_lines = 0


def _accepted_lines(
    lines: Iterator[bytes],
    *,
    watermark: Any,
    stats: _SplitStats,
    vlog: VerbosityLogger,
) -> Iterator[bytes]:
    for line in lines:
        stats.lines_read += 1
        n = stats.lines_read

        if not line.strip():
            stats.skipped_lines += 1
            continue

        try:
            obj = json.loads(line)
        except ValueError:
            obj = None
        if not isinstance(obj, dict):
            stats.skipped_lines += 1
            if stats.skipped_lines <= 10:
                preview = line[:_PREVIEW_CHARS].decode("utf-8", errors="replace")
                vlog.log(1, "info", "Skipping invalid JSON at line %d: %s...", n, preview)
            continue

        if vlog.is_sample_line(n):
            vlog.log(2, "info", "Sample line %d: %s...", n, line[:_PREVIEW_CHARS].decode("utf-8", errors="replace"))

        if vlog.is_heartbeat(n):
            vlog.log(1, "info", "Read %d lines (skipped=%d, filtered=%d)", n, stats.skipped_lines, stats.filtered_lines)

        if not should_include(obj, watermark):
            stats.filtered_lines += 1
            continue

        yield line


def split_stream(
    stream: Any,
    writer: ChunkWriter,
    *,
    watermark: Any = None,
    gzip_mode: Any = GzipMode.AUTO,
    verbose: int = 3,
) -> tuple[List[ChunkDescriptor], _SplitStats]:
    """
    Core of the producer, independent of where the bytes come from.
    """
    logger = get_logger(__name__, run_id=writer.run_timestamp)
    vlog = VerbosityLogger(logger, verbose=verbose)
    stats = _SplitStats()

    decoded = open_maybe_gzip(stream, gzip_mode, label="source feed")
    try:
        accepted = _accepted_lines(iter_lines(decoded), watermark=watermark, stats=stats, vlog=vlog)
        chunks = list(writer.write_chunks(accepted))
    finally:
        decoded.close()

    return chunks, stats


def run(
    *,
    parameters_path: str = "configs/parameters.yaml",
    download_url: Optional[str] = None,
    last_processed_timestamp: Optional[str] = None,
    store: Optional[BlobStore] = None,
    run_timestamp: Optional[str] = None,
    write_manifest: bool = True,
) -> SplitterResponse:
    params = load_parameters(parameters_path)
    ensure_dirs(params)
    configure_logging_from_params(params)

    run_ts = run_timestamp or format_instant(utc_now())
    logger = get_logger(__name__, run_id=run_ts)

    url = download_url or params.source.download_url
    watermark = parse_optional_instant(last_processed_timestamp)
    store = store or build_blob_store(params)

    logger.info(
        "Pipeline 2: split | url=%s | watermark=%s | chunk_size=%d | bucket=%s | prefix=%s",
        url,
        format_instant(watermark) if watermark else None,
        params.producer.chunk_size,
        params.storage.bucket,
        params.producer.chunk_prefix,
    )

    writer = ChunkWriter(
        store,
        bucket=params.storage.bucket,
        prefix=params.producer.chunk_prefix,
        run_timestamp=run_ts,
        capacity=params.producer.chunk_size,
    )

    with open_source(url, timeout=params.source.timeout_seconds) as stream:
        chunks, stats = split_stream(
            stream,
            writer,
            watermark=watermark,
            gzip_mode=params.source.gzip,
            verbose=params.run.verbose,
        )

    response = SplitterResponse(
        chunks=chunks,
        total_lines=writer.total_lines,
        skipped_lines=stats.skipped_lines,
        processing_timestamp=run_ts,
    )

    logger.info(
        "Data splitting complete. chunks=%d | total_lines=%d | skipped_lines=%d | filtered_lines=%d | lines_read=%d",
        len(chunks),
        response.total_lines,
        response.skipped_lines,
        stats.filtered_lines,
        stats.lines_read,
    )

    if write_manifest:
        manifest_path = Path(params.producer.manifest_dir) / f"split-{run_ts.replace(':', '')}.json"
        write_json(manifest_path, response.model_dump(mode="json"))

    return response


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Pipeline 2: split the catalog export into gzip chunks.")
    parser.add_argument("--parameters-path", default="configs/parameters.yaml")
    parser.add_argument("--download-url", default=None)
    parser.add_argument("--last-processed-timestamp", default=None, help="ISO-8601 UTC watermark.")
    args = parser.parse_args(argv)

    response = run(
        parameters_path=args.parameters_path,
        download_url=args.download_url,
        last_processed_timestamp=args.last_processed_timestamp,
    )
    print(response.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["SplitterResponse", "split_stream", "run", "main"]
