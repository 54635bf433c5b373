# scripts/run_local_import.py
"""
Manual runner: full import, sequential (REAL execution)

This script:
- Ensures repo root is on PYTHONPATH
- Uses real configs and pipeline code
- Runs, in order:
    0) ensure schema
    1) read watermark (skipped with --full)
    2) split the source into chunks
    3) load every chunk, one after the other
    4) compile the results report
    5) advance the watermark to the split's processing timestamp,
       only if every chunk loaded successfully
- A failing chunk is recorded and the run continues with the next one.

Usage:
    DATABASE_URL=sqlite:///artifacts/catalog.db \
        python scripts/run_local_import.py --download-url data/products.jsonl.gz
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------
# Ensure repo root is on PYTHONPATH so `import catalog_etl.*` works
# ---------------------------------------------------------------------
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# ---------------------------------------------------------------------
# Imports AFTER path fix
# ---------------------------------------------------------------------
from sqlalchemy.exc import SQLAlchemyError

from catalog_etl.batch import (
    pipeline_0_schema_ensure,
    pipeline_2_split_source,
    pipeline_3_load_chunk,
    pipeline_4_compile_results,
)
from catalog_etl.core.db_schema import engine_from_credentials
from catalog_etl.core.watermark import WatermarkStore
from catalog_etl.io.blob_store import build_blob_store
from catalog_etl.utils.config import load_parameters
from catalog_etl.utils.logging import configure_logging_from_params, get_logger
from catalog_etl.utils.timestamps import format_instant


def run(
    *,
    parameters_path: str = "configs/parameters.yaml",
    credentials_path: str = "configs/credentials.yaml",
    download_url: Optional[str] = None,
    full: bool = False,
    store: Any = None,
    engine: Any = None,
) -> Dict[str, Any]:
    params = load_parameters(parameters_path)
    configure_logging_from_params(params)
    logger = get_logger(__name__)

    store = store or build_blob_store(params)
    engine = engine or engine_from_credentials(credentials_path)
    watermarks = WatermarkStore(store, bucket=params.storage.bucket, key=params.watermark.key)

    logger.info("=" * 80)
    logger.info("LOCAL IMPORT: REAL EXECUTION")
    logger.info("Repo root: %s", REPO_ROOT)
    logger.info("=" * 80)

    pipeline_0_schema_ensure.run(parameters_path=parameters_path, engine=engine)

    watermark = None if full else watermarks.get()
    split = pipeline_2_split_source.run(
        parameters_path=parameters_path,
        download_url=download_url,
        last_processed_timestamp=format_instant(watermark) if watermark else None,
        store=store,
    )

    results: List[Dict[str, Any]] = []
    for chunk in split.chunks:
        started = time.monotonic()
        try:
            loaded = pipeline_3_load_chunk.run(
                bucket=chunk.bucket,
                key=chunk.key,
                parameters_path=parameters_path,
                store=store,
                engine=engine,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error("Chunk %s failed: %s", chunk.chunk_id, e)
            results.append(
                {
                    "chunk_id": chunk.chunk_id,
                    "processed_items": 0,
                    "success": False,
                    "elapsed_ms": int((time.monotonic() - started) * 1000),
                    "error_message": str(e),
                }
            )
            continue

        results.append(
            {
                "chunk_id": chunk.chunk_id,
                "processed_items": loaded.processed_items,
                "success": True,
                "elapsed_ms": loaded.elapsed_ms,
                "error_message": None,
            }
        )

    compiled = pipeline_4_compile_results.run(
        processing_results=results,
        execution_id=split.processing_timestamp,
        parameters_path=parameters_path,
        store=store,
    )

    advanced = None
    if compiled.failed_chunks == 0:
        advanced = watermarks.set(split.processing_timestamp)
    else:
        logger.warning("Watermark NOT advanced: %d chunk(s) failed", compiled.failed_chunks)

    return {
        "chunks": len(split.chunks),
        "total_lines": split.total_lines,
        "skipped_lines": split.skipped_lines,
        "total_processed": compiled.total_processed,
        "failed_chunks": compiled.failed_chunks,
        "report_location": compiled.report_location,
        "watermark": advanced,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the whole catalog import locally, chunk after chunk.")
    parser.add_argument("--parameters-path", default="configs/parameters.yaml")
    parser.add_argument("--credentials-path", default="configs/credentials.yaml")
    parser.add_argument("--download-url", default=None)
    parser.add_argument("--full", action="store_true", help="Ignore the stored watermark.")
    args = parser.parse_args(argv)

    summary = run(
        parameters_path=args.parameters_path,
        credentials_path=args.credentials_path,
        download_url=args.download_url,
        full=bool(args.full),
    )

    logger = get_logger(__name__)
    logger.info("Summary: %s", summary)
    return 0 if summary["failed_chunks"] == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
