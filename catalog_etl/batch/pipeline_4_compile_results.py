# catalog_etl/batch/pipeline_4_compile_results.py
"""
Pipeline 4: Compile per-chunk results into a run report

Inputs
- processing_results: one entry per chunk (see core/results.py for accepted shapes)
- execution_id: identifier of the run (default: current UTC timestamp)

Outputs
- blob:  {storage.bucket}/{reports.prefix}/{execution_id}/processing-report.json
- local: {reports.local_dir}/chunk-results-{execution_id}.csv

Returns the summary plus the report location.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Iterable, Optional

from catalog_etl.core.results import ResultsSummary, build_report, compile_results
from catalog_etl.io.blob_store import BlobStore, build_blob_store
from catalog_etl.io.readers import read_json
from catalog_etl.io.writers import dumps_json, write_csv
from catalog_etl.utils.config import ensure_dirs, load_parameters
from catalog_etl.utils.logging import configure_logging_from_params, get_logger
from catalog_etl.utils.timestamps import format_instant, utc_now

REPORT_FILENAME = "processing-report.json"


class CompiledResults(ResultsSummary):
    execution_id: str
    report_location: str


def _safe_name(s: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "-" for c in s)


def run(
    *,
    processing_results: Iterable[Any],
    execution_id: Optional[str] = None,
    parameters_path: str = "configs/parameters.yaml",
    store: Optional[BlobStore] = None,
) -> CompiledResults:
    params = load_parameters(parameters_path)
    ensure_dirs(params)
    configure_logging_from_params(params)

    now = format_instant(utc_now())
    execution_id = execution_id or now
    logger = get_logger(__name__, run_id=execution_id)
    store = store or build_blob_store(params)

    summary, df = compile_results(processing_results)
    logger.info("Compiling results for execution %s: %d chunk result(s)", execution_id, len(df))

    report = build_report(summary, df, execution_id=execution_id, timestamp=now)
    bucket = params.storage.bucket
    key = f"{params.reports.prefix.strip('/')}/{execution_id}/{REPORT_FILENAME}"
    store.put_text(bucket, key, dumps_json(report), content_type="application/json")
    location = BlobStore.uri(bucket, key)

    csv_path = Path(params.reports.local_dir) / f"chunk-results-{_safe_name(execution_id)}.csv"
    write_csv(csv_path, df)

    logger.info(
        "ETL processing complete | total_processed=%d | successful_chunks=%d | failed_chunks=%d | minutes=%.2f | report=%s",
        summary.total_processed,
        summary.successful_chunks,
        summary.failed_chunks,
        summary.processing_time_minutes,
        location,
    )
    if summary.failed_chunk_ids:
        logger.warning("Failed chunks: %s", ", ".join(summary.failed_chunk_ids))

    return CompiledResults(**summary.model_dump(), execution_id=execution_id, report_location=location)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Pipeline 4: compile chunk results into a processing report.")
    parser.add_argument("--results-json", required=True, help="JSON file holding a list of chunk results.")
    parser.add_argument("--execution-id", default=None)
    parser.add_argument("--parameters-path", default="configs/parameters.yaml")
    args = parser.parse_args(argv)

    results = read_json(args.results_json)
    if not isinstance(results, list):
        raise ValueError(f"Expected a JSON list of chunk results: {args.results_json}")

    compiled = run(
        processing_results=results,
        execution_id=args.execution_id,
        parameters_path=args.parameters_path,
    )
    print(compiled.model_dump_json(indent=2))
    return 0 if compiled.failed_chunks == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["REPORT_FILENAME", "CompiledResults", "run", "main"]
