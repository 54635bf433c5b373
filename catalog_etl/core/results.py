# catalog_etl/core/results.py
"""
Run results compiler

Intent
- Pure logic: turn the per-chunk consumer results of one run into a summary and
  a deterministic report payload. No I/O here (pipeline 4 writes the artifacts).

Input entries (one per chunk), tolerant of the shapes orchestrators hand back:
- {"chunk_id", "processed_items", "success", "elapsed_ms", "error_message"}
- the same wrapped as {"Payload": {...}}
- camelCase keys (chunkId, processedRows / processedItems, processingTimeMs,
  errorMessage)
An entry that cannot be read at all counts as a failed chunk with id "unknown".

Summary
- total_processed: sum of processed_items over successful chunks
- successful_chunks / failed_chunks
- processing_time_minutes: sum(elapsed_ms) / 60000
- failed_chunk_ids: in input order
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from catalog_etl.utils.logging import get_logger

RESULT_COLUMNS = ["chunk_id", "processed_items", "success", "elapsed_ms", "error_message"]


class ChunkResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chunk_id: str = Field(default="unknown", validation_alias=AliasChoices("chunk_id", "chunkId"))
    processed_items: int = Field(
        default=0,
        validation_alias=AliasChoices("processed_items", "processedItems", "processedRows"),
    )
    success: bool = False
    elapsed_ms: int = Field(default=0, validation_alias=AliasChoices("elapsed_ms", "processingTimeMs"))
    error_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("error_message", "errorMessage"),
    )


class ResultsSummary(BaseModel):
    total_processed: int
    successful_chunks: int
    failed_chunks: int
    processing_time_minutes: float
    failed_chunk_ids: List[str]


def parse_chunk_result(entry: Any) -> ChunkResult:
    """
    Raises ValueError when `entry` is not a readable chunk result.
    """
    payload = entry.get("Payload", entry) if isinstance(entry, Mapping) else entry
    if not isinstance(payload, Mapping):
        raise ValueError(f"Chunk result must be an object, got {type(payload).__name__}")
    try:
        return ChunkResult.model_validate(dict(payload))
    except ValidationError as e:
        raise ValueError(f"Unreadable chunk result: {e}") from e


def results_frame(entries: Iterable[Any]) -> pd.DataFrame:
    logger = get_logger(__name__)

    rows: List[Dict[str, Any]] = []
    for i, entry in enumerate(entries, start=1):
        try:
            r = parse_chunk_result(entry)
        except ValueError as e:
            logger.warning("Result #%d unreadable, counted as failed: %s", i, e)
            r = ChunkResult(error_message=str(e))
        rows.append(r.model_dump())

    return pd.DataFrame(rows, columns=RESULT_COLUMNS)


def summarize(df: pd.DataFrame) -> ResultsSummary:
    if df.empty:
        return ResultsSummary(
            total_processed=0,
            successful_chunks=0,
            failed_chunks=0,
            processing_time_minutes=0.0,
            failed_chunk_ids=[],
        )

    ok = df["success"].astype(bool)
    return ResultsSummary(
        total_processed=int(df.loc[ok, "processed_items"].sum()),
        successful_chunks=int(ok.sum()),
        failed_chunks=int((~ok).sum()),
        processing_time_minutes=float(df["elapsed_ms"].sum()) / 60000.0,
        failed_chunk_ids=[str(x) for x in df.loc[~ok, "chunk_id"].tolist()],
    )


def compile_results(entries: Iterable[Any]) -> Tuple[ResultsSummary, pd.DataFrame]:
    df = results_frame(entries)
    return summarize(df), df


def build_report(
    summary: ResultsSummary,
    df: pd.DataFrame,
    *,
    execution_id: str,
    timestamp: str,
) -> Dict[str, Any]:
    detailed = df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
    return {
        "execution_id": execution_id,
        "timestamp": timestamp,
        "summary": {
            "total_processed": summary.total_processed,
            "successful_chunks": summary.successful_chunks,
            "failed_chunks": summary.failed_chunks,
            "processing_time_minutes": summary.processing_time_minutes,
        },
        "failed_chunk_ids": list(summary.failed_chunk_ids),
        "detailed_results": detailed,
    }


__all__ = [
    "RESULT_COLUMNS",
    "ChunkResult",
    "ResultsSummary",
    "parse_chunk_result",
    "results_frame",
    "summarize",
    "compile_results",
    "build_report",
]
