# tests/test_pipeline_2_split_source.py
from __future__ import annotations

import gzip
import io
import json
from pathlib import Path

import pytest

from catalog_etl.batch.pipeline_2_split_source import run as pipeline2_run
from catalog_etl.batch.pipeline_2_split_source import split_stream
from catalog_etl.core.chunk_writer import ChunkWriter
from catalog_etl.io.blob_store import LocalBlobStore
from catalog_etl.io.source_fetch import SourceFetchError

RUN_TS = "2024-01-01T00:00:00"

FRESH_1 = b'{"code": "1", "last_modified_t": 1800000000}'
STALE = b'{"code": "2", "last_modified_t": 1600000000}'
UNDATED = b'{"code":"3","brands":"Caf\xc3\xa9"}'
FRESH_2 = b'{"code": "4", "last_modified_t": 1800000000}'

SOURCE_LINES = [FRESH_1, STALE, b"", b"{bad", UNDATED, FRESH_2, b"[1]"]


def _write_source(tmp_path: Path, *, compress: bool = True) -> Path:
    payload = b"\n".join(SOURCE_LINES) + b"\n"
    p = tmp_path / "source.jsonl.gz"
    p.write_bytes(gzip.compress(payload) if compress else payload)
    return p


def _chunk_lines(tmp_path: Path, key: str) -> list[bytes]:
    return gzip.decompress((tmp_path / "blobs" / "proc" / key).read_bytes()).splitlines()


def test_split_with_watermark(tmp_path: Path, make_params):
    _write_source(tmp_path)
    params = make_params()

    res = pipeline2_run(
        parameters_path=str(params),
        last_processed_timestamp="2023-11-14T22:13:20Z",
        run_timestamp=RUN_TS,
    )

    assert res.total_lines == 3
    assert res.skipped_lines == 3
    assert res.processing_timestamp == RUN_TS
    assert [c.key for c in res.chunks] == [
        f"etl/chunks/{RUN_TS}/chunk-0001.jsonl.gz",
        f"etl/chunks/{RUN_TS}/chunk-0002.jsonl.gz",
    ]
    assert [c.chunk_id for c in res.chunks] == ["chunk-1", "chunk-2"]
    assert [c.estimated_lines for c in res.chunks] == [2, 1]
    assert all(c.bucket == "proc" for c in res.chunks)

    # lines are carried verbatim
    assert _chunk_lines(tmp_path, res.chunks[0].key) == [FRESH_1, UNDATED]
    assert _chunk_lines(tmp_path, res.chunks[1].key) == [FRESH_2]


def test_split_without_watermark_keeps_everything_valid(tmp_path: Path, make_params):
    _write_source(tmp_path, compress=False)
    params = make_params(producer={"chunk_size": 10})

    res = pipeline2_run(parameters_path=str(params), run_timestamp=RUN_TS)

    assert res.total_lines == 4
    assert res.skipped_lines == 3
    assert len(res.chunks) == 1
    assert _chunk_lines(tmp_path, res.chunks[0].key) == [FRESH_1, STALE, UNDATED, FRESH_2]


def test_manifest_written(tmp_path: Path, make_params):
    _write_source(tmp_path)
    params = make_params()

    res = pipeline2_run(parameters_path=str(params), run_timestamp=RUN_TS)

    manifest = tmp_path / "manifests" / "split-2024-01-01T000000.json"
    data = json.loads(manifest.read_text(encoding="utf-8"))
    assert data["total_lines"] == res.total_lines
    assert data["processing_timestamp"] == RUN_TS
    assert len(data["chunks"]) == len(res.chunks)


def test_future_watermark_keeps_only_undated_records(tmp_path: Path, make_params):
    _write_source(tmp_path)
    params = make_params()

    res = pipeline2_run(
        parameters_path=str(params),
        last_processed_timestamp="2030-01-01T00:00:00",
        run_timestamp=RUN_TS,
        write_manifest=False,
    )

    assert res.total_lines == 1
    assert len(res.chunks) == 1


def test_missing_source_writes_nothing(tmp_path: Path, make_params):
    params = make_params()

    with pytest.raises(SourceFetchError):
        pipeline2_run(parameters_path=str(params), run_timestamp=RUN_TS)

    assert not (tmp_path / "blobs" / "proc" / "etl").exists()


def test_split_stream_counts(tmp_path: Path):
    writer = ChunkWriter(LocalBlobStore(tmp_path), bucket="b", prefix="p", run_timestamp=RUN_TS, capacity=100)
    stream = io.BytesIO(b"\n".join([b"{}", b"", b"nope", b'{"code":1}']))

    chunks, stats = split_stream(stream, writer, verbose=0)

    assert len(chunks) == 1
    assert stats.lines_read == 4
    assert stats.skipped_lines == 2
    assert stats.filtered_lines == 0
    assert writer.total_lines == 2
