# tests/test_run_local_import.py
from __future__ import annotations

import gzip
import importlib.util
import json
from pathlib import Path

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import OperationalError

from catalog_etl.core import db_schema

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "run_local_import.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("run_local_import", SCRIPT)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def _write_source(tmp_path: Path, n: int) -> None:
    lines = [json.dumps({"code": i, "brands": f"B{i}", "last_modified_t": 1700000000}) for i in range(1, n + 1)]
    (tmp_path / "source.jsonl.gz").write_bytes(gzip.compress(("\n".join(lines) + "\n").encode("utf-8")))


@pytest.fixture()
def engine(tmp_path: Path):
    eng = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}")
    yield eng
    eng.dispose()


def test_full_import_advances_watermark_and_second_run_is_incremental(tmp_path: Path, make_params, engine):
    script = _load_script()
    _write_source(tmp_path, 5)
    params = make_params()

    first = script.run(parameters_path=str(params), engine=engine)

    assert first["chunks"] == 3
    assert first["total_lines"] == 5
    assert first["total_processed"] == 5
    assert first["failed_chunks"] == 0
    assert first["watermark"] is not None
    with engine.connect() as conn:
        assert conn.execute(select(func.count()).select_from(db_schema.product)).scalar_one() == 5

    second = script.run(parameters_path=str(params), engine=engine)
    assert second["chunks"] == 0
    assert second["total_lines"] == 0

    forced = script.run(parameters_path=str(params), engine=engine, full=True)
    assert forced["total_lines"] == 5


def test_failed_chunk_keeps_watermark(tmp_path: Path, make_params, engine, monkeypatch):
    script = _load_script()
    _write_source(tmp_path, 3)
    params = make_params()

    real_run = script.pipeline_3_load_chunk.run

    def flaky(**kwargs):
        if kwargs["key"].endswith("chunk-0002.jsonl.gz"):
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        return real_run(**kwargs)

    monkeypatch.setattr(script.pipeline_3_load_chunk, "run", flaky)

    out = script.run(parameters_path=str(params), engine=engine)

    assert out["chunks"] == 2
    assert out["failed_chunks"] == 1
    assert out["total_processed"] == 2
    assert out["watermark"] is None
    assert not (tmp_path / "blobs" / "proc" / "etl" / "last-processed-timestamp.txt").exists()
