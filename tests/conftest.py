# tests/conftest.py
import pytest

_OVERRIDE_VARS = [
    "CHUNK_SIZE",
    "BATCH_SIZE",
    "S3_READ_GZIP",
    "PROCESSING_BUCKET",
    "DOWNLOAD_URL",
    "TARGET_LANGUAGE",
    "DATABASE_URL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Deployment env vars must not leak into config tests."""
    for var in _OVERRIDE_VARS:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture()
def make_params(tmp_path):
    """
    Write a parameters.yaml wired to tmp_path (local blob store, tmp artifact dirs).

    Returns a builder: make_params(section={...}, ...) -> path; sections are merged
    over the defaults.
    """
    import yaml

    def _build(**sections):
        cfg = {
            "run": {"name": "test", "log_level": "INFO", "log_file": None, "verbose": 0},
            "source": {"download_url": str(tmp_path / "source.jsonl.gz"), "gzip": "auto"},
            "producer": {
                "chunk_size": 2,
                "chunk_prefix": "etl/chunks",
                "manifest_dir": str(tmp_path / "manifests"),
            },
            "consumer": {"batch_size": 2, "gzip": "auto", "language": "en", "verify_counts": True},
            "storage": {"backend": "local", "bucket": "proc", "local_root": str(tmp_path / "blobs")},
            "watermark": {"key": "etl/last-processed-timestamp.txt"},
            "reports": {"prefix": "etl/reports", "local_dir": str(tmp_path / "reports")},
        }
        for name, values in sections.items():
            cfg[name] = {**cfg.get(name, {}), **values}

        path = tmp_path / "configs" / "parameters.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
        return path

    return _build
