# tests/test_blob_store.py
import io
from pathlib import Path
from types import SimpleNamespace

import pytest
from botocore.exceptions import ClientError

from catalog_etl.io.blob_store import (
    BlobNotFoundError,
    BlobStore,
    LocalBlobStore,
    S3BlobStore,
    build_blob_store,
)


class _FakeS3Client:
    def __init__(self) -> None:
        self.objects = {}
        self.content_types = {}

    def put_object(self, *, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = bytes(Body)
        self.content_types[(Bucket, Key)] = ContentType

    def get_object(self, *, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


class _DeniedS3Client(_FakeS3Client):
    def get_object(self, *, Bucket, Key):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "GetObject")


def test_local_store_round_trip_and_layout(tmp_path: Path):
    store = LocalBlobStore(tmp_path)
    store.put_bytes("b", "etl/x/chunk-0001.jsonl.gz", b"abc", content_type="application/gzip")

    assert (tmp_path / "b" / "etl/x/chunk-0001.jsonl.gz").read_bytes() == b"abc"
    with store.open_object("b", "etl/x/chunk-0001.jsonl.gz") as f:
        assert f.read() == b"abc"


def test_local_store_missing_object(tmp_path: Path):
    store = LocalBlobStore(tmp_path)
    with pytest.raises(BlobNotFoundError):
        store.open_object("b", "nope")
    assert store.read_text("b", "nope") is None


def test_text_helpers(tmp_path: Path):
    store = LocalBlobStore(tmp_path)
    store.put_text("b", "wm.txt", "2024-01-01T00:00:00")
    assert store.read_text("b", "wm.txt") == "2024-01-01T00:00:00"


def test_s3_store_uses_client_and_maps_missing_key():
    client = _FakeS3Client()
    store = S3BlobStore(client=client)

    store.put_bytes("bk", "k", b"data", content_type="application/gzip")
    assert client.content_types[("bk", "k")] == "application/gzip"
    assert store.open_object("bk", "k").read() == b"data"

    with pytest.raises(BlobNotFoundError):
        store.open_object("bk", "missing")
    assert store.read_text("bk", "missing") is None


def test_s3_store_propagates_other_client_errors():
    store = S3BlobStore(client=_DeniedS3Client())
    with pytest.raises(ClientError):
        store.read_text("bk", "k")


def test_uri():
    assert BlobStore.uri("bucket", "a/b.txt") == "s3://bucket/a/b.txt"


def test_build_blob_store_local_and_unknown(tmp_path: Path):
    params = SimpleNamespace(storage=SimpleNamespace(backend="local", local_root=str(tmp_path)))
    assert isinstance(build_blob_store(params), LocalBlobStore)

    params.storage.backend = "ftp"
    with pytest.raises(ValueError):
        build_blob_store(params)
