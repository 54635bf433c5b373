# catalog_etl/io/blob_store.py
"""
Blob Store (S3 + local filesystem)

Intent
- Give the pipelines one narrow object-storage interface:
  - open_object(bucket, key)         -> readable binary stream (caller closes)
  - put_bytes(bucket, key, data, content_type=...)
  - read_text(bucket, key)           -> str | None (None when the object is missing)
  - put_text(bucket, key, text, content_type=...)
- Hide whether objects live in S3 (boto3) or on local disk (tests, laptop runs).

Key behaviors / guarantees
- Missing objects surface as `BlobNotFoundError` from `open_object()` and as
  `None` from `read_text()`; every other storage error propagates untouched.
- LocalBlobStore lays objects out as {root}/{bucket}/{key} and creates parent
  directories on write.

External dependencies
- boto3 / botocore (S3 backend)
"""

from __future__ import annotations

from contextlib import closing
from pathlib import Path
from typing import Any, BinaryIO, Optional

import boto3
from botocore.exceptions import ClientError

from catalog_etl.utils.logging import get_logger


class BlobNotFoundError(FileNotFoundError):
    """Raised when a bucket/key pair does not exist."""


class BlobStore:
    """Minimal object-storage contract shared by the S3 and local backends."""

    def open_object(self, bucket: str, key: str) -> BinaryIO:
        raise NotImplementedError

    def put_bytes(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        raise NotImplementedError

    def read_text(self, bucket: str, key: str) -> Optional[str]:
        try:
            f = self.open_object(bucket, key)
        except BlobNotFoundError:
            return None
        with closing(f):
            return f.read().decode("utf-8")

    def put_text(
        self,
        bucket: str,
        key: str,
        text: str,
        *,
        content_type: str = "text/plain; charset=utf-8",
    ) -> None:
        self.put_bytes(bucket, key, text.encode("utf-8"), content_type=content_type)

    @staticmethod
    def uri(bucket: str, key: str) -> str:
        return f"s3://{bucket}/{key}"


class S3BlobStore(BlobStore):
    def __init__(self, client: Any = None, *, endpoint_url: Optional[str] = None, region: Optional[str] = None) -> None:
        self.client = client if client is not None else boto3.client(
            "s3", endpoint_url=endpoint_url, region_name=region
        )

    def open_object(self, bucket: str, key: str) -> BinaryIO:
        try:
            resp = self.client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("NoSuchKey", "404", "NotFound"):
                raise BlobNotFoundError(f"Object not found: {self.uri(bucket, key)}") from e
            raise
        return resp["Body"]

    def put_bytes(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        self.client.put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, bucket: str, key: str) -> Path:
        return self.root / bucket / key

    def open_object(self, bucket: str, key: str) -> BinaryIO:
        p = self.path_for(bucket, key)
        if not p.is_file():
            raise BlobNotFoundError(f"Object not found: {p}")
        return p.open("rb")

    def put_bytes(
        self,
        bucket: str,
        key: str,
        data: bytes,
        *,
        content_type: str = "application/octet-stream",
    ) -> None:
        p = self.path_for(bucket, key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)


def build_blob_store(params: Any) -> BlobStore:
    """
    Build the configured backend from `params.storage`.
    """
    logger = get_logger(__name__)
    storage = params.storage
    backend = str(getattr(storage, "backend", "s3")).lower().strip()

    if backend == "local":
        logger.info("Blob store: local (root=%s)", storage.local_root)
        return LocalBlobStore(storage.local_root)

    if backend == "s3":
        logger.info("Blob store: s3 (endpoint=%s)", getattr(storage, "endpoint_url", None) or "default")
        return S3BlobStore(
            endpoint_url=getattr(storage, "endpoint_url", None),
            region=getattr(storage, "region", None),
        )

    raise ValueError(f"Unsupported storage backend: {backend}. Expected one of: s3|local")


__all__ = [
    "BlobNotFoundError",
    "BlobStore",
    "S3BlobStore",
    "LocalBlobStore",
    "build_blob_store",
]
