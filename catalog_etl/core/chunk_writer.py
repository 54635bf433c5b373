# catalog_etl/core/chunk_writer.py
"""
Chunk Writer: bounded gzip partitions of the accepted source lines

Intent
- Turn a lazy, unbounded sequence of accepted raw lines into a lazy sequence of
  uploaded chunk objects, each holding at most `capacity` lines.

Layout
- key: {prefix}/{run_timestamp}/chunk-{seq:04d}.jsonl.gz   (seq starts at 1)
- body: gzip(lines joined by "\\n", trailing "\\n"), mtime=0 so identical input
  produces identical bytes
- content type: application/gzip

Guarantees
- sum(descriptor.estimated_lines) == number of lines consumed
- every chunk has exactly `capacity` lines except possibly the last
- an upload failure raises ChunkUploadError (cause chained) and stops the
  generator; chunks uploaded before it stay where they are
"""

from __future__ import annotations

import gzip
from typing import Iterable, Iterator, List

from pydantic import BaseModel, ConfigDict

from catalog_etl.io.blob_store import BlobStore
from catalog_etl.utils.logging import get_logger

CHUNK_CONTENT_TYPE = "application/gzip"


class ChunkUploadError(RuntimeError):
    """Raised when a chunk cannot be written to blob storage."""


class ChunkDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str
    key: str
    chunk_id: str
    estimated_lines: int


def chunk_key(prefix: str, run_timestamp: str, seq: int) -> str:
    return f"{prefix.strip('/')}/{run_timestamp}/chunk-{seq:04d}.jsonl.gz"


def compress_lines(lines: List[bytes]) -> bytes:
    payload = b"\n".join(lines) + b"\n" if lines else b""
    return gzip.compress(payload, mtime=0)


class ChunkWriter:
    """
    Buffers raw lines and emits one uploaded chunk per `capacity` lines.

    Attributes updated as the generator advances:
    - chunk_count: chunks uploaded so far
    - total_lines: lines written into uploaded chunks so far
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        bucket: str,
        prefix: str,
        run_timestamp: str,
        capacity: int = 5000,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.store = store
        self.bucket = bucket
        self.prefix = prefix
        self.run_timestamp = run_timestamp
        self.capacity = int(capacity)
        self.chunk_count = 0
        self.total_lines = 0
        self._logger = get_logger(__name__, run_id=run_timestamp)

    def _flush(self, lines: List[bytes]) -> ChunkDescriptor:
        seq = self.chunk_count + 1
        key = chunk_key(self.prefix, self.run_timestamp, seq)
        data = compress_lines(lines)

        try:
            self.store.put_bytes(self.bucket, key, data, content_type=CHUNK_CONTENT_TYPE)
        except Exception as e:
            self._logger.error("Error saving chunk %d to %s: %s", seq, BlobStore.uri(self.bucket, key), e)
            raise ChunkUploadError(f"Failed to save chunk {seq} to {BlobStore.uri(self.bucket, key)}") from e

        self.chunk_count = seq
        self.total_lines += len(lines)
        self._logger.info(
            "Uploaded chunk to %s (%d bytes, %d lines, total=%d)",
            BlobStore.uri(self.bucket, key),
            len(data),
            len(lines),
            self.total_lines,
        )
        return ChunkDescriptor(
            bucket=self.bucket,
            key=key,
            chunk_id=f"chunk-{seq}",
            estimated_lines=len(lines),
        )

    def write_chunks(self, lines: Iterable[bytes]) -> Iterator[ChunkDescriptor]:
        buffer: List[bytes] = []
        for line in lines:
            buffer.append(line)
            if len(buffer) >= self.capacity:
                yield self._flush(buffer)
                buffer = []

        if buffer:
            yield self._flush(buffer)


__all__ = [
    "CHUNK_CONTENT_TYPE",
    "ChunkUploadError",
    "ChunkDescriptor",
    "chunk_key",
    "compress_lines",
    "ChunkWriter",
]
