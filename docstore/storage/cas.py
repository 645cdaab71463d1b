from __future__ import annotations

import hashlib
from pathlib import Path

import zstandard as zstd

from shared.errors import NotFoundError, StorageError


def content_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def blob_path(objects_dir: Path, digest: str) -> Path:
    return objects_dir / digest[:2] / digest[2:]


def has_blob(objects_dir: Path, digest: str) -> bool:
    return blob_path(objects_dir, digest).exists()


def put_bytes(objects_dir: Path, data: bytes) -> str:
    """
    Store an uploaded document with zstd compression under blobs/<hh>/<rest>.
    Returns the sha256 hex digest (content id). Identical uploads share a blob.
    """
    digest = content_digest(data)
    dst = blob_path(objects_dir, digest)
    if dst.exists():
        return digest
    cctx = zstd.ZstdCompressor(level=10)
    compressed = cctx.compress(data)
    tmp = dst.with_suffix(".tmp")
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(compressed)
        tmp.replace(dst)
    except OSError as e:
        raise StorageError(f"Could not store blob {digest}: {e}") from e
    return digest


def get_bytes(objects_dir: Path, digest: str) -> bytes:
    src = blob_path(objects_dir, digest)
    if not src.exists():
        raise NotFoundError(f"Blob not found: {digest}")
    dctx = zstd.ZstdDecompressor()
    return dctx.decompress(src.read_bytes())
