"""
Blob storage for raw uploaded files.

Two backends share one async contract (put/get/delete by opaque key):
- LocalBlobStore: files under a directory, for development and tests
- S3BlobStore: any S3-compatible object store (AWS, MinIO) via boto3

boto3 and filesystem calls are blocking, so both backends push them onto a
worker thread with ``asyncio.to_thread``.
"""

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from uuid import UUID

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError
from uuid6 import uuid7

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class StorageError(Exception):
    """Base exception for blob storage errors."""

    pass


class BlobNotFoundError(StorageError):
    """Raised when a key has no stored blob."""

    pass


# =============================================================================
# Keys
# =============================================================================


def build_storage_key(pet_id: UUID, filename: str, mime_type: str) -> str:
    """
    Generate a fresh key: ``documents/{pet_id}/{uuid7}{ext}``.

    The client filename only contributes its extension; the stem is never
    used so keys cannot collide or escape the prefix.
    """
    ext = Path(filename).suffix.lower()
    if not ext or len(ext) > 6 or not ext[1:].isalnum():
        ext = mimetypes.guess_extension(mime_type) or ""
    return f"documents/{pet_id}/{uuid7().hex}{ext}"


# =============================================================================
# Base Store
# =============================================================================


class BlobStore(ABC):
    """Abstract async blob store."""

    @abstractmethod
    async def put(self, key: str, content: bytes, content_type: str) -> None:
        """Store ``content`` under ``key``, replacing any existing blob."""
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the blob for ``key``; raises BlobNotFoundError."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the blob; deleting a missing key is not an error."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass


# =============================================================================
# Local Filesystem
# =============================================================================


class LocalBlobStore(BlobStore):
    """Stores blobs as files below ``root``."""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or settings.storage_local_dir).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise StorageError("Storage key escapes the storage root")
        return path

    def _write(self, key: str, content: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".part")
        tmp.write_bytes(content)
        tmp.replace(path)

    def _read(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e

    async def put(self, key: str, content: bytes, content_type: str) -> None:  # noqa: ARG002
        await asyncio.to_thread(self._write, key, content)
        logger.debug("Blob stored", backend="local", size=len(content))

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._read, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)


# =============================================================================
# S3-compatible Object Storage
# =============================================================================


class S3BlobStore(BlobStore):
    """Stores blobs in one S3 bucket."""

    def __init__(
        self,
        bucket: str | None = None,
        client=None,
    ):
        self.bucket = bucket or settings.s3_bucket
        if not self.bucket:
            raise ValueError("S3 bucket not configured. Set S3_BUCKET in .env")
        self._s3 = client or boto3.client(
            "s3",
            region_name=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            config=Config(signature_version="s3v4"),
        )

    def _get_object(self, key: str) -> bytes:
        try:
            obj = self._s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise BlobNotFoundError(key) from e
            raise StorageError(f"S3 get failed: {e}") from e
        return obj["Body"].read()

    def _head_object(self, key: str) -> bool:
        try:
            self._s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return False
            raise StorageError(f"S3 head failed: {e}") from e

    async def put(self, key: str, content: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except ClientError as e:
            raise StorageError(f"S3 put failed: {e}") from e
        logger.debug("Blob stored", backend="s3", size=len(content))

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get_object, key)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise StorageError(f"S3 delete failed: {e}") from e

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._head_object, key)


# =============================================================================
# Factory Function
# =============================================================================


def get_blob_store(provider: str | None = None) -> BlobStore:
    """
    Build the configured blob store.

    Args:
        provider: "local" or "s3" (defaults to settings.storage_provider)
    """
    provider = provider or settings.storage_provider
    if provider == "local":
        return LocalBlobStore()
    elif provider == "s3":
        return S3BlobStore()
    else:
        raise ValueError(f"Unsupported storage provider: {provider}")
