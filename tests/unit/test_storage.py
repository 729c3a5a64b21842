"""Unit tests for blob storage."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from uuid6 import uuid7

from src.services.storage import (
    BlobNotFoundError,
    LocalBlobStore,
    S3BlobStore,
    StorageError,
    build_storage_key,
)


class TestStorageKeys:
    """Tests for storage key generation."""

    def test_key_layout(self) -> None:
        """Test keys are namespaced by pet and keep only the extension."""
        pet_id = uuid7()
        key = build_storage_key(pet_id, "../../etc/Rabies Card.JPG", "image/jpeg")
        assert key.startswith(f"documents/{pet_id}/")
        assert key.endswith(".jpg")
        assert "Rabies" not in key
        assert ".." not in key

    def test_missing_extension_uses_mime_type(self) -> None:
        """Test the extension is derived from the MIME type when absent."""
        key = build_storage_key(uuid7(), "scan", "application/pdf")
        assert key.endswith(".pdf")

    def test_keys_are_unique(self) -> None:
        """Test two uploads of the same file never share a key."""
        pet_id = uuid7()
        assert build_storage_key(pet_id, "a.pdf", "application/pdf") != build_storage_key(
            pet_id, "a.pdf", "application/pdf"
        )


class TestLocalBlobStore:
    """Tests for the filesystem store."""

    async def test_put_get_delete(self, tmp_path: Path) -> None:
        """Test the full blob lifecycle."""
        store = LocalBlobStore(tmp_path)
        await store.put("documents/p/1.pdf", b"%PDF-1.4", "application/pdf")

        assert await store.exists("documents/p/1.pdf")
        assert await store.get("documents/p/1.pdf") == b"%PDF-1.4"

        await store.delete("documents/p/1.pdf")
        assert not await store.exists("documents/p/1.pdf")

    async def test_missing_blob_raises(self, tmp_path: Path) -> None:
        """Test reading a missing key raises BlobNotFoundError."""
        with pytest.raises(BlobNotFoundError):
            await LocalBlobStore(tmp_path).get("documents/none.pdf")

    async def test_delete_missing_is_noop(self, tmp_path: Path) -> None:
        """Test deleting twice does not fail."""
        await LocalBlobStore(tmp_path).delete("documents/none.pdf")

    async def test_key_cannot_escape_root(self, tmp_path: Path) -> None:
        """Test path traversal is refused."""
        with pytest.raises(StorageError):
            await LocalBlobStore(tmp_path / "blobs").put("../outside.pdf", b"x", "application/pdf")


class TestS3BlobStore:
    """Tests for the S3 store against a stubbed boto3 client."""

    async def test_put_and_get(self) -> None:
        """Test objects are written and read through the client."""
        client = MagicMock()
        body = MagicMock()
        body.read.return_value = b"%PDF-1.4"
        client.get_object.return_value = {"Body": body}
        store = S3BlobStore(bucket="pet-docs", client=client)

        await store.put("documents/p/1.pdf", b"%PDF-1.4", "application/pdf")
        content = await store.get("documents/p/1.pdf")

        client.put_object.assert_called_once()
        assert client.put_object.call_args.kwargs["Bucket"] == "pet-docs"
        assert client.put_object.call_args.kwargs["ContentType"] == "application/pdf"
        assert content == b"%PDF-1.4"

    async def test_missing_object_raises(self) -> None:
        """Test NoSuchKey is translated to BlobNotFoundError."""
        client = MagicMock()
        client.get_object.side_effect = ClientError(
            {"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject"
        )
        store = S3BlobStore(bucket="pet-docs", client=client)

        with pytest.raises(BlobNotFoundError):
            await store.get("documents/none.pdf")
