"""Tests for the image store backends."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from lostfound.errors import BlobNotFoundError
from lostfound.storage.images import ImageStore


@pytest.fixture()
def local_store(settings, tmp_path):
    folder = tmp_path / "images" / "lost_items"
    folder.mkdir(parents=True)
    (folder / "img001.jpg").write_bytes(b"jpeg-bytes")
    return ImageStore(settings=settings)


def test_local_resolve(local_store):
    handle = local_store.resolve("img001.jpg")

    assert local_store.backend == "local"
    assert handle.data == b"jpeg-bytes"
    assert handle.content_type == "image/jpeg"


def test_local_missing_and_traversal(local_store):
    with pytest.raises(BlobNotFoundError):
        local_store.resolve("img999.jpg")
    with pytest.raises(BlobNotFoundError):
        local_store.resolve("../secret.jpg")
    with pytest.raises(BlobNotFoundError):
        local_store.presigned_url("img999.jpg")


def test_local_presigned_url(local_store):
    url = local_store.presigned_url("img001.jpg", ttl_seconds=60)

    assert url.startswith("file://")
    assert "img001.jpg?expires=" in url


def test_gcs_presigned_url(settings_factory):
    settings = settings_factory(storage={"image_bucket": "lost-bucket"})
    client = MagicMock()
    blob = client.bucket.return_value.blob.return_value
    blob.exists.return_value = True
    blob.generate_signed_url.return_value = "https://signed.example/img001.jpg"

    store = ImageStore(settings=settings, client=client)

    assert store.backend == "gcs"
    assert store.presigned_url("img001.jpg") == "https://signed.example/img001.jpg"
    client.bucket.return_value.blob.assert_called_with("lost_items/img001.jpg")
    assert blob.generate_signed_url.call_args.kwargs["version"] == "v4"

    blob.exists.return_value = False
    with pytest.raises(BlobNotFoundError):
        store.presigned_url("img001.jpg")
