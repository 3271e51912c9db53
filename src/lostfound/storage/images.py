"""Image storage for found items: resolve filenames and mint access URLs."""

from __future__ import annotations

import logging
import mimetypes
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path, PurePosixPath
from typing import Optional

from lostfound.errors import BlobNotFoundError, ResolutionError
from lostfound.settings import Settings, get_settings

try:  # pragma: no cover - optional dependency when running in local mode
    from google.api_core import exceptions as gcs_exceptions
    from google.cloud import storage
except ImportError:  # pragma: no cover - local/dev environments may not install GCS client
    gcs_exceptions = None
    storage = None

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ImageHandle:
    """Bytes and metadata of a resolved item image."""

    filename: str
    data: bytes
    content_type: str
    uri: str


def _object_name(prefix: str, filename: str) -> str:
    clean = PurePosixPath(filename)
    if clean.is_absolute() or ".." in clean.parts or not filename.strip():
        raise BlobNotFoundError(f"Invalid image filename {filename!r}", filename=filename)
    return f"{prefix}{clean.as_posix()}"


def _content_type(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class ImageStore:
    """Resolve found-item images from GCS or a local directory."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        local_dir: Optional[Path] = None,
        client=None,
    ) -> None:
        self._settings = settings or get_settings()
        storage_settings = self._settings.storage
        self._prefix = storage_settings.image_prefix or ""
        self._timeout = storage_settings.request_timeout_seconds
        self._default_ttl = storage_settings.presigned_url_ttl_seconds

        if storage_settings.image_bucket:
            if client is None:
                if storage is None:
                    raise RuntimeError("google-cloud-storage required for GCS image backend")
                client = storage.Client(project=storage_settings.gcp_project)
            self._backend = "gcs"
            self._bucket_name = storage_settings.image_bucket
            self._bucket = client.bucket(self._bucket_name)
            self._local_dir = None
        else:
            self._backend = "local"
            self._local_dir = Path(local_dir or storage_settings.image_local_dir)
            self._bucket_name = None
            self._bucket = None

    @property
    def backend(self) -> str:
        return self._backend

    def resolve(self, filename: str) -> ImageHandle:
        """Return the image for ``filename``.

        Raises:
            BlobNotFoundError: the object does not exist.
            ResolutionError: the blob store could not be reached.
        """

        object_name = _object_name(self._prefix, filename)
        if self._backend == "local":
            assert self._local_dir is not None  # mypy safeguard
            path = self._local_dir / object_name
            if not path.is_file():
                raise BlobNotFoundError(f"Image not found: {path}", filename=filename)
            try:
                data = path.read_bytes()
            except OSError as exc:
                raise ResolutionError(f"Could not read {path}: {exc}", filename=filename, original_error=exc) from exc
            return ImageHandle(filename=filename, data=data, content_type=_content_type(filename), uri=str(path))

        assert self._bucket is not None  # mypy safeguard
        blob = self._bucket.blob(object_name)
        try:
            data = blob.download_as_bytes(timeout=self._timeout)
        except Exception as exc:
            if gcs_exceptions is not None and isinstance(exc, gcs_exceptions.NotFound):
                raise BlobNotFoundError(f"Image not found: gs://{self._bucket_name}/{object_name}", filename=filename) from exc
            raise ResolutionError(f"Could not download {object_name}: {exc}", filename=filename, original_error=exc) from exc
        return ImageHandle(
            filename=filename,
            data=data,
            content_type=blob.content_type or _content_type(filename),
            uri=f"gs://{self._bucket_name}/{object_name}",
        )

    def presigned_url(self, filename: str, ttl_seconds: Optional[int] = None) -> str:
        """Return a time-limited URL for ``filename``.

        Raises:
            BlobNotFoundError: the object does not exist.
        """

        ttl = int(ttl_seconds or self._default_ttl)
        object_name = _object_name(self._prefix, filename)
        if self._backend == "local":
            assert self._local_dir is not None  # mypy safeguard
            path = (self._local_dir / object_name).resolve()
            if not path.is_file():
                raise BlobNotFoundError(f"Image not found: {path}", filename=filename)
            expires_at = int(time.time()) + ttl
            return f"{path.as_uri()}?expires={expires_at}"

        assert self._bucket is not None  # mypy safeguard
        blob = self._bucket.blob(object_name)
        if not blob.exists(timeout=self._timeout):
            raise BlobNotFoundError(f"Image not found: gs://{self._bucket_name}/{object_name}", filename=filename)
        url = blob.generate_signed_url(version="v4", expiration=timedelta(seconds=ttl), method="GET")
        LOGGER.debug("Issued signed URL for %s ttl=%s", object_name, ttl)
        return url


__all__ = ["ImageHandle", "ImageStore"]
