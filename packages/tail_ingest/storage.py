"""Filesystem-backed object store for uploaded documents.

Objects live under ``<root>/<bucket>/<object_key>`` and are addressed by a
storage URI of the form ``<scheme>://<bucket>/<object_key>`` that is stored in
``raw_uploads.raw_blob_uri``.

Atomicity: writes target ``<path>.tmp`` first and then ``os.replace`` into
place, so a reader never observes a partially written object.
"""

from __future__ import annotations

import contextlib
import os
import re
from datetime import UTC, datetime
from os import PathLike
from pathlib import Path, PurePosixPath

from .errors import StorageError
from .logging_setup import get_logger

_logger = get_logger("tail_ingest.storage")

_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]+")
_FALLBACK_FILENAME = "upload.bin"


def build_upload_object_key(
    source_id: str,
    upload_id: str,
    original_filename: str | None,
    uploaded_at: datetime | None = None,
) -> str:
    """Return ``uploads/<source>/<yyyy>/<mm>/<dd>/<upload>/<safe filename>``.

    The date parts are taken in UTC. Only the basename of ``original_filename``
    is kept and runs of characters outside ``[a-zA-Z0-9._-]`` become ``_``.
    """

    when = (uploaded_at or datetime.now(UTC)).astimezone(UTC)
    basename = PurePosixPath((original_filename or _FALLBACK_FILENAME).replace("\\", "/")).name
    safe = _UNSAFE_FILENAME_RE.sub("_", basename) or _FALLBACK_FILENAME
    return f"uploads/{source_id}/{when:%Y}/{when:%m}/{when:%d}/{upload_id}/{safe}"


def object_key_from_storage_uri(raw_blob_uri: str) -> str:
    """Strip ``<scheme>://<bucket>/`` from a storage URI.

    Raises ``ValueError`` when the URI has no scheme, no bucket separator or an
    empty key.
    """

    if not raw_blob_uri or not raw_blob_uri.strip():
        raise ValueError("raw_blob_uri is required.")
    _, marker, rest = raw_blob_uri.strip().partition("://")
    if not marker:
        raise ValueError(f"Invalid storage URI format: {raw_blob_uri!r}")
    _, slash, object_key = rest.partition("/")
    if not slash:
        raise ValueError(f"Invalid storage URI format: {raw_blob_uri!r}")
    if not object_key:
        raise ValueError(f"Storage URI does not include an object key: {raw_blob_uri!r}")
    return object_key


def _validate_object_key(object_key: str) -> PurePosixPath:
    """Reject keys that could escape the bucket directory."""

    if not object_key or object_key.startswith("/") or "\\" in object_key or "\x00" in object_key:
        raise StorageError(f"Invalid object key: {object_key!r}")
    path = PurePosixPath(object_key)
    if any(part in ("", ".", "..") for part in object_key.split("/")):
        raise StorageError(f"Invalid object key: {object_key!r}")
    return path


class LocalObjectStore:
    def __init__(
        self,
        root: str | PathLike[str],
        *,
        bucket: str = "uploads",
        uri_scheme: str = "file",
    ) -> None:
        if not bucket or "/" in bucket or bucket in (".", ".."):
            raise StorageError(f"Invalid bucket name: {bucket!r}")
        self.root = Path(root).expanduser().resolve()
        self.bucket = bucket
        self.uri_scheme = uri_scheme

    def _path_for(self, object_key: str) -> Path:
        return self.root / self.bucket / Path(*_validate_object_key(object_key).parts)

    def uri_for(self, object_key: str) -> str:
        _validate_object_key(object_key)
        return f"{self.uri_scheme}://{self.bucket}/{object_key}"

    def put(self, object_key: str, data: bytes, content_type: str | None = None) -> str:
        """Store ``data`` under ``object_key`` and return its storage URI.

        ``content_type`` is accepted for interface parity with remote stores
        and is not persisted.
        """

        path = self._path_for(object_key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise StorageError(f"Failed to write object {object_key!r}: {exc}") from exc
        _logger.debug(
            "Stored %d bytes at %s (content_type=%s)", len(data), object_key, content_type
        )
        return self.uri_for(object_key)

    def get(self, object_key: str) -> bytes:
        path = self._path_for(object_key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"Object not found: {object_key!r}") from exc
        except OSError as exc:
            raise StorageError(f"Failed to read object {object_key!r}: {exc}") from exc

    def get_by_uri(self, raw_blob_uri: str) -> bytes:
        return self.get(object_key_from_storage_uri(raw_blob_uri))


__all__ = ["LocalObjectStore", "build_upload_object_key", "object_key_from_storage_uri"]
