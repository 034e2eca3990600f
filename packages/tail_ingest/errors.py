"""Exception types raised by ``tail_ingest``.

Only structurally unrecognized input is fatal inside the pipeline. Bad cells
degrade to pass-through values and rows missing required transaction fields
are reported as skipped outcomes, never as exceptions.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for errors raised by this package."""


class UnsupportedFormat(IngestError, ValueError):
    """Neither the MIME type nor the filename extension names CSV or PDF."""

    def __init__(self, mime_type: str, filename: str) -> None:
        self.mime_type = mime_type
        self.filename = filename
        super().__init__(
            "Only CSV and PDF uploads are supported "
            f"(mime_type={mime_type!r}, filename={filename!r})."
        )


class StorageError(IngestError):
    """Object store failure: invalid key, malformed URI, missing object."""


class ConfigError(IngestError, ValueError):
    """Invalid configuration value."""


__all__ = ["IngestError", "UnsupportedFormat", "StorageError", "ConfigError"]
