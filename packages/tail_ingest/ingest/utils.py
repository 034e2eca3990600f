"""Upload kind detection and dispatch to the format adapters.

The declared MIME type wins when it names a supported format (parameters such
as ``; charset=utf-8`` are ignored); otherwise the filename extension
decides. Anything else is rejected with :class:`UnsupportedFormat`.
"""

from __future__ import annotations

import os
from enum import Enum

from ..errors import UnsupportedFormat
from ..models import CSV_MIME_TYPE, PDF_MIME_TYPE, ExtractedResult
from .adapters.csv_rows import extract_csv
from .adapters.pdf_stub import extract_pdf


class UploadKind(Enum):
    CSV = "csv"
    PDF = "pdf"


_BY_MIME = {CSV_MIME_TYPE: UploadKind.CSV, PDF_MIME_TYPE: UploadKind.PDF}
_BY_EXTENSION = {".csv": UploadKind.CSV, ".pdf": UploadKind.PDF}


def _bare_mime(mime_type: str | None) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower()


def detect_upload_kind(mime_type: str | None, filename: str | None) -> UploadKind | None:
    kind = _BY_MIME.get(_bare_mime(mime_type))
    if kind is not None:
        return kind
    extension = os.path.splitext((filename or "").strip())[1].lower()
    return _BY_EXTENSION.get(extension)


def is_supported_upload_file(mime_type: str | None, filename: str | None) -> bool:
    return detect_upload_kind(mime_type, filename) is not None


def extract_upload(data: bytes, mime_type: str | None, filename: str | None) -> ExtractedResult:
    """Extract raw records from an uploaded document.

    Raises :class:`UnsupportedFormat` when neither ``mime_type`` nor the
    extension of ``filename`` names CSV or PDF.
    """

    kind = detect_upload_kind(mime_type, filename)
    if kind is UploadKind.CSV:
        return extract_csv(data)
    if kind is UploadKind.PDF:
        return extract_pdf(data)
    raise UnsupportedFormat(mime_type or "", filename or "")


__all__ = ["UploadKind", "detect_upload_kind", "is_supported_upload_file", "extract_upload"]
