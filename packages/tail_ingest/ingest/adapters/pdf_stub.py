"""Placeholder PDF adapter.

No real text extraction happens here. The bytes are decoded best-effort and
whatever printable text survives is kept as a single ``{"text": ...}`` record
so a PDF upload still yields one content-addressed row.
"""

from __future__ import annotations

import re

from ...models import PDF_MIME_TYPE, ExtractedResult, RawRecord

MAX_TEXT_LENGTH = 4000
PLACEHOLDER_TEXT = "[pdf-content-not-extracted]"

_WHITESPACE_RE = re.compile(r"\s+")


def _printable_text(data: bytes) -> str:
    text = data.decode("utf-8", errors="replace").replace("\x00", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()[:MAX_TEXT_LENGTH]


def extract_pdf(data: bytes) -> ExtractedResult:
    text = _printable_text(data) or PLACEHOLDER_TEXT
    return ExtractedResult(
        format_mime_type=PDF_MIME_TYPE,
        records=(RawRecord(raw_json={"text": text}, row_index=0),),
    )


__all__ = ["MAX_TEXT_LENGTH", "PLACEHOLDER_TEXT", "extract_pdf"]
