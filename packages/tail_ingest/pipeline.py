"""Public pipeline entry points.

``extract -> canonicalize_and_hash -> derive`` with no I/O besides the
optional file read in :func:`normalize_bank_csv`. Every function here is
deterministic: the same bytes and options always produce the same hashes and
candidates.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path

from .canonical import canonicalize_and_hash
from .config import IngestSettings
from .derive import derive_outcomes, derive_transactions, log_skipped
from .ingest import extract_upload
from .models import (
    CSV_MIME_TYPE,
    DEFAULT_NORMALIZATION_VERSION,
    BankCsvTransaction,
    ExtractedResult,
    PipelineResult,
)


def extract(data: bytes, mime_type: str | None, filename: str | None) -> ExtractedResult:
    """Extract raw records; raises ``UnsupportedFormat`` for non CSV/PDF input."""

    return extract_upload(data, mime_type, filename)


def run_pipeline(
    data: bytes,
    mime_type: str | None,
    filename: str | None,
    settings: IngestSettings | None = None,
) -> PipelineResult:
    """Run all stages over one document, keeping skipped rows as outcomes."""

    settings = settings or IngestSettings()
    normalized = canonicalize_and_hash(extract(data, mime_type, filename))
    outcomes = derive_outcomes(
        normalized.records,
        normalization_version=settings.normalization_version,
        default_currency=settings.default_currency,
    )
    log_skipped(outcomes)
    return PipelineResult(normalized=normalized, outcomes=outcomes)


def _resolve_bank_csv_bytes(
    file_path: str | PathLike[str] | None, file_bytes: bytes | None
) -> bytes:
    has_path = file_path is not None and str(file_path).strip() != ""
    has_bytes = file_bytes is not None
    if has_path == has_bytes:
        raise ValueError("Provide exactly one of file_path or file_bytes.")
    if has_path:
        return Path(file_path).read_bytes()  # type: ignore[arg-type]
    return bytes(file_bytes)  # type: ignore[arg-type]


def normalize_bank_csv(
    *,
    source: str,
    file_path: str | PathLike[str] | None = None,
    file_bytes: bytes | None = None,
    normalization_version: str = DEFAULT_NORMALIZATION_VERSION,
    default_currency: str | None = "INR",
) -> list[BankCsvTransaction]:
    """Normalize a bank CSV export into candidates tagged with ``source``.

    Exactly one of ``file_path`` and ``file_bytes`` must be given. The input is
    always treated as CSV regardless of its filename.
    """

    label = (source or "").strip()
    if not label:
        raise ValueError("source is required.")
    data = _resolve_bank_csv_bytes(file_path, file_bytes)
    normalized = canonicalize_and_hash(extract(data, CSV_MIME_TYPE, "upload.csv"))
    candidates = derive_transactions(
        normalized.records,
        normalization_version=normalization_version,
        default_currency=default_currency,
    )
    return [BankCsvTransaction(source=label, candidate=c) for c in candidates]


__all__ = [
    "extract",
    "canonicalize_and_hash",
    "derive_transactions",
    "run_pipeline",
    "normalize_bank_csv",
]
