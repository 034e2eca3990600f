"""Data models for ``tail_ingest``.

Pipeline values are frozen, slotted dataclasses: they are produced once by a
stage and never mutated afterwards. The run-statistics payload persisted by
the storage layer is a pydantic model so that its JSON shape is validated at
the boundary.

Record lifecycle::

    RawRecord --canonicalize/hash--> NormalizedRecord --derive--> Derived | Skipped
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

CSV_MIME_TYPE = "text/csv"
PDF_MIME_TYPE = "application/pdf"

DEFAULT_NORMALIZATION_VERSION = "v1"


# ---------------------------------------------------------------------------
# Extraction and hashing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawRecord:
    """One extracted row.

    ``raw_json`` maps field names to scalars (or ``None``) exactly as read from
    the document. ``row_index`` is the 0-based position in document order:
    data-row order after the header for CSV, always ``0`` for the PDF stub.
    """

    raw_json: Mapping[str, Any]
    row_index: int

    def __post_init__(self) -> None:
        if isinstance(self.row_index, bool) or self.row_index < 0:
            raise ValueError("RawRecord.row_index must be a non-negative integer")


@dataclass(frozen=True, slots=True)
class ExtractedResult:
    format_mime_type: str
    records: tuple[RawRecord, ...]


@dataclass(frozen=True, slots=True)
class NormalizedRecord:
    """A raw row paired with its content hash.

    ``raw_json`` is the original, uncanonicalized mapping; ``row_sha256`` is
    the SHA-256 of its canonical serialization and acts as the dedup key within
    a source-system scope.
    """

    raw_json: Mapping[str, Any]
    row_index: int
    row_sha256: str


@dataclass(frozen=True, slots=True)
class NormalizedResult:
    format_mime_type: str
    records: tuple[NormalizedRecord, ...]


# ---------------------------------------------------------------------------
# Transaction derivation
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NormalizedTransactionCandidate:
    """Best-effort structured transaction derived from one row.

    ``amount`` is a fixed-scale (6 digit) decimal string, ``currency`` a
    3-letter code and ``occurred_at`` an ISO date or UTC timestamp when the row
    carried a parseable date.
    """

    row_sha256: str
    occurred_at: str | None
    amount: str
    currency: str
    description: str
    merchant: str | None
    account_id: str | None
    category: str | None
    normalization_version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "row_sha256": self.row_sha256,
            "occurred_at": self.occurred_at,
            "amount": self.amount,
            "currency": self.currency,
            "description": self.description,
            "merchant": self.merchant,
            "account_id": self.account_id,
            "category": self.category,
            "normalization_version": self.normalization_version,
        }


@dataclass(frozen=True, slots=True)
class BankCsvTransaction:
    """A candidate tagged with the bank/source label it was normalized for."""

    source: str
    candidate: NormalizedTransactionCandidate

    def to_dict(self) -> dict[str, Any]:
        return {"source": self.source, **self.candidate.to_dict()}


class SkipReason(str, Enum):
    MISSING_AMOUNT = "missing_amount"
    MISSING_CURRENCY = "missing_currency"
    MISSING_DESCRIPTION = "missing_description"


@dataclass(frozen=True, slots=True)
class Derived:
    candidate: NormalizedTransactionCandidate


@dataclass(frozen=True, slots=True)
class Skipped:
    row_sha256: str
    row_index: int
    reason: SkipReason


type DerivationOutcome = Derived | Skipped


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Everything one pipeline pass produced for a document."""

    normalized: NormalizedResult
    outcomes: tuple[DerivationOutcome, ...]

    @property
    def candidates(self) -> list[NormalizedTransactionCandidate]:
        return [o.candidate for o in self.outcomes if isinstance(o, Derived)]

    @property
    def skipped(self) -> list[Skipped]:
        return [o for o in self.outcomes if isinstance(o, Skipped)]


# ---------------------------------------------------------------------------
# Run bookkeeping (consumed by the storage layer and the worker)
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UploadParseJob:
    """Payload handed to an external queue when parsing is not done inline."""

    source_id: str
    source_system: str
    sync_run_id: str
    upload_id: str
    external_id: str | None
    original_filename: str
    object_key: str
    mime_type: str


class ParseRunStats(BaseModel):
    """Typed shape of ``sync_runs.stats`` for a completed parse run."""

    model_config = ConfigDict(strict=True, extra="forbid")

    total_records: int = Field(ge=0)
    inserted_records: int = Field(ge=0)
    duplicate_records: int = Field(ge=0)
    normalized_candidate_records: int = Field(ge=0)
    normalized_inserted_records: int = Field(ge=0)
    skipped_normalization_records: int = Field(default=0, ge=0)
    file_name: str
    raw_mime_type: str
    parse_mode: Literal["inline", "queued"]
    pipeline: Literal["extract->normalize"] = "extract->normalize"
    parse_duration_ms: int = Field(ge=0)


__all__ = [
    "CSV_MIME_TYPE",
    "PDF_MIME_TYPE",
    "DEFAULT_NORMALIZATION_VERSION",
    "RawRecord",
    "ExtractedResult",
    "NormalizedRecord",
    "NormalizedResult",
    "NormalizedTransactionCandidate",
    "BankCsvTransaction",
    "SkipReason",
    "Derived",
    "Skipped",
    "DerivationOutcome",
    "PipelineResult",
    "UploadParseJob",
    "ParseRunStats",
]
