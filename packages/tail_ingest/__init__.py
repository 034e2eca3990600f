"""Public interface for the ``tail_ingest`` package.

This module re-exports the pipeline entry points and the models they
produce. Persistence, storage and the worker live in their own modules
because they pull in the database stack.
"""

from .canonical import canonicalize_row_value, hash_sha256, stable_serialize
from .config import IngestSettings
from .errors import ConfigError, IngestError, StorageError, UnsupportedFormat
from .ingest import is_supported_upload_file
from .models import (
    BankCsvTransaction,
    Derived,
    ExtractedResult,
    NormalizedRecord,
    NormalizedResult,
    NormalizedTransactionCandidate,
    ParseRunStats,
    PipelineResult,
    RawRecord,
    Skipped,
    SkipReason,
    UploadParseJob,
)
from .pipeline import (
    canonicalize_and_hash,
    derive_transactions,
    extract,
    normalize_bank_csv,
    run_pipeline,
)
from .source_system import normalize_source_system, source_system_for

__all__ = [
    # Pipeline
    "extract",
    "canonicalize_and_hash",
    "derive_transactions",
    "run_pipeline",
    "normalize_bank_csv",
    "is_supported_upload_file",
    # Hashing
    "canonicalize_row_value",
    "stable_serialize",
    "hash_sha256",
    # Source systems
    "normalize_source_system",
    "source_system_for",
    # Models / types
    "RawRecord",
    "ExtractedResult",
    "NormalizedRecord",
    "NormalizedResult",
    "NormalizedTransactionCandidate",
    "BankCsvTransaction",
    "Derived",
    "Skipped",
    "SkipReason",
    "PipelineResult",
    "UploadParseJob",
    "ParseRunStats",
    "IngestSettings",
    # Errors
    "IngestError",
    "UnsupportedFormat",
    "StorageError",
    "ConfigError",
]
