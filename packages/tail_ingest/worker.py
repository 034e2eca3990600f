"""Upload processing: store bytes, run the pipeline, persist results.

Two entry points:

- :func:`ingest_upload` accepts a new document. It resolves the source,
  opens a ``queued`` sync run, stores the bytes and records the upload, then
  either parses inline or hands back an :class:`UploadParseJob` for an
  external queue.
- :func:`process_upload` runs one parse job to completion. Any failure marks
  the run ``failed`` in a fresh transaction and is re-raised.

Each phase uses its own session from ``session_factory`` so that a failure
while parsing never rolls back the run bookkeeping written before it.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from db.client import SessionFactory

from .canonical import hash_sha256
from .config import IngestSettings
from .errors import UnsupportedFormat
from .ingest import is_supported_upload_file
from .logging_setup import get_logger
from .models import NormalizedTransactionCandidate, ParseRunStats, UploadParseJob
from .persistence import (
    create_queued_sync_run,
    create_raw_upload,
    insert_normalized_transactions,
    insert_raw_rows,
    mark_sync_run_completed,
    mark_sync_run_failed,
    mark_sync_run_running,
    resolve_or_create_source,
    resolve_source_system,
)
from .pipeline import run_pipeline
from .storage import LocalObjectStore, build_upload_object_key

_logger = get_logger("tail_ingest.worker")

DEFAULT_MIME_TYPE = "application/octet-stream"

type ParseMode = Literal["inline", "queued"]


@dataclass(frozen=True, slots=True)
class UploadCounts:
    total: int
    inserted: int
    duplicates: int
    normalized_candidates: int = 0
    normalized_inserted: int = 0
    skipped: int = 0


@dataclass(frozen=True, slots=True)
class ProcessedUpload:
    status: str
    stats: ParseRunStats
    candidates: list[NormalizedTransactionCandidate]

    @property
    def counts(self) -> UploadCounts:
        return UploadCounts(
            total=self.stats.total_records,
            inserted=self.stats.inserted_records,
            duplicates=self.stats.duplicate_records,
            normalized_candidates=self.stats.normalized_candidate_records,
            normalized_inserted=self.stats.normalized_inserted_records,
            skipped=self.stats.skipped_normalization_records,
        )


@dataclass(frozen=True, slots=True)
class UploadOutcome:
    upload_id: str
    sync_run_id: str
    source_system: str
    status: str
    counts: UploadCounts
    normalized_transactions: list[NormalizedTransactionCandidate] = field(default_factory=list)
    job: UploadParseJob | None = None


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def _mark_failed(session_factory: SessionFactory, sync_run_id: str, error: BaseException) -> None:
    with session_factory() as session:
        mark_sync_run_failed(session, sync_run_id, error)


def process_upload(
    session_factory: SessionFactory,
    store: LocalObjectStore,
    job: UploadParseJob,
    settings: IngestSettings,
    *,
    parse_mode: ParseMode = "queued",
    data: bytes | None = None,
) -> ProcessedUpload:
    """Parse one stored upload and persist its rows and transactions.

    ``data`` short-circuits the object-store read when the caller still holds
    the bytes (inline parsing).
    """

    started = time.perf_counter()
    try:
        with session_factory() as session:
            mark_sync_run_running(session, job.sync_run_id)

        payload = data if data is not None else store.get(job.object_key)
        result = run_pipeline(payload, job.mime_type, job.original_filename, settings)
        candidates = result.candidates

        with session_factory() as session:
            total = len(result.normalized.records)
            inserted = insert_raw_rows(
                session,
                upload_id=job.upload_id,
                source_system=job.source_system,
                records=result.normalized.records,
            )
            normalized_inserted = insert_normalized_transactions(
                session, source_system=job.source_system, candidates=candidates
            )
            stats = ParseRunStats(
                total_records=total,
                inserted_records=inserted,
                duplicate_records=total - inserted,
                normalized_candidate_records=len(candidates),
                normalized_inserted_records=normalized_inserted,
                skipped_normalization_records=len(result.skipped),
                file_name=job.original_filename,
                raw_mime_type=result.normalized.format_mime_type,
                parse_mode=parse_mode,
                parse_duration_ms=_elapsed_ms(started),
            )
            status = mark_sync_run_completed(session, job.sync_run_id, stats)
    except Exception as exc:
        _logger.exception("Upload %s failed (sync run %s)", job.upload_id, job.sync_run_id)
        _mark_failed(session_factory, job.sync_run_id, exc)
        raise

    _logger.info(
        "Upload %s %s: %d rows (%d new, %d duplicate), %d transactions (%d new)",
        job.upload_id,
        status,
        stats.total_records,
        stats.inserted_records,
        stats.duplicate_records,
        stats.normalized_candidate_records,
        stats.normalized_inserted_records,
    )
    return ProcessedUpload(status=status, stats=stats, candidates=candidates)


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def ingest_upload(
    session_factory: SessionFactory,
    store: LocalObjectStore,
    *,
    data: bytes,
    filename: str,
    mime_type: str | None,
    settings: IngestSettings,
    source_id: str | None = None,
    external_id: str | None = None,
    uploaded_at: datetime | None = None,
) -> UploadOutcome:
    """Accept one uploaded document.

    Raises :class:`UnsupportedFormat` before anything is written when the
    document is neither CSV nor PDF.
    """

    raw_mime_type = (mime_type or "").strip() or DEFAULT_MIME_TYPE
    if not is_supported_upload_file(raw_mime_type, filename):
        raise UnsupportedFormat(raw_mime_type, filename)

    uploaded_at = uploaded_at or datetime.now(UTC)
    with session_factory() as session:
        source = resolve_or_create_source(session, _optional(source_id))
        resolved_source_id = source.id
        source_system = resolve_source_system(source)
        sync_run_id = create_queued_sync_run(session, resolved_source_id, _optional(external_id)).id

    upload_id = str(uuid.uuid4())
    object_key = build_upload_object_key(resolved_source_id, upload_id, filename, uploaded_at)
    try:
        raw_blob_uri = store.put(object_key, data, raw_mime_type)
        with session_factory() as session:
            create_raw_upload(
                session,
                upload_id=upload_id,
                source_id=resolved_source_id,
                sync_run_id=sync_run_id,
                source_system=source_system,
                filename=filename,
                content_sha256=hash_sha256(data),
                raw_blob_uri=raw_blob_uri,
                raw_mime_type=raw_mime_type,
                uploaded_at=uploaded_at,
            )
    except Exception as exc:
        _logger.exception("Failed to record upload %s", upload_id)
        _mark_failed(session_factory, sync_run_id, exc)
        raise

    job = UploadParseJob(
        source_id=resolved_source_id,
        source_system=source_system,
        sync_run_id=sync_run_id,
        upload_id=upload_id,
        external_id=_optional(external_id),
        original_filename=filename,
        object_key=object_key,
        mime_type=raw_mime_type,
    )

    if not settings.parse_inline:
        _logger.info("Queued upload %s for parsing (sync run %s)", upload_id, sync_run_id)
        return UploadOutcome(
            upload_id=upload_id,
            sync_run_id=sync_run_id,
            source_system=source_system,
            status="queued",
            counts=UploadCounts(total=0, inserted=0, duplicates=0),
            job=job,
        )

    processed = process_upload(
        session_factory, store, job, settings, parse_mode="inline", data=data
    )
    return UploadOutcome(
        upload_id=upload_id,
        sync_run_id=sync_run_id,
        source_system=source_system,
        status=processed.status,
        counts=processed.counts,
        normalized_transactions=processed.candidates,
    )


__all__ = [
    "UploadCounts",
    "UploadOutcome",
    "ProcessedUpload",
    "process_upload",
    "ingest_upload",
]
