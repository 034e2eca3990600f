"""Persistence integration for tail_ingest.

Functions here write sources, sync runs, uploads, raw rows and normalized
transactions to the shared database owned by ``libs/db``. They rely on the
SQLAlchemy models in ``db.models.ingest`` and take an open ``Session``; the
caller owns the transaction (see ``db.client.session_scope``).

Idempotency:
- ``raw_rows`` is unique on ``(source_system, row_sha256)``;
- ``normalized_transactions`` is unique on
  ``(source_system, row_sha256, normalization_version)``.

Both batch inserts use ``ON CONFLICT DO NOTHING`` so re-running the same
upload, or two uploads racing each other, never duplicates rows. The return
value is the number of rows actually inserted.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from db.models.ingest import NormalizedTransaction, RawRow, RawUpload, Source, SyncRun

from .logging_setup import get_logger
from .models import NormalizedRecord, NormalizedTransactionCandidate, ParseRunStats
from .source_system import source_system_for

MANUAL_SOURCE_NAME = "Manual Upload"
MANUAL_SOURCE_KIND = "manual_upload"

INSERT_BATCH_SIZE = 500

_logger = get_logger("tail_ingest.persistence")


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def resolve_or_create_source(session: Session, source_id: str | None = None) -> Source:
    """Return the active source ``source_id`` or the shared manual-upload source.

    Raises ``LookupError`` when ``source_id`` is given but unknown or inactive.
    The manual-upload source is created on first use.
    """

    if source_id:
        source = session.scalars(
            select(Source).where(Source.id == source_id, Source.is_active.is_(True))
        ).first()
        if source is None:
            raise LookupError("source_id was not found or is inactive.")
        return source

    existing = session.scalars(
        select(Source)
        .where(Source.kind == MANUAL_SOURCE_KIND, Source.is_active.is_(True))
        .order_by(Source.created_at.asc())
    ).first()
    if existing is not None:
        return existing

    now = _utcnow()
    created = Source(
        name=MANUAL_SOURCE_NAME,
        kind=MANUAL_SOURCE_KIND,
        config={"managed_by": "tail_ingest"},
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(created)
    session.flush()
    _logger.info("Created manual upload source %s", created.id)
    return created


def resolve_source_system(source: Source) -> str:
    return source_system_for(source.kind, source.name, source.config)


# ---------------------------------------------------------------------------
# Sync run lifecycle: queued -> running -> succeeded | partial | failed
# ---------------------------------------------------------------------------


def _get_sync_run(session: Session, sync_run_id: str) -> SyncRun:
    run = session.get(SyncRun, sync_run_id)
    if run is None:
        raise LookupError(f"sync run {sync_run_id!r} does not exist")
    return run


def create_queued_sync_run(
    session: Session, source_id: str, external_id: str | None = None
) -> SyncRun:
    run = SyncRun(
        source_id=source_id,
        status="queued",
        external_id=external_id,
        created_at=_utcnow(),
    )
    session.add(run)
    session.flush()
    return run


def mark_sync_run_running(session: Session, sync_run_id: str) -> None:
    run = _get_sync_run(session, sync_run_id)
    run.status = "running"
    run.started_at = _utcnow()
    session.flush()


def mark_sync_run_completed(session: Session, sync_run_id: str, stats: ParseRunStats) -> str:
    """Finish a run and return its final status.

    A run where some rows could not be derived into transactions ends as
    ``partial``; otherwise ``succeeded``.
    """

    run = _get_sync_run(session, sync_run_id)
    run.status = "partial" if stats.skipped_normalization_records > 0 else "succeeded"
    run.finished_at = _utcnow()
    run.stats = stats.model_dump(mode="json")
    run.error = None
    session.flush()
    return run.status


def error_payload(error: BaseException | object) -> dict[str, str]:
    if isinstance(error, BaseException):
        return {"name": type(error).__name__, "message": str(error)}
    return {"name": "Error", "message": str(error)}


def mark_sync_run_failed(session: Session, sync_run_id: str, error: BaseException | object) -> None:
    run = _get_sync_run(session, sync_run_id)
    now = _utcnow()
    run.status = "failed"
    run.started_at = run.started_at or now
    run.finished_at = now
    run.error = error_payload(error)
    session.flush()


# ---------------------------------------------------------------------------
# Uploads and rows
# ---------------------------------------------------------------------------


def create_raw_upload(
    session: Session,
    *,
    source_id: str,
    sync_run_id: str,
    source_system: str,
    filename: str,
    content_sha256: str,
    raw_blob_uri: str,
    raw_mime_type: str,
    upload_id: str | None = None,
    uploaded_at: datetime | None = None,
) -> RawUpload:
    upload = RawUpload(
        source_id=source_id,
        sync_run_id=sync_run_id,
        source_system=source_system,
        filename=filename,
        content_sha256=content_sha256,
        raw_blob_uri=raw_blob_uri,
        raw_mime_type=raw_mime_type,
        uploaded_at=uploaded_at or _utcnow(),
    )
    if upload_id:
        upload.id = upload_id
    session.add(upload)
    session.flush()
    return upload


def _insert_ignoring_conflicts(
    session: Session,
    table: Any,
    payloads: list[dict[str, Any]],
    index_elements: list[str],
) -> int:
    if not payloads:
        return 0

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = pg_insert
    elif dialect == "sqlite":
        insert = sqlite_insert
    else:
        raise RuntimeError(f"Unsupported database dialect for conflict-ignoring inserts: {dialect}")

    inserted = 0
    for start in range(0, len(payloads), INSERT_BATCH_SIZE):
        chunk = payloads[start : start + INSERT_BATCH_SIZE]
        stmt = insert(table).values(chunk).on_conflict_do_nothing(index_elements=index_elements)
        result = session.execute(stmt)
        inserted += max(result.rowcount or 0, 0)
    return inserted


def insert_raw_rows(
    session: Session,
    *,
    upload_id: str,
    source_system: str,
    records: Iterable[NormalizedRecord],
) -> int:
    """Insert hashed rows, skipping any already present in ``source_system``."""

    payloads = [
        {
            "upload_id": upload_id,
            "source_system": source_system,
            "row_index": record.row_index,
            "raw_json": dict(record.raw_json),
            "row_sha256": record.row_sha256,
            "created_at": _utcnow(),
        }
        for record in records
    ]
    return _insert_ignoring_conflicts(
        session, RawRow.__table__, payloads, ["source_system", "row_sha256"]
    )


def parse_occurred_at(value: str | None) -> datetime | None:
    """Parse an ``occurred_at`` string into an aware UTC datetime.

    Pure ``YYYY-MM-DD`` dates map to midnight UTC. Raises ``ValueError`` for
    text that is not ISO-8601.
    """

    if not value:
        return None
    if len(value) == 10:
        return datetime.combine(date.fromisoformat(value), datetime.min.time(), tzinfo=UTC)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _to_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"amount must be a decimal string (got {value!r})") from exc


def insert_normalized_transactions(
    session: Session,
    *,
    source_system: str,
    candidates: Iterable[NormalizedTransactionCandidate],
) -> int:
    """Insert derived transactions, skipping existing ``(system, sha, version)`` keys."""

    payloads = [
        {
            "source_system": source_system,
            "row_sha256": c.row_sha256,
            "occurred_at": parse_occurred_at(c.occurred_at),
            "amount": _to_amount(c.amount),
            "currency": c.currency,
            "description": c.description,
            "merchant": c.merchant,
            "account_id": c.account_id,
            "category": c.category,
            "normalization_version": c.normalization_version,
            "created_at": _utcnow(),
        }
        for c in candidates
    ]
    return _insert_ignoring_conflicts(
        session,
        NormalizedTransaction.__table__,
        payloads,
        ["source_system", "row_sha256", "normalization_version"],
    )


# ---------------------------------------------------------------------------
# Read side: health check and admin overview
# ---------------------------------------------------------------------------


def ping_database(session: Session) -> None:
    session.execute(text("SELECT 1"))


@dataclass(frozen=True, slots=True)
class AdminMetrics:
    total_sources: int
    active_sources: int
    sync_runs_last_24h: int
    uploads_last_24h: int
    raw_rows_last_24h: int
    normalized_transactions_last_24h: int


@dataclass(frozen=True, slots=True)
class SyncRunSummary:
    id: str
    source_id: str
    source_name: str
    source_kind: str
    status: str
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    total_records: int | None
    inserted_records: int | None
    duplicate_records: int | None
    normalized_candidate_records: int | None
    normalized_inserted_records: int | None


@dataclass(frozen=True, slots=True)
class UploadSummary:
    id: str
    source_id: str
    source_system: str
    source_name: str
    sync_run_id: str
    sync_run_status: str
    filename: str
    raw_mime_type: str
    uploaded_at: datetime
    row_count: int


@dataclass(frozen=True, slots=True)
class AdminOverview:
    generated_at: datetime
    metrics: AdminMetrics
    recent_sync_runs: list[SyncRunSummary]
    recent_uploads: list[UploadSummary]


def _stat_number(stats: Mapping[str, Any] | None, key: str) -> int | None:
    if not isinstance(stats, Mapping):
        return None
    value = stats.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _count(session: Session, stmt: Any) -> int:
    return int(session.scalar(stmt) or 0)


def get_admin_overview(
    session: Session, limit: int = 12, *, now: datetime | None = None
) -> AdminOverview:
    """Counts for the last 24 hours plus the most recent runs and uploads.

    ``limit`` is clamped to ``1..100``.
    """

    bounded = max(1, min(100, int(limit)))
    generated_at = now or _utcnow()
    since = generated_at - timedelta(hours=24)

    metrics = AdminMetrics(
        total_sources=_count(session, select(func.count()).select_from(Source)),
        active_sources=_count(
            session, select(func.count()).select_from(Source).where(Source.is_active.is_(True))
        ),
        sync_runs_last_24h=_count(
            session, select(func.count()).select_from(SyncRun).where(SyncRun.created_at >= since)
        ),
        uploads_last_24h=_count(
            session,
            select(func.count()).select_from(RawUpload).where(RawUpload.uploaded_at >= since),
        ),
        raw_rows_last_24h=_count(
            session, select(func.count()).select_from(RawRow).where(RawRow.created_at >= since)
        ),
        normalized_transactions_last_24h=_count(
            session,
            select(func.count())
            .select_from(NormalizedTransaction)
            .where(NormalizedTransaction.created_at >= since),
        ),
    )

    run_rows = session.execute(
        select(SyncRun, Source.name, Source.kind)
        .join(Source, SyncRun.source_id == Source.id)
        .order_by(SyncRun.created_at.desc())
        .limit(bounded)
    ).all()
    recent_runs = [
        SyncRunSummary(
            id=run.id,
            source_id=run.source_id,
            source_name=name,
            source_kind=kind,
            status=run.status,
            created_at=run.created_at,
            started_at=run.started_at,
            finished_at=run.finished_at,
            total_records=_stat_number(run.stats, "total_records"),
            inserted_records=_stat_number(run.stats, "inserted_records"),
            duplicate_records=_stat_number(run.stats, "duplicate_records"),
            normalized_candidate_records=_stat_number(run.stats, "normalized_candidate_records"),
            normalized_inserted_records=_stat_number(run.stats, "normalized_inserted_records"),
        )
        for run, name, kind in run_rows
    ]

    row_counts = (
        select(RawRow.upload_id, func.count().label("row_count"))
        .group_by(RawRow.upload_id)
        .subquery()
    )
    upload_rows = session.execute(
        select(RawUpload, Source.name, SyncRun.status, row_counts.c.row_count)
        .join(Source, RawUpload.source_id == Source.id)
        .join(SyncRun, RawUpload.sync_run_id == SyncRun.id)
        .outerjoin(row_counts, row_counts.c.upload_id == RawUpload.id)
        .order_by(RawUpload.uploaded_at.desc())
        .limit(bounded)
    ).all()
    recent_uploads = [
        UploadSummary(
            id=upload.id,
            source_id=upload.source_id,
            source_system=upload.source_system,
            source_name=name,
            sync_run_id=upload.sync_run_id,
            sync_run_status=status,
            filename=upload.filename,
            raw_mime_type=upload.raw_mime_type,
            uploaded_at=upload.uploaded_at,
            row_count=int(row_count or 0),
        )
        for upload, name, status, row_count in upload_rows
    ]

    return AdminOverview(
        generated_at=generated_at,
        metrics=metrics,
        recent_sync_runs=recent_runs,
        recent_uploads=recent_uploads,
    )


__all__ = [
    "MANUAL_SOURCE_NAME",
    "MANUAL_SOURCE_KIND",
    "resolve_or_create_source",
    "resolve_source_system",
    "create_queued_sync_run",
    "mark_sync_run_running",
    "mark_sync_run_completed",
    "mark_sync_run_failed",
    "error_payload",
    "create_raw_upload",
    "insert_raw_rows",
    "insert_normalized_transactions",
    "parse_occurred_at",
    "ping_database",
    "AdminMetrics",
    "SyncRunSummary",
    "UploadSummary",
    "AdminOverview",
    "get_admin_overview",
]
