from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import pytest

from db.client import scoped_session_factory, session_scope
from db.models.ingest import NormalizedTransaction, RawRow, RawUpload
from tail_ingest.config import IngestSettings
from tail_ingest.errors import StorageError, UnsupportedFormat
from tail_ingest.storage import LocalObjectStore, object_key_from_storage_uri
from tail_ingest.worker import ingest_upload, process_upload

from tests.helpers.db import (
    add_source,
    bootstrap_sqlite_db,
    count_rows,
    normalized_transactions,
    raw_row_hashes,
    sync_run,
)

STATEMENT = (
    b"Date,Amount,Currency,Description,Merchant\n"
    b"2026-02-15,1200.50,INR,Salary Credit,ACME Payroll\n"
    b"02/16/2026,\"(45.10)\",,Grocery  Store,FreshMart\n"
    b"2026-02-17,,INR,Pending hold,\n"
)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "e2e.db")


@pytest.fixture
def store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "blobs", bucket="uploads", uri_scheme="file")


@pytest.fixture
def settings(tmp_path: Path) -> IngestSettings:
    return IngestSettings(default_currency="INR", storage_root=tmp_path / "blobs")


def _ingest(db_url, store, settings, data=STATEMENT, filename="feb.csv", **kwargs):
    return ingest_upload(
        scoped_session_factory(database_url=db_url),
        store,
        data=data,
        filename=filename,
        mime_type="text/csv",
        settings=settings,
        uploaded_at=datetime(2026, 2, 18, 9, 0, tzinfo=UTC),
        **kwargs,
    )


def test_inline_upload_persists_rows_and_transactions(db_url, store, settings):
    outcome = _ingest(db_url, store, settings, external_id=" stmt-42 ")

    assert outcome.status == "partial"
    assert outcome.source_system == "manual_upload:manual_upload"
    assert (outcome.counts.total, outcome.counts.inserted, outcome.counts.duplicates) == (3, 3, 0)
    assert outcome.counts.normalized_candidates == 2
    assert outcome.counts.normalized_inserted == 2
    assert outcome.counts.skipped == 1
    assert [c.description for c in outcome.normalized_transactions] == [
        "salary credit",
        "grocery store",
    ]

    stored = normalized_transactions(db_url)
    assert [t["amount"] for t in stored] == [Decimal("1200.500000"), Decimal("-45.100000")]
    assert {t["currency"] for t in stored} == {"INR"}

    run = sync_run(db_url, outcome.sync_run_id)
    assert run["status"] == "partial"
    assert run["external_id"] == "stmt-42"
    assert run["stats"]["parse_mode"] == "inline"
    assert run["stats"]["raw_mime_type"] == "text/csv"
    assert run["stats"]["file_name"] == "feb.csv"
    assert run["stats"]["skipped_normalization_records"] == 1


def test_upload_bytes_are_stored_under_dated_key(db_url, store, settings):
    outcome = _ingest(db_url, store, settings)
    with session_scope(database_url=db_url) as session:
        upload = session.get(RawUpload, outcome.upload_id)
        assert upload is not None
        key = object_key_from_storage_uri(upload.raw_blob_uri)
        assert upload.raw_blob_uri.startswith("file://uploads/uploads/")
        assert len(upload.content_sha256) == 64

    assert key.endswith(f"/2026/02/18/{outcome.upload_id}/feb.csv")
    assert store.get(key) == STATEMENT


def test_reingesting_identical_bytes_is_idempotent(db_url, store, settings):
    first = _ingest(db_url, store, settings)
    hashes = raw_row_hashes(db_url)

    second = _ingest(db_url, store, settings, filename="feb-again.csv")

    assert second.upload_id != first.upload_id
    assert (second.counts.total, second.counts.inserted, second.counts.duplicates) == (3, 0, 3)
    assert second.counts.normalized_inserted == 0
    assert raw_row_hashes(db_url) == hashes
    assert count_rows(db_url, RawRow) == 3
    assert count_rows(db_url, NormalizedTransaction) == 2
    assert sync_run(db_url, second.sync_run_id)["stats"]["duplicate_records"] == 3


def test_reformatted_rows_deduplicate(db_url, store, settings):
    _ingest(db_url, store, settings)
    reformatted = (
        b"Amount,Date,Description,Currency,Merchant\n"
        b"\"$1,200.5\",2/15/26,  salary   CREDIT ,INR,ACME Payroll\n"
    )
    outcome = _ingest(db_url, store, settings, data=reformatted, filename="again.csv")
    assert (outcome.counts.total, outcome.counts.inserted) == (1, 0)


def test_new_normalization_version_adds_transactions(db_url, store, settings):
    _ingest(db_url, store, settings)
    outcome = _ingest(db_url, store, replace(settings, normalization_version="v2"))
    assert outcome.counts.inserted == 0
    assert outcome.counts.normalized_inserted == 2
    assert count_rows(db_url, NormalizedTransaction) == 4


def test_separate_source_systems_do_not_collide(db_url, store, settings):
    _ingest(db_url, store, settings)
    source_id = add_source(db_url, name="HDFC Savings", kind="bank")
    outcome = _ingest(db_url, store, settings, source_id=source_id)
    assert outcome.source_system == "bank:hdfc_savings"
    assert outcome.counts.inserted == 3
    assert count_rows(db_url, RawRow) == 6


def test_queued_upload_is_processed_later(db_url, store, settings):
    queued_settings = replace(settings, parse_inline=False)
    outcome = _ingest(db_url, store, queued_settings)

    assert outcome.status == "queued"
    assert outcome.job is not None
    assert sync_run(db_url, outcome.sync_run_id)["status"] == "queued"
    assert count_rows(db_url, RawRow) == 0

    processed = process_upload(
        scoped_session_factory(database_url=db_url), store, outcome.job, queued_settings
    )

    assert processed.status == "partial"
    assert processed.stats.parse_mode == "queued"
    assert processed.counts.inserted == 3
    assert sync_run(db_url, outcome.sync_run_id)["status"] == "partial"


def test_fully_derivable_upload_succeeds(db_url, store, settings):
    data = b"date,amount,currency,description\n2026-02-15,1200.50,INR,Salary Credit\n"
    outcome = _ingest(db_url, store, settings, data=data)
    assert outcome.status == "succeeded"
    (candidate,) = outcome.normalized_transactions
    assert (candidate.occurred_at, candidate.amount, candidate.currency, candidate.description) == (
        "2026-02-15",
        "1200.500000",
        "INR",
        "salary credit",
    )


def test_pdf_upload_yields_single_row(db_url, store, settings):
    outcome = ingest_upload(
        scoped_session_factory(database_url=db_url),
        store,
        data=b"%PDF-1.7 binary\x00stuff",
        filename="statement.pdf",
        mime_type="application/pdf",
        settings=settings,
    )
    assert outcome.status == "partial"
    assert (outcome.counts.total, outcome.counts.inserted, outcome.counts.skipped) == (1, 1, 1)


def test_missing_object_marks_run_failed(db_url, store, settings):
    outcome = _ingest(db_url, store, replace(settings, parse_inline=False))
    assert outcome.job is not None
    broken_job = replace(outcome.job, object_key="uploads/missing/object.csv")

    with pytest.raises(StorageError):
        process_upload(
            scoped_session_factory(database_url=db_url), store, broken_job, settings
        )

    run = sync_run(db_url, outcome.sync_run_id)
    assert run["status"] == "failed"
    assert run["error"]["name"] == "StorageError"
    assert run["finished_at"] is not None


def test_unsupported_upload_writes_nothing(db_url, store, settings):
    with pytest.raises(UnsupportedFormat):
        ingest_upload(
            scoped_session_factory(database_url=db_url),
            store,
            data=b"{}",
            filename="data.json",
            mime_type="application/json",
            settings=settings,
        )
    assert count_rows(db_url, RawUpload) == 0


def test_unknown_source_id_is_rejected(db_url, store, settings):
    with pytest.raises(LookupError):
        _ingest(db_url, store, settings, source_id="not-a-source")
