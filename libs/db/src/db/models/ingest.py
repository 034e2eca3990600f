from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

SYNC_RUN_STATUSES = ("queued", "running", "succeeded", "failed", "partial")

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(postgresql.JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
RowId = BigInteger().with_variant(Integer(), "sqlite")


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: sources
# ---------------------------


class Source(Base):
    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    # e.g. "manual_upload", "bank"; combined with name into the source-system
    # label unless config["source_system"] overrides it.
    kind: Mapped[str] = mapped_column(String, nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(
        JSONDocument, nullable=False, default=dict, server_default=text("'{}'")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    sync_runs: Mapped[list[SyncRun]] = relationship(back_populates="source")

    __table_args__ = (Index("ix_sources_kind_name", "kind", "name"),)


# ---------------------------
# Run bookkeeping: sync_runs
# ---------------------------


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'queued'")
    )
    external_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stats: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    error: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    source: Mapped[Source] = relationship(back_populates="sync_runs")

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued','running','succeeded','failed','partial')",
            name="ck_sync_runs_status",
        ),
        Index("ix_sync_runs_source_created", "source_id", "created_at"),
    )


# ---------------------------
# Raw layer: raw_uploads, raw_rows
# ---------------------------


class RawUpload(Base):
    __tablename__ = "raw_uploads"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    source_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sources.id", ondelete="CASCADE"), nullable=False
    )
    sync_run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sync_runs.id", ondelete="CASCADE"), nullable=False
    )
    source_system: Mapped[str] = mapped_column(Text, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    raw_blob_uri: Mapped[str] = mapped_column(Text, nullable=False)
    raw_mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_raw_uploads_source_uploaded", "source_id", "uploaded_at"),
        Index("ix_raw_uploads_content_sha256", "content_sha256"),
    )


class RawRow(Base):
    __tablename__ = "raw_rows"

    id: Mapped[int] = mapped_column(RowId, primary_key=True, autoincrement=True)
    upload_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("raw_uploads.id", ondelete="CASCADE"), nullable=False
    )
    source_system: Mapped[str] = mapped_column(Text, nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    raw_json: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    # Dedup identity: sha256 of the canonical row within the source system.
    row_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("row_index >= 0", name="ck_raw_rows_row_index_nonneg"),
        UniqueConstraint("source_system", "row_sha256", name="uq_raw_rows_source_system_sha"),
        Index("ix_raw_rows_upload_row_index", "upload_id", "row_index"),
    )


# ---------------------------
# Derived layer: normalized_transactions
# ---------------------------


class NormalizedTransaction(Base):
    __tablename__ = "normalized_transactions"

    id: Mapped[int] = mapped_column(RowId, primary_key=True, autoincrement=True)
    source_system: Mapped[str] = mapped_column(Text, nullable=False)
    row_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    occurred_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(24, 6), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    merchant: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(Text, nullable=True)
    normalization_version: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'v1'")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "source_system",
            "row_sha256",
            "normalization_version",
            name="uq_normalized_tx_source_system_sha_version",
        ),
        Index("ix_normalized_tx_occurred_at", "occurred_at"),
    )


__all__ = [
    "Base",
    "SYNC_RUN_STATUSES",
    "Source",
    "SyncRun",
    "RawUpload",
    "RawRow",
    "NormalizedTransaction",
]
