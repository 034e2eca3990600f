# ruff: noqa: I001
"""Ingest core tables: sources, sync runs, uploads, raw rows, transactions.

Revision ID: 0001_ingest_core
Revises: None
Create Date: 2026-02-14
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_ingest_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "sources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("config", _JSON, nullable=False, server_default=sa.text("'{}'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_sources_kind_name", "sources", ["kind", "name"])

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "source_id",
            sa.String(36),
            sa.ForeignKey("sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'queued'")),
        sa.Column("external_id", sa.Text(), nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("finished_at", nullable=True),
        sa.Column("stats", _JSON, nullable=True),
        sa.Column("error", _JSON, nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "status IN ('queued','running','succeeded','failed','partial')",
            name="ck_sync_runs_status",
        ),
    )
    op.create_index("ix_sync_runs_source_created", "sync_runs", ["source_id", "created_at"])

    op.create_table(
        "raw_uploads",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "source_id",
            sa.String(36),
            sa.ForeignKey("sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sync_run_id",
            sa.String(36),
            sa.ForeignKey("sync_runs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_system", sa.Text(), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("content_sha256", sa.CHAR(64), nullable=False),
        sa.Column("raw_blob_uri", sa.Text(), nullable=False),
        sa.Column("raw_mime_type", sa.Text(), nullable=False),
        _timestamp("uploaded_at"),
    )
    op.create_index(
        "ix_raw_uploads_source_uploaded", "raw_uploads", ["source_id", "uploaded_at"]
    )
    op.create_index("ix_raw_uploads_content_sha256", "raw_uploads", ["content_sha256"])

    op.create_table(
        "raw_rows",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "upload_id",
            sa.String(36),
            sa.ForeignKey("raw_uploads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_system", sa.Text(), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("raw_json", _JSON, nullable=False),
        sa.Column("row_sha256", sa.CHAR(64), nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint("row_index >= 0", name="ck_raw_rows_row_index_nonneg"),
        sa.UniqueConstraint(
            "source_system", "row_sha256", name="uq_raw_rows_source_system_sha"
        ),
    )
    op.create_index("ix_raw_rows_upload_row_index", "raw_rows", ["upload_id", "row_index"])

    op.create_table(
        "normalized_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("source_system", sa.Text(), nullable=False),
        sa.Column("row_sha256", sa.CHAR(64), nullable=False),
        _timestamp("occurred_at", nullable=True),
        sa.Column("amount", sa.Numeric(24, 6), nullable=False),
        sa.Column("currency", sa.CHAR(3), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("merchant", sa.Text(), nullable=True),
        sa.Column("account_id", sa.Text(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column(
            "normalization_version", sa.String(), nullable=False, server_default=sa.text("'v1'")
        ),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "source_system",
            "row_sha256",
            "normalization_version",
            name="uq_normalized_tx_source_system_sha_version",
        ),
    )
    op.create_index(
        "ix_normalized_tx_occurred_at", "normalized_transactions", ["occurred_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_normalized_tx_occurred_at", table_name="normalized_transactions")
    op.drop_table("normalized_transactions")
    op.drop_index("ix_raw_rows_upload_row_index", table_name="raw_rows")
    op.drop_table("raw_rows")
    op.drop_index("ix_raw_uploads_content_sha256", table_name="raw_uploads")
    op.drop_index("ix_raw_uploads_source_uploaded", table_name="raw_uploads")
    op.drop_table("raw_uploads")
    op.drop_index("ix_sync_runs_source_created", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("ix_sources_kind_name", table_name="sources")
    op.drop_table("sources")
