# ruff: noqa: I001
"""CLI for the ``tail_ingest`` package.

This module exposes callable command handlers (``cmd_extract``,
``cmd_ingest`` ...) returning process exit codes, and a Typer-based console
interface wrapping them. The root callback loads a local ``.env`` using
``python-dotenv`` and configures logging before any command runs.

Exit codes: ``0`` success, ``1`` failure, ``2`` unsupported document format.
Machine-readable output (JSON lines) goes to stdout; diagnostics to stderr.
"""

from __future__ import annotations

import json
import mimetypes
import sys
from pathlib import Path
from typing import Any

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import IngestSettings
from .errors import ConfigError, UnsupportedFormat
from .logging_setup import configure_logging

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNSUPPORTED = 2


def _err(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)


def _read_file(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        _err(f"File not found: {path}")
    except PermissionError:
        _err(f"Permission denied: {path}")
    except IsADirectoryError:
        _err(f"Not a file: {path}")
    return None


def _guess_mime_type(path: Path, explicit: str | None) -> str:
    if explicit and explicit.strip():
        return explicit.strip()
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or ""


def _emit_json_line(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, separators=(",", ":")))


def _load_settings() -> IngestSettings | None:
    try:
        return IngestSettings.from_env()
    except ConfigError as e:
        _err(f"invalid configuration: {e}")
        return None


# ---- Command handlers ----------------------------------------------------------


def cmd_extract(file: Path, mime_type: str | None = None) -> int:
    """Print one JSON line per hashed row: ``row_index``, ``row_sha256``, ``raw_json``."""

    from .pipeline import canonicalize_and_hash, extract

    data = _read_file(file)
    if data is None:
        return EXIT_FAILURE
    try:
        normalized = canonicalize_and_hash(
            extract(data, _guess_mime_type(file, mime_type), file.name)
        )
    except UnsupportedFormat as e:
        _err(str(e))
        return EXIT_UNSUPPORTED

    for record in normalized.records:
        _emit_json_line(
            {
                "row_index": record.row_index,
                "row_sha256": record.row_sha256,
                "raw_json": dict(record.raw_json),
            }
        )
    return EXIT_OK


def cmd_normalize(
    file: Path,
    *,
    mime_type: str | None = None,
    default_currency: str | None = None,
    normalization_version: str | None = None,
) -> int:
    """Print one JSON line per derived transaction; report skipped rows on stderr."""

    from dataclasses import replace

    from .pipeline import run_pipeline

    settings = _load_settings()
    if settings is None:
        return EXIT_FAILURE
    overrides: dict[str, Any] = {}
    if default_currency is not None:
        overrides["default_currency"] = default_currency.strip() or None
    if normalization_version is not None:
        overrides["normalization_version"] = normalization_version.strip() or "v1"
    settings = replace(settings, **overrides)

    data = _read_file(file)
    if data is None:
        return EXIT_FAILURE
    try:
        result = run_pipeline(data, _guess_mime_type(file, mime_type), file.name, settings)
    except UnsupportedFormat as e:
        _err(str(e))
        return EXIT_UNSUPPORTED

    for candidate in result.candidates:
        _emit_json_line(candidate.to_dict())
    skipped = result.skipped
    if skipped:
        reasons = ", ".join(f"row {s.row_index}: {s.reason.value}" for s in skipped)
        print(f"Skipped {len(skipped)} row(s): {reasons}", file=sys.stderr)
    return EXIT_OK


def cmd_normalize_bank_csv(
    file: Path,
    source: str,
    *,
    default_currency: str = "INR",
    normalization_version: str = "v1",
) -> int:
    from .pipeline import normalize_bank_csv

    try:
        transactions = normalize_bank_csv(
            source=source,
            file_path=file,
            normalization_version=normalization_version,
            default_currency=default_currency,
        )
    except FileNotFoundError:
        _err(f"File not found: {file}")
        return EXIT_FAILURE
    except ValueError as e:
        _err(str(e))
        return EXIT_FAILURE

    for tx in transactions:
        _emit_json_line(tx.to_dict())
    return EXIT_OK


def _resolve_database_url(database_url: str | None, settings: IngestSettings) -> str | None:
    url = (database_url or "").strip() or settings.database_url
    if not url:
        _err("DATABASE_URL is not set; pass --database-url or set it in the environment.")
    return url


def _print_outcome(outcome: Any) -> None:
    table = Table(title="Upload summary")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("upload_id", outcome.upload_id)
    table.add_row("sync_run_id", outcome.sync_run_id)
    table.add_row("source_system", outcome.source_system)
    table.add_row("status", outcome.status)
    table.add_row("rows", str(outcome.counts.total))
    table.add_row("rows inserted", str(outcome.counts.inserted))
    table.add_row("rows duplicate", str(outcome.counts.duplicates))
    table.add_row("transactions", str(outcome.counts.normalized_candidates))
    table.add_row("transactions inserted", str(outcome.counts.normalized_inserted))
    table.add_row("rows skipped", str(outcome.counts.skipped))
    Console().print(table)


def cmd_ingest(
    file: Path,
    *,
    mime_type: str | None = None,
    source_id: str | None = None,
    external_id: str | None = None,
    database_url: str | None = None,
    storage_root: Path | None = None,
) -> int:
    """Store, parse and persist one document; print a summary table."""

    from dataclasses import replace

    from db.client import scoped_session_factory

    from .storage import LocalObjectStore
    from .worker import ingest_upload

    settings = _load_settings()
    if settings is None:
        return EXIT_FAILURE
    if storage_root is not None:
        settings = replace(settings, storage_root=storage_root)
    url = _resolve_database_url(database_url, settings)
    if url is None:
        return EXIT_FAILURE

    data = _read_file(file)
    if data is None:
        return EXIT_FAILURE

    store = LocalObjectStore(
        settings.storage_root,
        bucket=settings.storage_bucket,
        uri_scheme=settings.storage_uri_scheme,
    )
    try:
        outcome = ingest_upload(
            scoped_session_factory(database_url=url),
            store,
            data=data,
            filename=file.name,
            mime_type=_guess_mime_type(file, mime_type),
            settings=settings,
            source_id=source_id,
            external_id=external_id,
        )
    except UnsupportedFormat as e:
        _err(str(e))
        return EXIT_UNSUPPORTED
    except Exception as e:
        _err(f"ingest failed: {e}")
        return EXIT_FAILURE

    _print_outcome(outcome)
    return EXIT_OK


def cmd_init_db(database_url: str | None = None) -> int:
    """Create all tables directly from the ORM metadata (local/dev databases)."""

    from db import Base
    from db.client import get_engine

    settings = _load_settings()
    if settings is None:
        return EXIT_FAILURE
    url = _resolve_database_url(database_url, settings)
    if url is None:
        return EXIT_FAILURE
    try:
        Base.metadata.create_all(bind=get_engine(database_url=url))
    except Exception as e:
        _err(f"failed to initialize database: {e}")
        return EXIT_FAILURE
    print("Database schema is up to date.")
    return EXIT_OK


def _fmt_optional(value: Any) -> str:
    return "-" if value is None else str(value)


def cmd_overview(*, limit: int = 12, database_url: str | None = None) -> int:
    """Print ingest activity for the last 24 hours and the latest runs/uploads."""

    from db.client import session_scope

    from .persistence import get_admin_overview

    settings = _load_settings()
    if settings is None:
        return EXIT_FAILURE
    url = _resolve_database_url(database_url, settings)
    if url is None:
        return EXIT_FAILURE
    try:
        with session_scope(database_url=url) as session:
            overview = get_admin_overview(session, limit)
    except Exception as e:
        _err(f"failed to load overview: {e}")
        return EXIT_FAILURE

    console = Console()
    metrics = Table(title="Last 24 hours")
    metrics.add_column("Metric", style="bold")
    metrics.add_column("Count", justify="right")
    m = overview.metrics
    metrics.add_row("sources", str(m.total_sources))
    metrics.add_row("active sources", str(m.active_sources))
    metrics.add_row("sync runs", str(m.sync_runs_last_24h))
    metrics.add_row("uploads", str(m.uploads_last_24h))
    metrics.add_row("raw rows", str(m.raw_rows_last_24h))
    metrics.add_row("normalized transactions", str(m.normalized_transactions_last_24h))
    console.print(metrics)

    runs = Table(title="Recent sync runs")
    for column in ("source", "status", "total", "inserted", "duplicates", "normalized"):
        runs.add_column(column)
    for run in overview.recent_sync_runs:
        runs.add_row(
            run.source_name,
            run.status,
            _fmt_optional(run.total_records),
            _fmt_optional(run.inserted_records),
            _fmt_optional(run.duplicate_records),
            _fmt_optional(run.normalized_inserted_records),
        )
    console.print(runs)

    uploads = Table(title="Recent uploads")
    for column in ("filename", "source_system", "status", "rows"):
        uploads.add_column(column)
    for upload in overview.recent_uploads:
        uploads.add_row(
            upload.filename, upload.source_system, upload.sync_run_status, str(upload.row_count)
        )
    console.print(uploads)
    return EXIT_OK


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Extract, hash and normalize CSV/PDF statements into deduplicated rows "
        "and transactions. Loads a local .env before running."
    ),
)


def _exit(code: int) -> None:
    if code != EXIT_OK:
        raise typer.Exit(code)


@app.command("extract")
def extract_cmd(
    file: Path = typer.Option(..., "--file", help="Path to a CSV or PDF document."),
    mime_type: str | None = typer.Option(
        None, help="Declared MIME type (guessed from the filename when omitted)."
    ),
) -> None:
    """Print hashed raw rows as JSON lines."""

    _exit(cmd_extract(file, mime_type))


@app.command("normalize")
def normalize_cmd(
    file: Path = typer.Option(..., "--file", help="Path to a CSV or PDF document."),
    mime_type: str | None = typer.Option(None, help="Declared MIME type."),
    default_currency: str | None = typer.Option(
        None, help="Currency used when a row has none (env TAIL_INGEST_DEFAULT_CURRENCY)."
    ),
    normalization_version: str | None = typer.Option(
        None, help="Normalization version tag (env TAIL_INGEST_NORMALIZATION_VERSION)."
    ),
) -> None:
    """Print derived transactions as JSON lines."""

    _exit(
        cmd_normalize(
            file,
            mime_type=mime_type,
            default_currency=default_currency,
            normalization_version=normalization_version,
        )
    )


@app.command("normalize-bank-csv")
def normalize_bank_csv_cmd(
    file: Path = typer.Option(..., "--file", help="Path to a bank CSV export."),
    source: str = typer.Option(..., "--source", help="Bank/source label to tag rows with."),
    default_currency: str = typer.Option("INR", help="Currency used when a row has none."),
    normalization_version: str = typer.Option("v1", help="Normalization version tag."),
) -> None:
    """Normalize a bank CSV export into tagged transactions (JSON lines)."""

    _exit(
        cmd_normalize_bank_csv(
            file,
            source,
            default_currency=default_currency,
            normalization_version=normalization_version,
        )
    )


@app.command("ingest")
def ingest_cmd(
    file: Path = typer.Option(..., "--file", help="Path to a CSV or PDF document."),
    mime_type: str | None = typer.Option(None, help="Declared MIME type."),
    source_id: str | None = typer.Option(
        None, help="Existing source id (defaults to the shared manual-upload source)."
    ),
    external_id: str | None = typer.Option(None, help="Caller-supplied id for the sync run."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    storage_root: Path | None = typer.Option(
        None, help="Object store root directory (env TAIL_INGEST_STORAGE_ROOT)."
    ),
) -> None:
    """Store, parse and persist a document, then print a summary."""

    _exit(
        cmd_ingest(
            file,
            mime_type=mime_type,
            source_id=source_id,
            external_id=external_id,
            database_url=database_url,
            storage_root=storage_root,
        )
    )


@app.command("init-db")
def init_db_cmd(
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Create the ingest tables without Alembic (local/dev databases)."""

    _exit(cmd_init_db(database_url))


@app.command("overview")
def overview_cmd(
    limit: int = typer.Option(12, min=1, max=100, help="Number of recent runs/uploads."),
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
) -> None:
    """Show recent ingest activity."""

    _exit(cmd_overview(limit=limit, database_url=database_url))


@app.callback()
def _root() -> None:
    """Load ``.env`` from the current working directory and configure logging.

    Existing environment variables are never overridden by the file.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
