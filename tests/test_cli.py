from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from tail_ingest.cli import app

runner = CliRunner()

_CSV = (
    "date,amount,currency,description\n"
    "2026-02-15,1200.50,INR,Salary Credit\n"
    "2026-02-16,,INR,Missing amount\n"
)


def _json_lines(output: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


@pytest.fixture
def statement(tmp_path: Path) -> Path:
    path = tmp_path / "statement.csv"
    path.write_text(_CSV, encoding="utf-8")
    return path


def test_extract_prints_hashed_rows(statement: Path):
    result = runner.invoke(app, ["extract", "--file", str(statement)])
    assert result.exit_code == 0, result.output
    rows = _json_lines(result.stdout)
    assert [r["row_index"] for r in rows] == [0, 1]
    assert rows[0]["raw_json"]["description"] == "Salary Credit"
    assert len(rows[0]["row_sha256"]) == 64


def test_extract_unsupported_format_exit_code(tmp_path: Path):
    path = tmp_path / "data.json"
    path.write_text("{}", encoding="utf-8")
    result = runner.invoke(app, ["extract", "--file", str(path)])
    assert result.exit_code == 2


def test_extract_missing_file(tmp_path: Path):
    result = runner.invoke(app, ["extract", "--file", str(tmp_path / "nope.csv")])
    assert result.exit_code == 1


def test_normalize_prints_candidates(statement: Path):
    result = runner.invoke(app, ["normalize", "--file", str(statement)])
    assert result.exit_code == 0, result.output
    (candidate,) = _json_lines(result.stdout)
    assert candidate["amount"] == "1200.500000"
    assert candidate["currency"] == "INR"
    assert candidate["description"] == "salary credit"
    assert candidate["occurred_at"] == "2026-02-15"


def test_normalize_options_override_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TAIL_INGEST_DEFAULT_CURRENCY", "INR")
    path = tmp_path / "no_currency.csv"
    path.write_text("amount,description\n5,Tea\n", encoding="utf-8")
    result = runner.invoke(
        app,
        [
            "normalize",
            "--file",
            str(path),
            "--default-currency",
            "eur",
            "--normalization-version",
            "v2",
        ],
    )
    assert result.exit_code == 0, result.output
    (candidate,) = _json_lines(result.stdout)
    assert candidate["currency"] == "EUR"
    assert candidate["normalization_version"] == "v2"


def test_normalize_bank_csv_tags_source(statement: Path):
    result = runner.invoke(
        app, ["normalize-bank-csv", "--file", str(statement), "--source", "HDFC"]
    )
    assert result.exit_code == 0, result.output
    (tx,) = _json_lines(result.stdout)
    assert tx["source"] == "HDFC"
    assert tx["amount"] == "1200.500000"


def test_normalize_bank_csv_requires_source(statement: Path):
    result = runner.invoke(app, ["normalize-bank-csv", "--file", str(statement), "--source", " "])
    assert result.exit_code == 1


def test_ingest_requires_database_url(statement: Path):
    result = runner.invoke(app, ["ingest", "--file", str(statement)])
    assert result.exit_code == 1


def test_init_db_ingest_and_overview(statement: Path, tmp_path: Path):
    db_url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"

    init = runner.invoke(app, ["init-db", "--database-url", db_url])
    assert init.exit_code == 0, init.output

    ingest = runner.invoke(app, ["ingest", "--file", str(statement), "--database-url", db_url])
    assert ingest.exit_code == 0, ingest.output
    assert "partial" in ingest.stdout
    assert "manual_upload:manual_upload" in ingest.stdout

    overview = runner.invoke(app, ["overview", "--database-url", db_url])
    assert overview.exit_code == 0, overview.output
    assert "statement.csv" in overview.stdout
    assert "Manual Upload" in overview.stdout


def test_ingest_unsupported_format(tmp_path: Path):
    db_url = f"sqlite+pysqlite:///{tmp_path / 'cli.db'}"
    assert runner.invoke(app, ["init-db", "--database-url", db_url]).exit_code == 0
    path = tmp_path / "notes.txt"
    path.write_text("hello", encoding="utf-8")
    result = runner.invoke(app, ["ingest", "--file", str(path), "--database-url", db_url])
    assert result.exit_code == 2
