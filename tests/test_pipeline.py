from __future__ import annotations

from pathlib import Path

import pytest

from tail_ingest.config import IngestSettings
from tail_ingest.errors import UnsupportedFormat
from tail_ingest.models import SkipReason
from tail_ingest.pipeline import normalize_bank_csv, run_pipeline

_CSV = (
    b"Txn Date,Narration,Amount,Currency\n"
    b"15/02/2026,UPI Chai Point,45.00,INR\n"
    b"2026-02-16,NEFT Rent,\"(18,000)\",\n"
    b"2026-02-17,Balance b/f,,INR\n"
)


def test_run_pipeline_splits_candidates_and_skipped():
    result = run_pipeline(
        b"date,amount,currency,description\n"
        b"2026-02-15,12.5,usd,Coffee\n"
        b"2026-02-16,,usd,Nothing\n",
        "text/csv",
        "s.csv",
        IngestSettings(default_currency="INR"),
    )
    assert result.normalized.format_mime_type == "text/csv"
    assert len(result.normalized.records) == 2
    (candidate,) = result.candidates
    assert (candidate.amount, candidate.currency, candidate.description) == (
        "12.500000",
        "USD",
        "coffee",
    )
    (skipped,) = result.skipped
    assert (skipped.row_index, skipped.reason) == (1, SkipReason.MISSING_AMOUNT)


def test_run_pipeline_is_deterministic():
    first = run_pipeline(_CSV, "text/csv", "a.csv")
    second = run_pipeline(_CSV, None, "b.CSV")
    assert [r.row_sha256 for r in first.normalized.records] == [
        r.row_sha256 for r in second.normalized.records
    ]
    assert first.candidates == second.candidates


def test_run_pipeline_rejects_unsupported():
    with pytest.raises(UnsupportedFormat):
        run_pipeline(b"<xml/>", "application/xml", "a.xml")


def test_normalize_bank_csv_from_bytes():
    txs = normalize_bank_csv(source=" HDFC ", file_bytes=_CSV)
    assert [t.source for t in txs] == ["HDFC", "HDFC"]
    assert [t.candidate.amount for t in txs] == ["45.000000", "-18000.000000"]
    assert [t.candidate.currency for t in txs] == ["INR", "INR"]
    assert txs[1].candidate.description == "neft rent"
    assert txs[0].to_dict()["source"] == "HDFC"


def test_normalize_bank_csv_from_path_ignores_extension(tmp_path: Path):
    path = tmp_path / "export.txt"
    path.write_bytes(_CSV)
    from_path = normalize_bank_csv(source="HDFC", file_path=path)
    from_bytes = normalize_bank_csv(source="HDFC", file_bytes=_CSV)
    assert from_path == from_bytes


def test_normalize_bank_csv_options():
    txs = normalize_bank_csv(
        source="HDFC",
        file_bytes=b"amount,description\n5,Tea\n",
        normalization_version="v7",
        default_currency="eur",
    )
    (tx,) = txs
    assert tx.candidate.currency == "EUR"
    assert tx.candidate.normalization_version == "v7"


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"file_bytes": _CSV, "file_path": "x.csv"},
        {"file_path": "   "},
    ],
)
def test_normalize_bank_csv_requires_exactly_one_input(kwargs):
    with pytest.raises(ValueError, match="exactly one"):
        normalize_bank_csv(source="HDFC", **kwargs)


@pytest.mark.parametrize("source", ["", "   "])
def test_normalize_bank_csv_requires_source(source: str):
    with pytest.raises(ValueError, match="source"):
        normalize_bank_csv(source=source, file_bytes=_CSV)
