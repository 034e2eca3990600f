from __future__ import annotations

import logging

import pytest

from tail_ingest.canonical import canonicalize_and_hash, row_sha256
from tail_ingest.derive import (
    derive_outcomes,
    derive_transactions,
    normalize_currency_code,
    normalize_flat_string,
)
from tail_ingest.ingest import extract_upload
from tail_ingest.models import Derived, NormalizedRecord, Skipped, SkipReason


def _record(raw: dict, row_index: int = 0) -> NormalizedRecord:
    return NormalizedRecord(raw_json=raw, row_index=row_index, row_sha256=row_sha256(raw))


def test_end_to_end_csv_yields_one_candidate():
    data = b"date,amount,currency,description\n2026-02-15,1200.50,INR,Salary Credit\n"
    normalized = canonicalize_and_hash(extract_upload(data, "text/csv", "s.csv"))

    candidates = derive_transactions(normalized.records, default_currency="INR")

    assert len(candidates) == 1
    c = candidates[0]
    assert c.occurred_at == "2026-02-15"
    assert c.amount == "1200.500000"
    assert c.currency == "INR"
    assert c.description == "salary credit"
    assert c.normalization_version == "v1"
    assert c.row_sha256 == normalized.records[0].row_sha256
    assert (c.merchant, c.account_id, c.category) == (None, None, None)


def test_candidate_keys_are_matched_after_key_normalization():
    record = _record(
        {
            "Transaction Date": "3/5/26",
            "Transaction Amount": "(45.10)",
            "CCY": "$",
            "Narration": "  Grocery   Store ",
            "Payee": "FreshMart",
            "IBAN": "DE89 3704",
            "Txn Type": "debit",
        }
    )
    (c,) = derive_transactions([record])
    assert c.occurred_at == "2026-03-05"
    assert c.amount == "-45.100000"
    assert c.currency == "USD"
    assert c.description == "grocery store"
    assert c.merchant == "FreshMart"
    assert c.account_id == "DE89 3704"
    assert c.category == "debit"


def test_first_present_candidate_wins_in_table_order():
    record = _record({"credit": "", "debit": "12", "amount": None, "memo": "", "note": "fee"})
    (c,) = derive_transactions([record], default_currency="EUR")
    assert c.amount == "12.000000"
    assert c.description == "fee"
    assert c.currency == "EUR"


def test_numeric_and_boolean_values_are_flattened():
    record = _record({"amount": 12.5, "currency": "gbp", "description": True})
    (c,) = derive_transactions([record])
    assert c.amount == "12.500000"
    assert c.currency == "GBP"
    assert c.description == "true"


@pytest.mark.parametrize(
    ("raw", "reason"),
    [
        ({"description": "x", "currency": "INR"}, SkipReason.MISSING_AMOUNT),
        ({"amount": "n/a", "description": "x", "currency": "INR"}, SkipReason.MISSING_AMOUNT),
        ({"amount": float("nan"), "description": "x"}, SkipReason.MISSING_AMOUNT),
        ({"amount": "1", "description": "x"}, SkipReason.MISSING_CURRENCY),
        ({"amount": "1", "description": "x", "currency": "XY"}, SkipReason.MISSING_CURRENCY),
        ({"amount": "1", "currency": "INR", "description": "   "}, SkipReason.MISSING_DESCRIPTION),
    ],
)
def test_rows_missing_required_fields_are_skipped(raw: dict, reason: SkipReason):
    (outcome,) = derive_outcomes([_record(raw, row_index=3)])
    assert isinstance(outcome, Skipped)
    assert outcome.reason is reason
    assert outcome.row_index == 3
    assert derive_transactions([_record(raw)]) == []


def test_invalid_row_currency_falls_back_to_default():
    record = _record({"amount": "1", "description": "x", "currency": "XY"})
    (c,) = derive_transactions([record], default_currency=" inr ")
    assert c.currency == "INR"


def test_unparseable_date_gives_null_occurred_at():
    record = _record({"amount": "1", "currency": "INR", "description": "x", "date": "someday"})
    (c,) = derive_transactions([record])
    assert c.occurred_at is None


def test_blank_normalization_version_defaults_to_v1():
    record = _record({"amount": "1", "currency": "INR", "description": "x"})
    assert derive_transactions([record], normalization_version="  ")[0].normalization_version == "v1"
    assert derive_transactions([record], normalization_version=" v2 ")[0].normalization_version == "v2"


def test_outcomes_keep_input_order():
    rows = [
        _record({"amount": "1", "currency": "INR", "description": "a"}, 0),
        _record({"currency": "INR", "description": "b"}, 1),
        _record({"amount": "3", "currency": "INR", "description": "c"}, 2),
    ]
    outcomes = derive_outcomes(rows)
    assert [type(o) for o in outcomes] == [Derived, Skipped, Derived]
    assert [c.description for c in derive_transactions(rows)] == ["a", "c"]


def test_skipped_rows_are_logged(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
):
    # configure_logging() (run by CLI tests) stops propagation to the root logger
    monkeypatch.setattr(logging.getLogger("tail_ingest"), "propagate", True)
    rows = [_record({"description": "no amount"}, 0)]
    with caplog.at_level(logging.DEBUG, logger="tail_ingest.derive"):
        derive_transactions(rows)
    assert any("missing_amount" in r.getMessage() for r in caplog.records)
    assert any("Derived 0 of 1 rows" in r.getMessage() for r in caplog.records)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("₹", "INR"),
        ("$", "USD"),
        ("€", "EUR"),
        ("£", "GBP"),
        (" usd ", "USD"),
        ("u.s.d", "USD"),
        ("XY", None),
        ("US Dollar", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_currency_code(raw, expected):
    assert normalize_currency_code(raw) == expected


def test_normalize_flat_string():
    assert normalize_flat_string("  a \n b ") == "a b"
    assert normalize_flat_string("   ") is None
    assert normalize_flat_string(3) == "3"
    assert normalize_flat_string(float("inf")) is None
    assert normalize_flat_string(False) == "false"
    assert normalize_flat_string(["x"]) is None
