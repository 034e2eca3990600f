from __future__ import annotations

import pytest

from tail_ingest.source_system import (
    normalize_source_system,
    source_system_for,
    source_system_token,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", "unknown:unknown"),
        ("   ", "unknown:unknown"),
        (None, "unknown:unknown"),
        ("HDFC", "source:hdfc"),
        ("Bank: HDFC Savings", "bank:hdfc_savings"),
        ("bank:a:b", "bank:a_b"),
        (":x", "unknown:x"),
        ("Ｂａｎｋ:ＩＣＩＣＩ", "bank:icici"),
    ],
)
def test_normalize_source_system(raw, expected):
    assert normalize_source_system(raw) == expected


def test_source_system_token():
    assert source_system_token("  --Manual Upload!! ") == "manual_upload"
    assert source_system_token("***") == "unknown"


def test_source_system_for_prefers_configured_label():
    assert source_system_for("bank", "HDFC", {"source_system": "Bank:HDFC Card"}) == "bank:hdfc_card"


def test_source_system_for_falls_back_to_kind_and_name():
    assert source_system_for("manual_upload", "Manual Upload", {}) == "manual_upload:manual_upload"
    assert source_system_for("bank", "HDFC", {"source_system": "  "}) == "bank:hdfc"
    assert source_system_for("bank", "HDFC", None) == "bank:hdfc"
