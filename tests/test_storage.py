from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from tail_ingest.errors import StorageError
from tail_ingest.storage import (
    LocalObjectStore,
    build_upload_object_key,
    object_key_from_storage_uri,
)

_WHEN = datetime(2026, 2, 5, 23, 30, tzinfo=UTC)


def test_build_upload_object_key_layout():
    key = build_upload_object_key("src-1", "up-1", "Feb Statement (1).csv", _WHEN)
    assert key == "uploads/src-1/2026/02/05/up-1/Feb_Statement_1_.csv"


def test_build_upload_object_key_uses_utc_date():
    ist = timezone(timedelta(hours=5, minutes=30))
    when = datetime(2026, 2, 6, 2, 0, tzinfo=ist)  # 2026-02-05 20:30 UTC
    assert build_upload_object_key("s", "u", "a.csv", when).startswith("uploads/s/2026/02/05/")


@pytest.mark.parametrize(
    ("filename", "safe"),
    [
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\me\\bank.csv", "bank.csv"),
        ("", "upload.bin"),
        (None, "upload.bin"),
        ("résumé.pdf", "r_sum_.pdf"),
    ],
)
def test_build_upload_object_key_sanitizes_filename(filename, safe):
    assert build_upload_object_key("s", "u", filename, _WHEN).endswith(f"/u/{safe}")


def test_object_key_from_storage_uri():
    assert object_key_from_storage_uri("s3://bucket/uploads/a/b.csv") == "uploads/a/b.csv"
    assert object_key_from_storage_uri(" file://uploads/x ") == "x"


@pytest.mark.parametrize("uri", ["", "bucket/key", "s3://bucket", "s3://bucket/"])
def test_object_key_from_storage_uri_rejects_malformed(uri: str):
    with pytest.raises(ValueError):
        object_key_from_storage_uri(uri)


def test_local_store_put_and_get(tmp_path: Path):
    store = LocalObjectStore(tmp_path, bucket="raw", uri_scheme="file")
    key = "uploads/s/2026/02/05/u/a.csv"

    uri = store.put(key, b"a,b\n1,2\n", "text/csv")

    assert uri == f"file://raw/{key}"
    assert (tmp_path / "raw" / "uploads/s/2026/02/05/u/a.csv").read_bytes() == b"a,b\n1,2\n"
    assert store.get(key) == b"a,b\n1,2\n"
    assert store.get_by_uri(uri) == b"a,b\n1,2\n"
    assert not list(tmp_path.rglob("*.tmp"))


def test_local_store_overwrites_atomically(tmp_path: Path):
    store = LocalObjectStore(tmp_path)
    store.put("k/v.bin", b"one")
    store.put("k/v.bin", b"two")
    assert store.get("k/v.bin") == b"two"


def test_local_store_missing_object(tmp_path: Path):
    with pytest.raises(StorageError, match="not found"):
        LocalObjectStore(tmp_path).get("nope/missing.csv")


@pytest.mark.parametrize(
    "key", ["", "/abs/path", "../escape", "a/../../b", "a//b", "a/./b", "a\\b"]
)
def test_local_store_rejects_unsafe_keys(tmp_path: Path, key: str):
    store = LocalObjectStore(tmp_path)
    with pytest.raises(StorageError):
        store.put(key, b"x")


def test_local_store_rejects_bad_bucket(tmp_path: Path):
    with pytest.raises(StorageError):
        LocalObjectStore(tmp_path, bucket="a/b")
