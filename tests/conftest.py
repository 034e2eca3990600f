"""Pytest configuration for test isolation.

Two pieces of process-wide state leak between tests unless reset:

- environment variables read by ``IngestSettings.from_env`` and
  ``db.client`` (``TAIL_INGEST_*``, ``DATABASE_URL``, ``APP_ENV``), which a
  developer's shell or ``.env`` may set;
- the shared SQLAlchemy engine in ``db.client``, which refuses to switch to a
  different database URL once created.

An autouse fixture clears both around every test and points the object store
at the test's own temporary directory.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from db.client import dispose_engine

_ENV_PREFIXES = ("TAIL_INGEST_",)
_ENV_NAMES = ("DATABASE_URL", "APP_ENV")


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES) or name in _ENV_NAMES:
            monkeypatch.delenv(name, raising=False)

    storage_root = tmp_path / "storage"
    storage_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("TAIL_INGEST_STORAGE_ROOT", os.fspath(storage_root))
    # Keep CLI runs from picking up a developer's .env in the working directory.
    monkeypatch.chdir(tmp_path)

    dispose_engine()
    yield
    dispose_engine()
