"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ingest tables used by ``tail_ingest``.
"""

from .ingest import Base, NormalizedTransaction, RawRow, RawUpload, Source, SyncRun

__all__ = [
    "Base",
    "Source",
    "SyncRun",
    "RawUpload",
    "RawRow",
    "NormalizedTransaction",
]
