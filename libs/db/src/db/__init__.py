"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.ingest`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.ingest import Base, NormalizedTransaction, RawRow, RawUpload, Source, SyncRun

# Re-export SQLAlchemy metadata for Alembic's env.py
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "Source",
    "SyncRun",
    "RawUpload",
    "RawRow",
    "NormalizedTransaction",
]
