# ruff: noqa: I001
"""
Alembic environment for the ingest schema owned by the `db` library.

The database URL comes from `DATABASE_URL` (a workspace `.env` is honored
without overriding the process environment) or, failing that, from
`sqlalchemy.url` in alembic.ini. `target_metadata` is the shared
`db.metadata`, so autogenerate compares against `db.models.ingest`.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from dotenv import find_dotenv, load_dotenv
from sqlalchemy import engine_from_config, pool

import db as _db_pkg

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# `usecwd=True` finds the repo-level .env both from the repo root and from libs/db.
dotenv_path = find_dotenv(usecwd=True)
if dotenv_path:
    load_dotenv(dotenv_path=dotenv_path, override=False)

db_url = os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url") or ""
if not db_url:
    raise RuntimeError(
        "DATABASE_URL is not set. Provide it via environment or set "
        "'sqlalchemy.url' in alembic.ini."
    )
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = _db_pkg.metadata


def run_migrations_offline() -> None:
    """Emit SQL for the migrations without connecting."""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply the migrations over a live connection."""
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = db_url
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite cannot ALTER constraints in place
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
