"""Runtime settings for the ingest worker and CLI.

The pure pipeline never reads configuration; only entrypoints build an
:class:`IngestSettings` (explicitly or via :meth:`IngestSettings.from_env`)
and pass the relevant values down. ``.env`` files are loaded by the CLI
before ``from_env`` runs.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError
from .models import DEFAULT_NORMALIZATION_VERSION

DEFAULT_CURRENCY = "INR"
DEFAULT_STORAGE_ROOT = "./.storage"
DEFAULT_STORAGE_BUCKET = "uploads"
DEFAULT_STORAGE_URI_SCHEME = "file"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"{name} must be a boolean (got {raw!r})")


def _non_blank(env: Mapping[str, str], name: str, default: str) -> str:
    value = (env.get(name) or "").strip()
    return value or default


@dataclass(frozen=True, slots=True)
class IngestSettings:
    default_currency: str | None = DEFAULT_CURRENCY
    normalization_version: str = DEFAULT_NORMALIZATION_VERSION
    parse_inline: bool = True
    storage_root: Path = Path(DEFAULT_STORAGE_ROOT)
    storage_bucket: str = DEFAULT_STORAGE_BUCKET
    storage_uri_scheme: str = DEFAULT_STORAGE_URI_SCHEME
    database_url: str | None = None

    def __post_init__(self) -> None:
        if not self.normalization_version.strip():
            raise ConfigError("normalization_version must not be blank")
        if not self.storage_bucket.strip() or "/" in self.storage_bucket:
            raise ConfigError(f"invalid storage bucket: {self.storage_bucket!r}")
        if not self.storage_uri_scheme.strip() or "://" in self.storage_uri_scheme:
            raise ConfigError(f"invalid storage URI scheme: {self.storage_uri_scheme!r}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> IngestSettings:
        """Build settings from ``TAIL_INGEST_*`` variables and ``DATABASE_URL``.

        Inline parsing defaults to on for development (``APP_ENV`` unset or
        ``dev``) and off elsewhere, where an external queue picks up jobs.
        """

        env = os.environ if env is None else env
        app_env = (env.get("APP_ENV") or "dev").strip().lower()
        raw_inline = env.get("TAIL_INGEST_PARSE_INLINE")
        if raw_inline is None or not raw_inline.strip():
            parse_inline = app_env == "dev"
        else:
            parse_inline = _parse_bool("TAIL_INGEST_PARSE_INLINE", raw_inline)

        currency = (env.get("TAIL_INGEST_DEFAULT_CURRENCY") or DEFAULT_CURRENCY).strip()
        return cls(
            default_currency=currency or None,
            normalization_version=_non_blank(
                env, "TAIL_INGEST_NORMALIZATION_VERSION", DEFAULT_NORMALIZATION_VERSION
            ),
            parse_inline=parse_inline,
            storage_root=Path(_non_blank(env, "TAIL_INGEST_STORAGE_ROOT", DEFAULT_STORAGE_ROOT)),
            storage_bucket=_non_blank(env, "TAIL_INGEST_STORAGE_BUCKET", DEFAULT_STORAGE_BUCKET),
            storage_uri_scheme=_non_blank(
                env, "TAIL_INGEST_STORAGE_URI_SCHEME", DEFAULT_STORAGE_URI_SCHEME
            ),
            database_url=(env.get("DATABASE_URL") or "").strip() or None,
        )


__all__ = ["IngestSettings", "DEFAULT_CURRENCY"]
