"""Source-system labels that scope row deduplication.

A source system is a ``<prefix>:<name>`` label such as ``manual_upload:manual_upload``
or ``bank:hdfc_savings``. Identical rows only collapse when they share the label.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from .values import nfkc

UNKNOWN = "unknown"

_NON_TOKEN_RE = re.compile(r"[^a-z0-9]+")


def source_system_token(value: str) -> str:
    token = _NON_TOKEN_RE.sub("_", nfkc(value).strip().lower()).strip("_")
    return token or UNKNOWN


def normalize_source_system(value: str | None) -> str:
    """Canonicalize a user-supplied source-system label.

    >>> normalize_source_system("Bank: HDFC Savings")
    'bank:hdfc_savings'
    >>> normalize_source_system("HDFC")
    'source:hdfc'
    """

    normalized = nfkc(value or "").strip().lower()
    if not normalized:
        return f"{UNKNOWN}:{UNKNOWN}"
    prefix, sep, suffix = normalized.partition(":")
    if not sep:
        return f"source:{source_system_token(normalized)}"
    return f"{source_system_token(prefix)}:{source_system_token(suffix)}"


def source_system_for(kind: str, name: str, config: Mapping[str, Any] | None = None) -> str:
    """Label for a source row; an explicit ``config["source_system"]`` wins."""

    if isinstance(config, Mapping):
        configured = config.get("source_system")
        if isinstance(configured, str) and configured.strip():
            return normalize_source_system(configured)
    return f"{source_system_token(kind)}:{source_system_token(name)}"


__all__ = ["normalize_source_system", "source_system_for", "source_system_token"]
