"""Row canonicalization, stable serialization and content hashing.

``row_sha256`` is the identity of a row within a source-system scope. It must
be stable under key-order permutation and superficial formatting differences
(whitespace, decimal and date notation) while changing for any semantic
difference. The pieces:

- :func:`canonicalize_row_value` walks the row, sorts mapping keys by code
  point and normalizes every scalar for the role implied by its key;
- :func:`stable_serialize` renders the result as compact JSON with no
  platform-dependent spacing;
- :func:`hash_sha256` hashes the UTF-8 bytes.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any

from .models import ExtractedResult, NormalizedRecord, NormalizedResult, RawRecord
from .values import is_finite_number, is_number, non_finite_text, normalize_scalar


def hash_sha256(value: str | bytes) -> str:
    data = value.encode("utf-8") if isinstance(value, str) else value
    return hashlib.sha256(data).hexdigest()


def _is_sequence(value: Any) -> bool:
    return isinstance(value, list | tuple)


def canonicalize_row_value(value: Any, field_key: str | None = None) -> Any:
    """Return the canonical form of ``value``.

    Mappings get keys sorted ascending and each value canonicalized with its
    key as the role hint. Sequences are canonicalized element-wise in order
    (elements carry no role hint). ``None`` stays ``None``.
    """

    if value is None:
        return None
    if isinstance(value, Mapping):
        return {
            str(key): canonicalize_row_value(value[key], str(key))
            for key in sorted(value, key=str)
        }
    if _is_sequence(value):
        return [canonicalize_row_value(item) for item in value]
    return normalize_scalar(value, field_key)


def stable_serialize(value: Any) -> str:
    """Serialize a canonical value deterministically.

    Mappings render as ``{"key":value,...}`` with keys sorted, sequences as
    ``[a,b]``; strings, booleans and ``null`` use their JSON literal; finite
    numbers use their JSON literal (``1.0`` renders as ``1``) and non-finite
    numbers are written as JSON strings. Any other object is serialized as the
    JSON string of its text.
    """

    if value is None:
        return "null"
    if isinstance(value, str | bool):
        return json.dumps(value)
    if is_number(value):
        if not is_finite_number(value):
            return json.dumps(non_finite_text(value))
        if isinstance(value, float) and value.is_integer():
            return json.dumps(int(value))
        if isinstance(value, int | float):
            return json.dumps(value)
        return str(value)
    if _is_sequence(value):
        return "[" + ",".join(stable_serialize(item) for item in value) + "]"
    if isinstance(value, Mapping):
        keys = sorted(value, key=str)
        entries = (f"{json.dumps(str(k))}:{stable_serialize(value[k])}" for k in keys)
        return "{" + ",".join(entries) + "}"
    return json.dumps(str(value))


def row_sha256(raw_json: Mapping[str, Any]) -> str:
    """Hash of the canonical serialization of one raw row."""

    return hash_sha256(stable_serialize(canonicalize_row_value(raw_json)))


def normalize_records(records: Iterable[RawRecord]) -> tuple[NormalizedRecord, ...]:
    return tuple(
        NormalizedRecord(
            raw_json=record.raw_json,
            row_index=record.row_index,
            row_sha256=row_sha256(record.raw_json),
        )
        for record in records
    )


def canonicalize_and_hash(extracted: ExtractedResult) -> NormalizedResult:
    """Attach ``row_sha256`` to every extracted record.

    Pure and total: malformed scalars degrade to pass-through values instead of
    raising, and the original ``raw_json`` is carried through untouched.
    """

    return NormalizedResult(
        format_mime_type=extracted.format_mime_type,
        records=normalize_records(extracted.records),
    )


__all__ = [
    "hash_sha256",
    "canonicalize_row_value",
    "stable_serialize",
    "row_sha256",
    "normalize_records",
    "canonicalize_and_hash",
]
