"""Role-aware scalar normalization used before hashing and derivation.

A field name implies a semantic role (date-like, numeric-like, lowercase text
or plain text). Each scalar is rewritten into one canonical form for its role
so that superficial formatting differences (``"$1,200.5"`` vs ``"1200.50"``,
``"3/5/26"`` vs ``"2026-03-05"``) collapse to the same value.

Nothing here raises on bad input: a value that cannot be parsed for its role
is passed through (NFKC-normalized and trimmed) so one malformed cell never
aborts a whole document.

Frozen rules (persisted hashes depend on them):

- decimals are rendered at a fixed scale of 6 with round-half-up;
- two-digit years pivot at 70 (``70..99`` → 19xx, ``00..69`` → 20xx).
"""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import UTC, date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Any

from dateutil import parser as date_parser

DECIMAL_SCALE = 6
TWO_DIGIT_YEAR_PIVOT = 70

_QUANTUM = Decimal(1).scaleb(-DECIMAL_SCALE)

_DATE_KEY_RE = re.compile(
    r"(^|_)(date|time|timestamp|datetime|posted_at|occurred_at|transaction_date|value_date)$"
)
_NUMERIC_KEY_RE = re.compile(r"(^|_)(amount|amt|debit|credit|balance|fee|total|value)$")
LOWERCASE_TEXT_FIELD_KEYS = frozenset(
    {"description", "merchant", "memo", "narration", "payee", "details"}
)

_ISO_DATE_RE = re.compile(r"^([0-9]{4})-([0-9]{2})-([0-9]{2})$")
_SLASH_DATE_RE = re.compile(r"^([0-9]{1,2})[/-]([0-9]{1,2})[/-]([0-9]{2,4})$")
_DECIMAL_BODY_RE = re.compile(r"^([0-9]*)(?:\.([0-9]*))?$")
_CURRENCY_SYMBOLS_RE = re.compile(r"[$€£₹,]")
_WHITESPACE_RE = re.compile(r"\s+")

# Components missing from a free-form date string are taken from here, never
# from "today", so the same input always normalizes to the same value.
_DATE_PARSE_DEFAULT = datetime(2001, 1, 1)


class FieldRole(Enum):
    DATE = "date"
    NUMERIC = "numeric"
    LOWERCASE_TEXT = "lowercase_text"
    TEXT = "text"


def nfkc(value: str) -> str:
    return unicodedata.normalize("NFKC", value)


def normalize_rule_key(raw_key: str | None) -> str:
    """Normalize a field name for role lookup.

    NFKC, trim, lowercase and turn whitespace runs into ``_`` so that
    ``" Transaction  Date "`` and ``"transaction_date"`` share a role.
    """

    if not raw_key:
        return ""
    return _WHITESPACE_RE.sub("_", nfkc(raw_key).strip().lower())


def field_role(raw_key: str | None) -> FieldRole:
    """Classify a field name into the role that drives scalar normalization."""

    key = normalize_rule_key(raw_key)
    if _DATE_KEY_RE.search(key):
        return FieldRole.DATE
    if _NUMERIC_KEY_RE.search(key):
        return FieldRole.NUMERIC
    if key in LOWERCASE_TEXT_FIELD_KEYS:
        return FieldRole.LOWERCASE_TEXT
    return FieldRole.TEXT


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _to_iso_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _expand_two_digit_year(two_digit_year: int) -> int:
    if two_digit_year >= TWO_DIGIT_YEAR_PIVOT:
        return 1900 + two_digit_year
    return 2000 + two_digit_year


def _render_datetime(parsed: datetime) -> str | None:
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(UTC).replace(tzinfo=None)
        except (OverflowError, ValueError):
            # Shifting to UTC leaves the supported year range
            return None
    elif parsed.time() == time.min:
        return parsed.date().isoformat()
    return parsed.isoformat(timespec="milliseconds") + "Z"


def normalize_date(value: str) -> str | None:
    """Normalize a date or date-time string.

    Accepted inputs, tried in order:

    - ISO ``YYYY-MM-DD``, validated against the calendar (``2026-02-30`` is
      rejected and does not fall through to free-form parsing);
    - ``M/D/YY``, ``M/D/YYYY``, ``M-D-YY`` and ``M-D-YYYY``;
    - anything :mod:`dateutil` can parse.

    Returns ``YYYY-MM-DD`` for pure dates, an ISO-8601 UTC timestamp
    (``YYYY-MM-DDTHH:MM:SS.mmmZ``) when a time of day or an offset is present,
    and ``None`` when the value is not a date.
    """

    trimmed = nfkc(value).strip()
    if not trimmed:
        return None

    iso = _ISO_DATE_RE.match(trimmed)
    if iso:
        return _to_iso_date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    slash = _SLASH_DATE_RE.match(trimmed)
    if slash:
        month = int(slash.group(1))
        day = int(slash.group(2))
        year_token = slash.group(3)
        year = int(year_token)
        if len(year_token) == 2:
            year = _expand_two_digit_year(year)
        return _to_iso_date(year, month, day)

    try:
        parsed = date_parser.parse(trimmed, default=_DATE_PARSE_DEFAULT)
    except (ValueError, OverflowError):
        return None
    return _render_datetime(parsed)


# ---------------------------------------------------------------------------
# Decimals
# ---------------------------------------------------------------------------


def normalize_decimal(value: str) -> str | None:
    """Normalize a money-like string to a signed fixed-scale decimal string.

    - currency symbols (``$ € £ ₹``), thousands separators and inner
      whitespace are dropped;
    - ``(12.50)`` is negative (accounting notation), as is a leading ``-``;
      a leading ``+`` is accepted;
    - the fraction is rounded to 6 digits, half-up;
    - output is ``[-]<int>.<6 digits>`` with no leading zeros; zero is never
      signed.

    Returns ``None`` when no digits remain or the body is not a plain number.
    """

    trimmed = nfkc(value).strip()
    if not trimmed:
        return None

    negative = False
    if trimmed.startswith("(") and trimmed.endswith(")"):
        negative = True
        trimmed = trimmed[1:-1]

    trimmed = _WHITESPACE_RE.sub("", _CURRENCY_SYMBOLS_RE.sub("", trimmed))
    if not trimmed:
        return None

    if trimmed.startswith("+"):
        trimmed = trimmed[1:]
    elif trimmed.startswith("-"):
        negative = True
        trimmed = trimmed[1:]

    body = _DECIMAL_BODY_RE.match(trimmed)
    if not body:
        return None
    integer_token = body.group(1)
    fraction_token = body.group(2) or ""
    if not integer_token and not fraction_token:
        return None

    magnitude_text = f"{integer_token or '0'}.{fraction_token or '0'}"
    with localcontext() as ctx:
        ctx.prec = len(magnitude_text) + DECIMAL_SCALE + 1
        try:
            magnitude = Decimal(magnitude_text).quantize(_QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            return None

    if negative and magnitude != 0:
        magnitude = -magnitude
    return f"{magnitude:f}"


# ---------------------------------------------------------------------------
# Text and scalar dispatch
# ---------------------------------------------------------------------------


def normalize_lowercase_text(value: str) -> str:
    """NFKC, trim, lowercase and collapse whitespace runs to one space."""

    return _WHITESPACE_RE.sub(" ", nfkc(value).strip().lower())


def is_number(value: Any) -> bool:
    return isinstance(value, int | float | Decimal) and not isinstance(value, bool)


def is_finite_number(value: Any) -> bool:
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, float):
        return math.isfinite(value)
    return is_number(value)


def non_finite_text(value: float | Decimal) -> str:
    is_nan = value.is_nan() if isinstance(value, Decimal) else math.isnan(value)
    if is_nan:
        return "NaN"
    return "Infinity" if value > 0 else "-Infinity"


def number_text(value: int | float | Decimal) -> str:
    """Positional (never exponent) text of a finite number."""

    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        value = Decimal(repr(value))
    return f"{value:f}"


def normalize_scalar(value: Any, field_key: str | None) -> Any:
    """Normalize one scalar for the role implied by ``field_key``.

    Strings are NFKC-normalized and trimmed, then rewritten for their role
    when the role parser accepts them. Numbers in numeric-role fields always
    become fixed-scale decimal strings so that ``1200.5`` and ``"1200.50"``
    hash the same. Booleans are kept; other objects are stringified.
    """

    if isinstance(value, bool):
        return value

    if is_number(value):
        if not is_finite_number(value):
            return non_finite_text(value)
        if field_role(field_key) is FieldRole.NUMERIC:
            text = number_text(value)
            return normalize_decimal(text) or text
        return value

    if not isinstance(value, str):
        return str(value)

    normalized = nfkc(value).strip()
    role = field_role(field_key)
    if role is FieldRole.DATE:
        normalized_date = normalize_date(normalized)
        if normalized_date is not None:
            return normalized_date
    elif role is FieldRole.NUMERIC:
        normalized_decimal = normalize_decimal(normalized)
        if normalized_decimal is not None:
            return normalized_decimal
    elif role is FieldRole.LOWERCASE_TEXT:
        return normalize_lowercase_text(normalized)
    return normalized


__all__ = [
    "DECIMAL_SCALE",
    "TWO_DIGIT_YEAR_PIVOT",
    "LOWERCASE_TEXT_FIELD_KEYS",
    "FieldRole",
    "field_role",
    "normalize_rule_key",
    "normalize_date",
    "normalize_decimal",
    "normalize_lowercase_text",
    "normalize_scalar",
    "is_number",
    "is_finite_number",
    "number_text",
    "non_finite_text",
    "nfkc",
]
