"""Derive normalized transaction candidates from hashed rows.

Field lookup is data-driven: each target field names an ordered list of
candidate source keys and the first one carrying a non-empty value wins.
Keys are matched after :func:`~tail_ingest.values.normalize_rule_key`, so
``"Transaction Amount"`` matches ``transaction_amount``.

A row yields a candidate only when it has an amount, a currency (its own or
the default) and a description. Anything else is reported as a
:class:`~tail_ingest.models.Skipped` outcome rather than raised.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .logging_setup import get_logger
from .models import (
    DEFAULT_NORMALIZATION_VERSION,
    DerivationOutcome,
    Derived,
    NormalizedRecord,
    NormalizedTransactionCandidate,
    Skipped,
    SkipReason,
)
from .values import (
    is_finite_number,
    is_number,
    nfkc,
    normalize_date,
    normalize_decimal,
    normalize_lowercase_text,
    normalize_rule_key,
    number_text,
)

logger = get_logger("tail_ingest.derive")


@dataclass(frozen=True, slots=True)
class FieldRule:
    field: str
    candidate_keys: tuple[str, ...]


AMOUNT = FieldRule(
    "amount", ("amount", "amt", "debit", "credit", "value", "total", "transaction_amount")
)
CURRENCY = FieldRule("currency", ("currency", "currency_code", "ccy", "curr"))
DESCRIPTION = FieldRule(
    "description", ("description", "memo", "narration", "details", "note", "remarks")
)
MERCHANT = FieldRule("merchant", ("merchant", "payee", "merchant_name"))
ACCOUNT_ID = FieldRule("account_id", ("account_id", "account", "account_number", "iban"))
CATEGORY = FieldRule("category", ("category", "type", "txn_type"))
OCCURRED_AT = FieldRule(
    "occurred_at",
    (
        "occurred_at",
        "transaction_date",
        "posted_at",
        "posted_date",
        "date",
        "value_date",
        "timestamp",
        "datetime",
    ),
)

FIELD_RULES: tuple[FieldRule, ...] = (
    AMOUNT,
    CURRENCY,
    DESCRIPTION,
    MERCHANT,
    ACCOUNT_ID,
    CATEGORY,
    OCCURRED_AT,
)

_CURRENCY_NOISE_RE = re.compile(r"[^A-Z$€£₹]")
_CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "₹": "INR"}
_WHITESPACE_RE = re.compile(r"\s+")


def build_field_lookup(raw_json: Mapping[str, Any]) -> dict[str, Any]:
    """Map normalized key -> original value; on key collision the later key wins."""

    return {normalize_rule_key(str(key)): value for key, value in raw_json.items()}


def normalize_flat_string(value: Any) -> str | None:
    """Flatten a raw value to trimmed text, or ``None`` when it carries nothing."""

    if value is None:
        return None
    if isinstance(value, str):
        flattened = _WHITESPACE_RE.sub(" ", nfkc(value).strip())
        return flattened or None
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return number_text(value) if is_finite_number(value) else None
    return None


def pick_first(lookup: Mapping[str, Any], rule: FieldRule) -> str | None:
    for key in rule.candidate_keys:
        flattened = normalize_flat_string(lookup.get(key))
        if flattened is not None:
            return flattened
    return None


def normalize_currency_code(value: str | None) -> str | None:
    """Reduce a currency cell to an ISO-like 3 letter code.

    ``" usd "`` -> ``"USD"``; a lone ``$ € £ ₹`` maps to its code; anything
    else (``"XY"``, ``"US Dollar"``) is rejected with ``None``.
    """

    if not value:
        return None
    cleaned = _CURRENCY_NOISE_RE.sub("", nfkc(value).strip().upper())
    if len(cleaned) == 3:
        return cleaned
    return _CURRENCY_SYMBOLS.get(cleaned)


def resolve_normalization_version(value: str | None) -> str:
    return (value or "").strip() or DEFAULT_NORMALIZATION_VERSION


def derive_outcome(
    row: NormalizedRecord,
    *,
    normalization_version: str,
    default_currency: str | None,
) -> DerivationOutcome:
    """Derive one row. ``default_currency`` must already be normalized."""

    lookup = build_field_lookup(row.raw_json)

    def skipped(reason: SkipReason) -> Skipped:
        return Skipped(row_sha256=row.row_sha256, row_index=row.row_index, reason=reason)

    amount_raw = pick_first(lookup, AMOUNT)
    amount = normalize_decimal(amount_raw) if amount_raw else None
    if amount is None:
        return skipped(SkipReason.MISSING_AMOUNT)

    currency = normalize_currency_code(pick_first(lookup, CURRENCY)) or default_currency
    if currency is None:
        return skipped(SkipReason.MISSING_CURRENCY)

    description_raw = pick_first(lookup, DESCRIPTION)
    description = normalize_lowercase_text(description_raw) if description_raw else ""
    if not description:
        return skipped(SkipReason.MISSING_DESCRIPTION)

    occurred_at_raw = pick_first(lookup, OCCURRED_AT)
    return Derived(
        NormalizedTransactionCandidate(
            row_sha256=row.row_sha256,
            occurred_at=normalize_date(occurred_at_raw) if occurred_at_raw else None,
            amount=amount,
            currency=currency,
            description=description,
            merchant=pick_first(lookup, MERCHANT),
            account_id=pick_first(lookup, ACCOUNT_ID),
            category=pick_first(lookup, CATEGORY),
            normalization_version=normalization_version,
        )
    )


def derive_outcomes(
    rows: Iterable[NormalizedRecord],
    *,
    normalization_version: str | None = DEFAULT_NORMALIZATION_VERSION,
    default_currency: str | None = None,
) -> tuple[DerivationOutcome, ...]:
    """Derive every row, keeping skipped rows as explicit outcomes."""

    version = resolve_normalization_version(normalization_version)
    fallback_currency = normalize_currency_code(default_currency)
    return tuple(
        derive_outcome(row, normalization_version=version, default_currency=fallback_currency)
        for row in rows
    )


def log_skipped(outcomes: Sequence[DerivationOutcome]) -> int:
    skipped = [o for o in outcomes if isinstance(o, Skipped)]
    for item in skipped:
        logger.debug(
            "Skipped row %d (%s): %s", item.row_index, item.row_sha256[:12], item.reason.value
        )
    if skipped:
        logger.info("Derived %d of %d rows", len(outcomes) - len(skipped), len(outcomes))
    return len(skipped)


def derive_transactions(
    rows: Iterable[NormalizedRecord],
    *,
    normalization_version: str | None = DEFAULT_NORMALIZATION_VERSION,
    default_currency: str | None = None,
) -> list[NormalizedTransactionCandidate]:
    """Return the candidates derivable from ``rows``, in input order."""

    outcomes = derive_outcomes(
        rows, normalization_version=normalization_version, default_currency=default_currency
    )
    log_skipped(outcomes)
    return [o.candidate for o in outcomes if isinstance(o, Derived)]


__all__ = [
    "FieldRule",
    "FIELD_RULES",
    "build_field_lookup",
    "normalize_flat_string",
    "pick_first",
    "normalize_currency_code",
    "resolve_normalization_version",
    "derive_outcome",
    "derive_outcomes",
    "derive_transactions",
    "log_skipped",
]
