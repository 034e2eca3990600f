"""Adapter turning CSV bytes into positional raw records.

Rules:
- bytes are decoded as UTF-8 (undecodable sequences replaced, a leading BOM
  dropped) and parsed with :mod:`csv` (RFC 4180 quoting, embedded newlines);
- blank lines are skipped and every field is trimmed;
- the first row is the header; an empty header cell becomes
  ``column_<1-based index>``;
- ragged rows are tolerated: missing trailing fields are ``None`` and extra
  fields are dropped.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterator, Sequence

from ...models import CSV_MIME_TYPE, ExtractedResult, RawRecord


def _is_blank_line(cells: Sequence[str]) -> bool:
    return len(cells) == 0 or (len(cells) == 1 and cells[0] == "")


def _header_names(header: Sequence[str]) -> list[str]:
    return [cell if cell else f"column_{i + 1}" for i, cell in enumerate(header)]


def iter_csv_rows(text: str) -> Iterator[list[str]]:
    """Yield trimmed, non-blank rows from CSV text."""

    reader = csv.reader(io.StringIO(text, newline=""), skipinitialspace=True)
    for row in reader:
        cells = [cell.strip() for cell in row]
        if _is_blank_line(cells):
            continue
        yield cells


def to_raw_records(data: bytes) -> Iterator[RawRecord]:
    text = data.decode("utf-8-sig", errors="replace")
    rows = iter_csv_rows(text)
    header = next(rows, None)
    if header is None:
        return
    headers = _header_names(header)
    for row_index, values in enumerate(rows):
        raw_json = {
            name: (values[i] if i < len(values) else None) for i, name in enumerate(headers)
        }
        yield RawRecord(raw_json=raw_json, row_index=row_index)


def extract_csv(data: bytes) -> ExtractedResult:
    return ExtractedResult(format_mime_type=CSV_MIME_TYPE, records=tuple(to_raw_records(data)))


__all__ = ["extract_csv", "iter_csv_rows", "to_raw_records"]
