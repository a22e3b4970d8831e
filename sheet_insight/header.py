from __future__ import annotations

import logging
from typing import Any, Sequence

from sheet_insight.cells import is_blank, is_date_like, is_numeric_like, stringify

log = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 10
HEADER_MIN_CELLS = 2
HEADER_LABEL_RATIO = 0.5
PLACEHOLDER_COLUMN = "Coluna {index}"


def _looks_like_label(value: Any) -> bool:
    return not is_numeric_like(value) and not is_date_like(value)


def is_header_candidate(row: Sequence[Any]) -> bool:
    non_empty = [cell for cell in row if not is_blank(cell)]
    if len(non_empty) < HEADER_MIN_CELLS:
        return False
    labels = sum(1 for cell in non_empty if _looks_like_label(cell))
    return labels > len(non_empty) * HEADER_LABEL_RATIO


def find_header_row(grid: Sequence[Sequence[Any]]) -> int:
    """
    Index of the first row, among the first ``HEADER_SCAN_ROWS``, that reads like labels.

    Falls back to 0 when no row qualifies, so a headerless sheet is treated as
    if its first row held the column names.
    """
    for idx, row in enumerate(grid[:HEADER_SCAN_ROWS]):
        if is_header_candidate(row or []):
            log.debug("header row detected at index %d", idx)
            return idx
    log.debug("no header-like row in the first %d rows; using row 0", HEADER_SCAN_ROWS)
    return 0


def build_column_names(header_row: Sequence[Any], width: int) -> list[str]:
    """Unique, non-empty display names for ``width`` columns."""
    names: list[str] = []
    used: set[str] = set()
    for index in range(width):
        raw = header_row[index] if index < len(header_row) else None
        base = " ".join(stringify(raw).split())
        if not base:
            base = PLACEHOLDER_COLUMN.format(index=index + 1)
        name = base
        suffix = 1
        while name.lower() in used:
            suffix += 1
            name = f"{base} ({suffix})"
        used.add(name.lower())
        names.append(name)
    return names
