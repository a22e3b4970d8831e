"""
Wide ("matrix") sheet detection and wide-to-long transposition.

A matrix sheet spreads entities (people) across columns and dates down the
rows, with a short status code in each cell:

    EQUIPE A  |          |          |  <- optional group row, forward-filled
    DATA      | ANA      | BRUNO    |  <- header row
    01/03/2024| ENTREGUE | FOLGA    |
    02/03/2024| ENTREGUE | ENTREGUE |

Transposition turns it into one row per (date, entity) observation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from sheet_insight.cells import (
    is_blank,
    is_date_like,
    is_numeric_like,
    normalize_status,
    stringify,
    to_iso_date,
)
from sheet_insight.header import HEADER_SCAN_ROWS, is_header_candidate

log = logging.getLogger(__name__)

DATE_SAMPLE_ROWS = 20
DATE_COLUMN_RATIO = 0.6
MIN_ENTITY_COLUMNS = 2
VALUE_SAMPLE_ROWS = 10
VALUE_SAMPLE_COLUMNS = 10
MAX_STATUS_VOCABULARY = 20

DATE_COLUMN_INDEX = 0
DEFAULT_DATE_COLUMN_NAME = "DATA"
ENTITY_COLUMN = "ENTIDADE"
GROUP_COLUMN = "GRUPO"
VALUE_COLUMN = "VALOR"


@dataclass(frozen=True)
class MatrixInfo:
    is_matrix: bool
    date_column_index: int = DATE_COLUMN_INDEX
    entity_names: list[str] = field(default_factory=list)
    entity_columns: list[int] = field(default_factory=list)
    group_row: list[str] | None = None
    has_groups: bool = False
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "isMatrix": self.is_matrix,
            "dateColumnIndex": self.date_column_index,
            "entityNames": list(self.entity_names),
            "hasGroups": self.has_groups,
            "groupRow": list(self.group_row) if self.group_row is not None else None,
            "reason": self.reason,
        }


def _cell(row: Sequence[Any] | None, index: int) -> Any:
    if not row or index >= len(row):
        return None
    return row[index]


def forward_fill_groups(row: Sequence[Any] | None, width: int) -> list[str]:
    """Carry the last non-blank label rightwards; columns before the first label get ``""``."""
    filled: list[str] = []
    current = ""
    for index in range(width):
        label = stringify(_cell(row, index))
        if label:
            current = label
        filled.append(current)
    return filled


def _grid_width(grid: Sequence[Sequence[Any]]) -> int:
    return max((len(row) for row in grid if row), default=0)


def _entities(header: Sequence[Any]) -> tuple[list[int], list[str]]:
    columns: list[int] = []
    names: list[str] = []
    for index in range(DATE_COLUMN_INDEX + 1, len(header)):
        name = stringify(header[index])
        if name:
            columns.append(index)
            names.append(name)
    return columns, names


def _group_info(
    grid: Sequence[Sequence[Any]],
    header_row_index: int,
    entity_columns: list[int],
) -> tuple[list[str] | None, bool]:
    if header_row_index <= 0:
        return None, False
    group_row = forward_fill_groups(grid[header_row_index - 1], _grid_width(grid))
    has_groups = any(group_row[index] for index in entity_columns if index < len(group_row))
    return group_row, has_groups


def first_column_date_ratio(grid: Sequence[Sequence[Any]], header_row_index: int) -> float | None:
    """Share of date-like cells in the first column below the header, ``None`` when it is empty."""
    samples = [
        _cell(row, DATE_COLUMN_INDEX)
        for row in grid[header_row_index + 1 : header_row_index + 1 + DATE_SAMPLE_ROWS]
        if not is_blank(_cell(row, DATE_COLUMN_INDEX))
    ]
    if not samples:
        return None
    return sum(1 for value in samples if is_date_like(value)) / len(samples)


def matrix_header_row(grid: Sequence[Sequence[Any]], header_row_index: int) -> int:
    """
    Step past group label rows sitting above the entity header.

    ``find_header_row`` stops at the first label-like row, which in a team
    layout is the group band (``EQUIPE A | | EQUIPE B``). While the next row
    also reads like labels, does not start with a date, and is followed by a
    date column, the header moves down to it.
    """
    limit = min(len(grid) - 1, header_row_index + HEADER_SCAN_ROWS)
    index = header_row_index
    while index < limit:
        below = list(grid[index + 1] or [])
        if not is_header_candidate(below) or is_date_like(_cell(below, DATE_COLUMN_INDEX)):
            break
        ratio = first_column_date_ratio(grid, index + 1)
        if ratio is None or ratio <= DATE_COLUMN_RATIO:
            break
        index += 1
    if index != header_row_index:
        log.debug("matrix header moved from row %d to row %d", header_row_index, index)
    return index


def detect_matrix_format(grid: Sequence[Sequence[Any]], header_row_index: int) -> MatrixInfo:
    """
    Decide whether the sheet is an entity-by-date matrix.

    All three checks must pass: the first column below the header is mostly
    dates, the header names at least two entities, and the sampled cells use a
    small vocabulary. The ``reason`` field names the first check that failed.
    """
    if header_row_index >= len(grid):
        return MatrixInfo(is_matrix=False, reason="no header row")

    header = list(grid[header_row_index] or [])
    data_rows = grid[header_row_index + 1 :]

    date_ratio = first_column_date_ratio(grid, header_row_index)
    if date_ratio is None:
        return MatrixInfo(is_matrix=False, reason="first column has no values")
    if date_ratio <= DATE_COLUMN_RATIO:
        return MatrixInfo(is_matrix=False, reason=f"first column is {date_ratio:.0%} dates")

    entity_like = [
        cell for cell in header[DATE_COLUMN_INDEX + 1 :]
        if not is_blank(cell) and not is_numeric_like(cell)
    ]
    if len(entity_like) < MIN_ENTITY_COLUMNS:
        return MatrixInfo(is_matrix=False, reason="header names fewer than two entities")

    vocabulary: set[str] = set()
    first_value_col = DATE_COLUMN_INDEX + 1
    for row in data_rows[:VALUE_SAMPLE_ROWS]:
        for index in range(first_value_col, first_value_col + VALUE_SAMPLE_COLUMNS):
            value = _cell(row, index)
            if not is_blank(value):
                vocabulary.add(stringify(value).upper())
    if not vocabulary or len(vocabulary) > MAX_STATUS_VOCABULARY:
        return MatrixInfo(
            is_matrix=False,
            reason=f"sampled cells use {len(vocabulary)} distinct values",
        )

    entity_columns, entity_names = _entities(header)
    group_row, has_groups = _group_info(grid, header_row_index, entity_columns)
    log.debug(
        "matrix layout detected: %d entities, groups=%s", len(entity_names), has_groups
    )
    return MatrixInfo(
        is_matrix=True,
        entity_names=entity_names,
        entity_columns=entity_columns,
        group_row=group_row,
        has_groups=has_groups,
        reason="matrix",
    )


def force_matrix_info(grid: Sequence[Sequence[Any]], header_row_index: int) -> MatrixInfo:
    """Matrix layout chosen by the caller: skip the heuristics, keep entity and group extraction."""
    if header_row_index >= len(grid):
        return MatrixInfo(is_matrix=False, reason="no header row")
    entity_columns, entity_names = _entities(list(grid[header_row_index] or []))
    if not entity_columns:
        return MatrixInfo(is_matrix=False, reason="header has no entity columns")
    group_row, has_groups = _group_info(grid, header_row_index, entity_columns)
    return MatrixInfo(
        is_matrix=True,
        entity_names=entity_names,
        entity_columns=entity_columns,
        group_row=group_row,
        has_groups=has_groups,
        reason="forced",
    )


def transpose_matrix_to_long(
    grid: Sequence[Sequence[Any]],
    header_row_index: int,
    matrix_info: MatrixInfo,
    *,
    canonical_status: bool = False,
) -> list[list[Any]]:
    """
    Rewrite a matrix sheet as ``[date, entity, (group), value]`` rows.

    The first row of the result is the header. Rows whose date cell is blank or
    not a date are skipped. With ``canonical_status`` the cell values go
    through ``normalize_status``.
    """
    header = list(grid[header_row_index] or []) if header_row_index < len(grid) else []
    date_name = stringify(_cell(header, matrix_info.date_column_index)) or DEFAULT_DATE_COLUMN_NAME

    out_header: list[Any] = [date_name, ENTITY_COLUMN]
    if matrix_info.has_groups:
        out_header.append(GROUP_COLUMN)
    out_header.append(VALUE_COLUMN)
    result: list[list[Any]] = [out_header]

    group_row = matrix_info.group_row or []
    skipped = 0
    for row in grid[header_row_index + 1 :]:
        iso = to_iso_date(_cell(row, matrix_info.date_column_index))
        if iso is None:
            skipped += 1
            continue
        for index, name in zip(matrix_info.entity_columns, matrix_info.entity_names):
            value = _cell(row, index)
            if canonical_status:
                value = normalize_status(value)
            elif value is None:
                value = ""
            out_row: list[Any] = [iso, name]
            if matrix_info.has_groups:
                out_row.append(group_row[index] if index < len(group_row) else "")
            out_row.append(value)
            result.append(out_row)

    log.debug(
        "transposed matrix: %d long rows, %d rows without a date skipped",
        len(result) - 1,
        skipped,
    )
    return result
