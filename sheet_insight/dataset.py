"""
Dataset model and the assembler that turns a raw grid into it.

Pipeline: header row -> matrix check -> (transpose) -> column types ->
row objects -> summary. Ambiguous structure never raises; each step falls
back to a documented default so an import always yields a Dataset.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import random
import string
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import PurePath
from typing import Any, Sequence

from sheet_insight.cells import (
    ISO_DATE_RE,
    is_blank,
    is_date_like,
    normalize_scalar,
    stringify,
    to_iso_date,
    to_number,
)
from sheet_insight.column_types import CATEGORY, DATE, ID, NUMBER, TEXT, profile_column
from sheet_insight.contracts import utc_now_iso
from sheet_insight.header import build_column_names, find_header_row
from sheet_insight.matrix import (
    MatrixInfo,
    detect_matrix_format,
    force_matrix_info,
    matrix_header_row,
    transpose_matrix_to_long,
)

log = logging.getLogger(__name__)

MAX_GRID_ROWS = 20_000
MAX_UNIQUE_VALUES = 100
MAX_SAMPLE_VALUES = 10
BLANK_CATEGORY = "(vazio)"
ROW_INDEX_KEY = "_rowIndex"

KIND_TABLE = "table"
KIND_MATRIX = "rda_matrix"
IMPORT_FORMATS = ("auto", "long", "matrix")

GenericRow = dict  # column name -> typed value, plus ROW_INDEX_KEY


def generate_id() -> str:
    alphabet = string.digits + string.ascii_lowercase
    suffix = "".join(random.choice(alphabet) for _ in range(9))
    return f"ds_{int(time.time() * 1000)}_{suffix}"


def json_safe(value: Any) -> Any:
    normalized = normalize_scalar(value)
    if isinstance(normalized, (datetime, date)):
        return normalized.isoformat()
    if isinstance(normalized, float) and math.isinf(normalized):
        return None
    if normalized is None or isinstance(normalized, (str, int, float, bool)):
        return normalized
    return str(normalized)


@dataclass
class ColumnMetadata:
    name: str
    original_index: int
    type: str
    unique_values: list[str] = field(default_factory=list)
    sample_values: list[Any] = field(default_factory=list)
    is_numeric: bool = False
    is_date: bool = False
    is_empty: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "originalIndex": self.original_index,
            "type": self.type,
            "uniqueValues": list(self.unique_values),
            "sampleValues": [json_safe(value) for value in self.sample_values],
            "isNumeric": self.is_numeric,
            "isDate": self.is_date,
            "isEmpty": self.is_empty,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ColumnMetadata:
        return cls(
            name=payload["name"],
            original_index=payload["originalIndex"],
            type=payload["type"],
            unique_values=list(payload.get("uniqueValues", [])),
            sample_values=list(payload.get("sampleValues", [])),
            is_numeric=payload.get("isNumeric", False),
            is_date=payload.get("isDate", False),
            is_empty=payload.get("isEmpty", False),
        )


@dataclass
class DatasetSummary:
    total_records: int = 0
    date_range: dict[str, str] | None = None
    category_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    numeric_stats: dict[str, dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "totalRecords": self.total_records,
            "categoryCounts": {col: dict(counts) for col, counts in self.category_counts.items()},
            "numericStats": {col: dict(stats) for col, stats in self.numeric_stats.items()},
        }
        if self.date_range is not None:
            payload["dateRange"] = dict(self.date_range)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DatasetSummary:
        return cls(
            total_records=payload.get("totalRecords", 0),
            date_range=payload.get("dateRange"),
            category_counts=payload.get("categoryCounts", {}),
            numeric_stats=payload.get("numericStats", {}),
        )


@dataclass
class MatrixConfig:
    """Columns picked for the matrix view: rows, columns and cell values."""

    row_column: str
    col_column: str
    value_column: str

    def as_tuple(self) -> tuple[str, str, str]:
        return self.row_column, self.col_column, self.value_column

    def to_dict(self) -> dict[str, str]:
        return {
            "rowColumn": self.row_column,
            "colColumn": self.col_column,
            "valueColumn": self.value_column,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> MatrixConfig:
        return cls(
            row_column=payload["rowColumn"],
            col_column=payload["colColumn"],
            value_column=payload["valueColumn"],
        )


@dataclass
class Dataset:
    id: str
    name: str
    created_at: str
    updated_at: str
    raw_grid: list[list[Any]]
    columns: list[ColumnMetadata]
    rows: list[GenericRow]
    detected_date_column: str | None
    detected_category_columns: list[str]
    detected_numeric_columns: list[str]
    detected_text_columns: list[str]
    total_rows: int
    summary: DatasetSummary
    kind: str = KIND_TABLE
    sheet_name: str | None = None
    header_row_index: int = 0
    warnings: list[str] = field(default_factory=list)
    matrix_config: MatrixConfig | None = None

    def column(self, name: str) -> ColumnMetadata | None:
        return next((col for col in self.columns if col.name == name), None)

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    def to_dict(self, *, include_raw_grid: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "kind": self.kind,
            "sheetName": self.sheet_name,
            "headerRowIndex": self.header_row_index,
            "columns": [col.to_dict() for col in self.columns],
            "rows": [dict(row) for row in self.rows],
            "detectedDateColumn": self.detected_date_column,
            "detectedCategoryColumns": list(self.detected_category_columns),
            "detectedNumericColumns": list(self.detected_numeric_columns),
            "detectedTextColumns": list(self.detected_text_columns),
            "totalRows": self.total_rows,
            "summary": self.summary.to_dict(),
            "warnings": list(self.warnings),
        }
        if self.matrix_config is not None:
            payload["matrixConfig"] = self.matrix_config.to_dict()
        if include_raw_grid:
            payload["rawGrid"] = [[json_safe(cell) for cell in row] for row in self.raw_grid]
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Dataset:
        return cls(
            id=payload["id"],
            name=payload["name"],
            created_at=payload["createdAt"],
            updated_at=payload["updatedAt"],
            raw_grid=[list(row) for row in payload.get("rawGrid", [])],
            columns=[ColumnMetadata.from_dict(col) for col in payload.get("columns", [])],
            rows=[dict(row) for row in payload.get("rows", [])],
            detected_date_column=payload.get("detectedDateColumn"),
            detected_category_columns=list(payload.get("detectedCategoryColumns", [])),
            detected_numeric_columns=list(payload.get("detectedNumericColumns", [])),
            detected_text_columns=list(payload.get("detectedTextColumns", [])),
            total_rows=payload.get("totalRows", 0),
            summary=DatasetSummary.from_dict(payload.get("summary", {})),
            kind=payload.get("kind", KIND_TABLE),
            sheet_name=payload.get("sheetName"),
            header_row_index=payload.get("headerRowIndex", 0),
            warnings=list(payload.get("warnings", [])),
            matrix_config=(
                MatrixConfig.from_dict(payload["matrixConfig"]) if payload.get("matrixConfig") else None
            ),
        )


# ── Assembly ─────────────────────────────────────────────────────────────────

def dataset_name_from_file(file_name: str) -> str:
    path = PurePath(file_name)
    return path.stem if path.suffix else path.name


def _row_is_blank(row: Sequence[Any] | None) -> bool:
    return not row or all(is_blank(cell) for cell in row)


def _resolve_layout(
    grid: list[list[Any]],
    import_format: str,
    warnings: list[str],
) -> tuple[int, MatrixInfo]:
    header_idx = find_header_row(grid)
    if import_format == "long":
        return header_idx, MatrixInfo(is_matrix=False, reason="long format requested")
    matrix_idx = matrix_header_row(grid, header_idx)
    if import_format == "matrix":
        info = force_matrix_info(grid, matrix_idx)
        if not info.is_matrix:
            warnings.append(
                f"Matrix format requested but {info.reason}; imported as a plain table."
            )
            return header_idx, info
        return matrix_idx, info
    info = detect_matrix_format(grid, matrix_idx)
    return (matrix_idx if info.is_matrix else header_idx), info


def _unique_values(values: list[Any]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if is_blank(value):
            continue
        seen.setdefault(stringify(value), None)
        if len(seen) >= MAX_UNIQUE_VALUES:
            break
    return list(seen)


def _typed_value(value: Any, column_type: str) -> Any:
    if is_blank(value):
        return ""
    if column_type == DATE:
        iso = to_iso_date(value) if is_date_like(value) else None
        return iso or stringify(value)
    if column_type == NUMBER:
        number = to_number(value)
        return number if number is not None else stringify(value)
    return stringify(value)


def _date_range(rows: list[GenericRow], column: str | None) -> dict[str, str] | None:
    if column is None:
        return None
    dates = [
        row[column] for row in rows
        if isinstance(row.get(column), str) and ISO_DATE_RE.match(row[column])
    ]
    if not dates:
        return None
    return {"from": min(dates), "to": max(dates)}


def _category_counts(rows: list[GenericRow], columns: list[str]) -> dict[str, dict[str, int]]:
    counts: dict[str, dict[str, int]] = {}
    for column in columns:
        counter: Counter = Counter()
        for row in rows:
            value = row.get(column, "")
            counter[stringify(value) or BLANK_CATEGORY] += 1
        counts[column] = dict(counter)
    return counts


def _numeric_stats(rows: list[GenericRow], columns: list[str]) -> dict[str, dict[str, float]]:
    stats: dict[str, dict[str, float]] = {}
    for column in columns:
        numbers = [
            row[column] for row in rows
            if isinstance(row.get(column), (int, float)) and not isinstance(row.get(column), bool)
        ]
        if not numbers:
            continue
        total = sum(numbers)
        stats[column] = {
            "min": min(numbers),
            "max": max(numbers),
            "avg": total / len(numbers),
            "sum": total,
        }
    return stats


def build_summary(
    rows: list[GenericRow],
    *,
    date_column: str | None,
    category_columns: list[str],
    numeric_columns: list[str],
) -> DatasetSummary:
    return DatasetSummary(
        total_records=len(rows),
        date_range=_date_range(rows, date_column),
        category_counts=_category_counts(rows, category_columns),
        numeric_stats=_numeric_stats(rows, numeric_columns),
    )


def assemble_dataset(
    grid: Sequence[Sequence[Any]],
    file_name: str,
    *,
    import_format: str = "auto",
    canonical_status: bool = False,
    max_rows: int = MAX_GRID_ROWS,
    sheet_name: str | None = None,
    warnings: list[str] | None = None,
) -> Dataset:
    """
    Build a normalized Dataset from a raw grid of untyped cells.

    ``import_format`` is ``auto`` (detect matrix sheets), ``long`` (never
    transpose) or ``matrix`` (always transpose when entity columns exist).
    The input grid is kept untouched as ``raw_grid``.
    """
    if import_format not in IMPORT_FORMATS:
        raise ValueError(f"Unknown import format '{import_format}'. Use one of: {', '.join(IMPORT_FORMATS)}")

    warnings = list(warnings or [])
    raw_grid = [list(row) if row else [] for row in grid]
    working = raw_grid
    if len(raw_grid) > max_rows:
        working = raw_grid[:max_rows]
        warnings.append(
            f"Only the first {max_rows} of {len(raw_grid)} rows were processed."
        )

    header_idx, matrix_info = _resolve_layout(working, import_format, warnings)
    kind = KIND_TABLE
    if matrix_info.is_matrix:
        working = transpose_matrix_to_long(
            working, header_idx, matrix_info, canonical_status=canonical_status
        )
        header_idx = 0
        kind = KIND_MATRIX
        log.debug("matrix sheet transposed into %d rows", len(working) - 1)

    header_row = working[header_idx] if header_idx < len(working) else []
    data = [
        (index, row)
        for index, row in enumerate(working[header_idx + 1 :], start=header_idx + 1)
        if not _row_is_blank(row)
    ]
    width = max([len(header_row)] + [len(row) for _, row in data])
    names = build_column_names(header_row, width)

    columns: list[ColumnMetadata] = []
    for col_idx, name in enumerate(names):
        values = [row[col_idx] if col_idx < len(row) else None for _, row in data]
        if all(is_blank(value) for value in values):
            log.debug("dropping empty column %r", name)
            continue
        profile = profile_column(values)
        columns.append(
            ColumnMetadata(
                name=name,
                original_index=col_idx,
                type=profile.detected_type,
                unique_values=_unique_values(values),
                sample_values=values[:MAX_SAMPLE_VALUES],
                is_numeric=profile.detected_type == NUMBER,
                is_date=profile.detected_type == DATE,
                is_empty=False,
            )
        )
        log.debug("column %r typed as %s", name, profile.detected_type)

    rows: list[GenericRow] = []
    for row_index, raw in data:
        row: GenericRow = {}
        for col in columns:
            cell = raw[col.original_index] if col.original_index < len(raw) else None
            row[col.name] = _typed_value(cell, col.type)
        row[ROW_INDEX_KEY] = row_index
        rows.append(row)

    date_column = next((col.name for col in columns if col.type == DATE), None)
    category_columns = [col.name for col in columns if col.type == CATEGORY]
    numeric_columns = [col.name for col in columns if col.type == NUMBER]
    text_columns = [col.name for col in columns if col.type in (TEXT, ID)]

    now = utc_now_iso()
    return Dataset(
        id=generate_id(),
        name=dataset_name_from_file(file_name),
        created_at=now,
        updated_at=now,
        raw_grid=raw_grid,
        columns=columns,
        rows=rows,
        detected_date_column=date_column,
        detected_category_columns=category_columns,
        detected_numeric_columns=numeric_columns,
        detected_text_columns=text_columns,
        total_rows=len(rows),
        summary=build_summary(
            rows,
            date_column=date_column,
            category_columns=category_columns,
            numeric_columns=numeric_columns,
        ),
        kind=kind,
        sheet_name=sheet_name,
        header_row_index=header_idx,
        warnings=warnings,
    )


def update_raw_grid(dataset: Dataset, grid: Sequence[Sequence[Any]]) -> Dataset:
    """Replace the editable grid wholesale; inferred columns and rows are left as they were."""
    return dataclasses.replace(
        dataset,
        raw_grid=[list(row) for row in grid],
        updated_at=utc_now_iso(),
    )


def set_matrix_config(dataset: Dataset, config: MatrixConfig | None) -> Dataset:
    """Remember the matrix columns picked for this dataset; every name must be one of its columns."""
    if config is not None:
        unknown = [name for name in config.as_tuple() if dataset.column(name) is None]
        if unknown:
            raise ValueError(f"Unknown column: {unknown[0]}")
    return dataclasses.replace(dataset, matrix_config=config, updated_at=utc_now_iso())
