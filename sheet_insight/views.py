"""
Read-only projections of a Dataset used by the exports, the CLI and the web app.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from sheet_insight.cells import stringify
from sheet_insight.contracts import build_contract
from sheet_insight.dataset import BLANK_CATEGORY, KIND_MATRIX, Dataset, GenericRow
from sheet_insight.matrix import ENTITY_COLUMN, VALUE_COLUMN

ALL = "ALL"
DATE_FROM = "date_from"
DATE_TO = "date_to"


def _key(value: Any) -> str:
    return stringify(value) or BLANK_CATEGORY


def filter_rows(
    rows: Iterable[GenericRow],
    filters: Optional[Mapping[str, Any]] = None,
    *,
    date_column: Optional[str] = None,
) -> list[GenericRow]:
    """
    Keep rows matching every filter.

    ``filters`` maps a column name to the one value to keep; ``"ALL"``, ``None``
    or ``""`` disables that filter. ``date_from``/``date_to`` bound
    ``date_column`` inclusively by ISO string comparison; rows without a date
    fail a date bound.
    """
    filters = dict(filters or {})
    date_from = filters.pop(DATE_FROM, None)
    date_to = filters.pop(DATE_TO, None)
    active = {
        column: stringify(value)
        for column, value in filters.items()
        if value not in (None, "", ALL)
    }

    kept: list[GenericRow] = []
    for row in rows:
        if any(stringify(row.get(column, "")) != wanted for column, wanted in active.items()):
            continue
        if date_column and (date_from or date_to):
            day = stringify(row.get(date_column, ""))
            if not day:
                continue
            if date_from and day < str(date_from):
                continue
            if date_to and day > str(date_to):
                continue
        kept.append(row)
    return kept


def filter_dataset_rows(dataset: Dataset, filters: Optional[Mapping[str, Any]] = None) -> list[GenericRow]:
    return filter_rows(dataset.rows, filters, date_column=dataset.detected_date_column)


@dataclass
class MatrixView:
    row_column: str
    col_column: str
    value_column: str
    row_keys: list[str] = field(default_factory=list)
    col_keys: list[str] = field(default_factory=list)
    cells: dict[tuple[str, str], Any] = field(default_factory=dict)
    legend: list[str] = field(default_factory=list)

    def value(self, row_key: str, col_key: str) -> Any:
        return self.cells.get((row_key, col_key))

    def as_table(self) -> list[list[Any]]:
        """Header row of column keys, then one row per row key; missing cells are ``""``."""
        table: list[list[Any]] = [[self.row_column] + list(self.col_keys)]
        for row_key in self.row_keys:
            table.append([row_key] + [self.cells.get((row_key, col), "") for col in self.col_keys])
        return table

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract": build_contract("sheet_insight.matrix_view"),
            "rowColumn": self.row_column,
            "colColumn": self.col_column,
            "valueColumn": self.value_column,
            "rowKeys": list(self.row_keys),
            "colKeys": list(self.col_keys),
            "legend": list(self.legend),
            "table": self.as_table(),
        }


def build_matrix_view(
    rows: Iterable[GenericRow],
    row_column: str,
    col_column: str,
    value_column: str,
    domain_rows: Optional[Iterable[GenericRow]] = None,
) -> MatrixView:
    """
    Pivot long rows back into a grid.

    Axes come from ``domain_rows`` (the unfiltered rows, so filtering never
    hides a person or a day), cell values from ``rows``. Later rows overwrite
    earlier ones for the same pair. Both axes are sorted.
    """
    rows = list(rows)
    domain = list(domain_rows) if domain_rows is not None else rows

    row_keys: set[str] = set()
    col_keys: set[str] = set()
    for row in domain:
        row_keys.add(_key(row.get(row_column)))
        col_keys.add(_key(row.get(col_column)))

    cells: dict[tuple[str, str], Any] = {}
    legend: dict[str, None] = {}
    for row in rows:
        value = row.get(value_column, "")
        cells[(_key(row.get(row_column)), _key(row.get(col_column)))] = value
        legend.setdefault(_key(value), None)

    return MatrixView(
        row_column=row_column,
        col_column=col_column,
        value_column=value_column,
        row_keys=sorted(row_keys),
        col_keys=sorted(col_keys),
        cells=cells,
        legend=list(legend),
    )


def default_matrix_config(dataset: Dataset) -> Optional[tuple[str, str, str]]:
    """``(row, col, value)`` columns for the matrix view, or ``None`` when the dataset cannot be pivoted."""
    names = set(dataset.column_names)
    date_column = dataset.detected_date_column
    if dataset.kind == KIND_MATRIX and date_column and {ENTITY_COLUMN, VALUE_COLUMN} <= names:
        return ENTITY_COLUMN, date_column, VALUE_COLUMN
    categories = dataset.detected_category_columns
    if date_column and len(categories) >= 2:
        return categories[0], date_column, categories[1]
    return None


def matrix_config_for(dataset: Dataset) -> Optional[tuple[str, str, str]]:
    """The saved matrix columns when they still exist in the dataset, else the default pick."""
    saved = dataset.matrix_config
    if saved is not None and all(dataset.column(name) is not None for name in saved.as_tuple()):
        return saved.as_tuple()
    return default_matrix_config(dataset)


def category_breakdown(dataset: Dataset, column: str, rows: Optional[Iterable[GenericRow]] = None) -> list[tuple[str, int, float]]:
    """``(value, count, share)`` for ``column``, most frequent first; ties keep first-seen order."""
    source = dataset.rows if rows is None else list(rows)
    counts = Counter(_key(row.get(column, "")) for row in source)
    total = sum(counts.values())
    return [
        (value, count, count / total if total else 0.0)
        for value, count in counts.most_common()
    ]


def dataset_kpis(dataset: Dataset, rows: Optional[Iterable[GenericRow]] = None) -> dict[str, Any]:
    """Headline numbers shown on the dashboard and the exported reports."""
    source = dataset.rows if rows is None else list(rows)
    kpis: dict[str, Any] = {
        "totalRecords": len(source),
        "columns": len(dataset.columns),
        "categoryColumns": len(dataset.detected_category_columns),
        "numericColumns": len(dataset.detected_numeric_columns),
    }
    date_column = dataset.detected_date_column
    if date_column:
        days = sorted({row[date_column] for row in source if row.get(date_column)})
        kpis["distinctDates"] = len(days)
        kpis["dateRange"] = {"from": days[0], "to": days[-1]} if days else None
    if dataset.kind == KIND_MATRIX and ENTITY_COLUMN in dataset.column_names:
        kpis["entities"] = len({row.get(ENTITY_COLUMN) for row in source if row.get(ENTITY_COLUMN)})
    return kpis
