"""Import entry points: file bytes or a path in, an assembled Dataset out."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from sheet_insight.dataset import (
    KIND_MATRIX,
    MAX_GRID_ROWS,
    Dataset,
    assemble_dataset,
)
from sheet_insight.loader import load_grid, read_grid

log = logging.getLogger(__name__)


def _describe(dataset: Dataset, loaded: dict) -> dict[str, Any]:
    return {
        "fileName": loaded.get("file_name"),
        "format": loaded["detected_format"],
        "encoding": loaded["detected_encoding"],
        "delimiter": loaded["delimiter"],
        "sheetNames": loaded["sheet_names"],
        "headerRowIndex": dataset.header_row_index,
        "columns": [col.to_dict() for col in dataset.columns],
        "totalRows": dataset.total_rows,
        "warnings": list(dataset.warnings),
    }


def parse_workbook(
    raw_bytes: bytes,
    *,
    file_name: str,
    preferred_sheet_name: Optional[str] = None,
    import_format: str = "auto",
    canonical_status: bool = False,
    max_rows: int = MAX_GRID_ROWS,
) -> dict[str, Any]:
    """
    Decode ``raw_bytes`` and run the inference pipeline.

    Returns ``{"kind", "sheet_name", "rows", "meta", "dataset"}`` where ``kind``
    is ``"table"`` or ``"rda_matrix"`` and ``rows`` are the typed row objects.
    Decode failures propagate; structural ambiguity never raises.
    """
    loaded = read_grid(raw_bytes, file_name, preferred_sheet_name)
    loaded["file_name"] = file_name
    dataset = _assemble(loaded, file_name, import_format, canonical_status, max_rows)
    return {
        "kind": dataset.kind,
        "sheet_name": dataset.sheet_name,
        "rows": dataset.rows,
        "meta": _describe(dataset, loaded),
        "dataset": dataset,
    }


def parse_excel_file(
    path: "str | Path",
    *,
    preferred_sheet_name: Optional[str] = None,
    import_format: str = "auto",
    canonical_status: bool = False,
    max_rows: int = MAX_GRID_ROWS,
) -> Dataset:
    """Load a spreadsheet from disk and assemble it into a Dataset."""
    path = Path(path)
    loaded = load_grid(path, preferred_sheet_name)
    return _assemble(loaded, path.name, import_format, canonical_status, max_rows)


def _assemble(
    loaded: dict,
    file_name: str,
    import_format: str,
    canonical_status: bool,
    max_rows: int,
) -> Dataset:
    dataset = assemble_dataset(
        loaded["grid"],
        file_name,
        import_format=import_format,
        canonical_status=canonical_status,
        max_rows=max_rows,
        sheet_name=loaded["sheet_name"],
        warnings=loaded["warnings"],
    )
    log.info(
        "imported %s: %d rows, %d columns%s",
        file_name,
        dataset.total_rows,
        len(dataset.columns),
        " (matrix layout)" if dataset.kind == KIND_MATRIX else "",
    )
    return dataset
