"""
loader.py: spreadsheet decoding for sheet-insight

Supports: .csv .tsv .txt .xlsx .xlsm .xls .ods

Public API:
    result = load_grid("path/to/file.xlsx")
    grid   = result["grid"]

Result dict keys:
    grid              : list of rows, each a list of raw cell values
    detected_format   : "csv", "xlsx", "ods", ...
    detected_encoding : encoding name for text files; None for workbooks
    delimiter         : delimiter char for text files; None otherwise
    sheet_name        : chosen sheet for workbooks; None otherwise
    sheet_names       : all sheet names for workbooks; None otherwise
    warnings          : list of warning strings
"""

from __future__ import annotations

import csv
import io
import logging
from collections import Counter
from pathlib import Path, PurePath
from typing import Any, Optional

import chardet
import pandas as pd
from openpyxl import load_workbook

from sheet_insight.cells import is_blank

log = logging.getLogger(__name__)

# ── Format groups ──────────────────────────────────────────────────────────────
TEXT_FORMATS = {".csv", ".tsv", ".txt"}
OPENPYXL_FORMATS = {".xlsx", ".xlsm"}
PANDAS_FORMATS = {".xls", ".ods"}
ALL_FORMATS = TEXT_FORMATS | OPENPYXL_FORMATS | PANDAS_FORMATS

DELIMITER_CANDIDATES = [";", ",", "\t", "|"]
PREFERRED_SHEET_MARKER = "CONTROLE"
LARGE_FILE_HARD_LIMIT_BYTES = 100 * 1024 * 1024


# ══════════════════════════════════════════════════════════════════════════════
# TEXT DECODING
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> str:
    result = chardet.detect(raw[:200_000])
    detected = result.get("encoding")
    return detected or "utf-8"


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Each line tries UTF-8, then the detected encoding, then latin-1, and
    finally CP1252 with replacement, so a mixed-encoding export never aborts
    the import. Embedded null bytes are dropped.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc:
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.rstrip("\r").replace("\x00", ""))
    text = "\n".join(decoded_lines)
    return text.lstrip("\ufeff")


def _detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    csv.Sniffer gets the first try; when it gives up, each candidate is scored
    by column-count consistency and width. Semicolon wins ties because the
    spreadsheets this tool reads are usually exported with a Brazilian locale.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:120]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            sniffed = csv.Sniffer().sniff(sample, delimiters="".join(DELIMITER_CANDIDATES))
            return sniffed.delimiter
        except csv.Error:
            pass

    best_delim = DELIMITER_CANDIDATES[0]
    best_score = float("-inf")
    for delim in DELIMITER_CANDIDATES:
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if not rows:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


def _validate_txt_table(grid: list[list[Any]], delimiter: str) -> None:
    """Plain .txt notes are not spreadsheets; require at least two multi-field rows."""
    multi_field_rows = sum(1 for row in grid if len(row) > 1)
    if multi_field_rows < 2:
        raise ValueError(
            ".txt file does not appear to contain delimited/tabular data "
            f"(detected delimiter {delimiter!r} but fewer than 2 rows contain multiple fields)"
        )


# ══════════════════════════════════════════════════════════════════════════════
# GRID HELPERS
# ══════════════════════════════════════════════════════════════════════════════

def trim_row(row: Any) -> list[Any]:
    """Drop trailing blank cells; an all-blank row becomes ``[]``."""
    cells = list(row or [])
    while cells and is_blank(cells[-1]):
        cells.pop()
    return cells


def _non_blank_rows(grid: list[list[Any]]) -> int:
    return sum(1 for row in grid if row)


def choose_sheet(
    sheet_names: list[str],
    grids: dict[str, list[list[Any]]] | None = None,
    preferred_sheet_name: Optional[str] = None,
) -> str:
    """
    Pick the sheet to import.

    Order: the explicit ``preferred_sheet_name`` (unknown names raise), then the
    first sheet whose name contains CONTROLE, then the sheet with the most
    non-blank rows (first wins ties). ``grids`` is only needed for the last rule.
    """
    if not sheet_names:
        raise ValueError("Workbook has no sheets.")
    if preferred_sheet_name is not None:
        if preferred_sheet_name not in sheet_names:
            raise ValueError(
                f"Sheet '{preferred_sheet_name}' not found. Available: {sheet_names}"
            )
        return preferred_sheet_name
    for name in sheet_names:
        if PREFERRED_SHEET_MARKER in name.upper():
            return name
    if not grids:
        return sheet_names[0]
    best = sheet_names[0]
    best_count = -1
    for name in sheet_names:
        count = _non_blank_rows(grids.get(name, []))
        if count > best_count:
            best, best_count = name, count
    return best


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_text(raw: bytes, suffix: str) -> dict:
    enc = _detect_encoding(raw)
    text = _read_text_safely(raw, enc)
    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)

    grid = [trim_row(row) for row in csv.reader(io.StringIO(text), delimiter=delimiter)]
    while grid and not grid[-1]:
        grid.pop()
    if suffix == ".txt":
        _validate_txt_table(grid, delimiter)

    log.debug("decoded %s as %s with delimiter %r", suffix, enc, delimiter)
    return {
        "grid": grid,
        "detected_format": suffix.lstrip("."),
        "detected_encoding": enc,
        "delimiter": delimiter,
        "sheet_name": None,
        "sheet_names": None,
        "warnings": [],
    }


def _openpyxl_grid(worksheet) -> list[list[Any]]:
    return [trim_row(row) for row in worksheet.iter_rows(values_only=True)]


def _load_openpyxl(raw: bytes, suffix: str, preferred_sheet_name: Optional[str]) -> dict:
    try:
        workbook = load_workbook(io.BytesIO(raw), read_only=True, data_only=True)
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    warnings: list[str] = []
    try:
        sheet_names = list(workbook.sheetnames)
        grids: dict[str, list[list[Any]]] = {}
        if preferred_sheet_name is None and not any(
            PREFERRED_SHEET_MARKER in name.upper() for name in sheet_names
        ):
            grids = {name: _openpyxl_grid(workbook[name]) for name in sheet_names}
        chosen = choose_sheet(sheet_names, grids, preferred_sheet_name)
        grid = grids[chosen] if chosen in grids else _openpyxl_grid(workbook[chosen])
    finally:
        workbook.close()

    if len(sheet_names) > 1:
        others = [name for name in sheet_names if name != chosen]
        warnings.append(
            f"Multiple sheets found ({len(sheet_names)} total); used '{chosen}'. Ignored: {others}"
        )
    while grid and not grid[-1]:
        grid.pop()
    return {
        "grid": grid,
        "detected_format": suffix.lstrip("."),
        "detected_encoding": None,
        "delimiter": None,
        "sheet_name": chosen,
        "sheet_names": sheet_names,
        "warnings": warnings,
    }


def _frame_to_grid(frame: pd.DataFrame) -> list[list[Any]]:
    values = frame.astype(object).where(pd.notna(frame), None).values.tolist()
    return [trim_row(row) for row in values]


def _load_pandas(raw: bytes, suffix: str, preferred_sheet_name: Optional[str]) -> dict:
    if suffix == ".xls":
        try:
            import xlrd  # noqa: F401
        except ImportError:
            raise ImportError(".xls files require xlrd. Run: pip install xlrd")
        engine = "xlrd"
    else:
        try:
            import odf  # noqa: F401
        except ImportError:
            raise ImportError(".ods files require odfpy. Run: pip install odfpy")
        engine = "odf"

    try:
        frames = pd.read_excel(
            io.BytesIO(raw), sheet_name=None, header=None, engine=engine
        )
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    grids = {str(name): _frame_to_grid(frame) for name, frame in frames.items()}
    sheet_names = list(grids)
    chosen = choose_sheet(sheet_names, grids, preferred_sheet_name)
    grid = grids[chosen]
    while grid and not grid[-1]:
        grid.pop()

    warnings: list[str] = []
    if len(sheet_names) > 1:
        others = [name for name in sheet_names if name != chosen]
        warnings.append(
            f"Multiple sheets found ({len(sheet_names)} total); used '{chosen}'. Ignored: {others}"
        )
    return {
        "grid": grid,
        "detected_format": suffix.lstrip("."),
        "detected_encoding": None,
        "delimiter": None,
        "sheet_name": chosen,
        "sheet_names": sheet_names,
        "warnings": warnings,
    }


# ══════════════════════════════════════════════════════════════════════════════
# PUBLIC API
# ══════════════════════════════════════════════════════════════════════════════

def read_grid(
    raw: bytes,
    file_name: str,
    preferred_sheet_name: Optional[str] = None,
) -> dict:
    """
    Decode in-memory file bytes into a raw grid.

    The format is taken from the extension of ``file_name``.

    Raises:
        ValueError   if the format is unsupported, the payload is too large,
                     or the file cannot be decoded.
        ImportError  if the optional engine for .xls/.ods is missing.
    """
    suffix = PurePath(file_name).suffix.lower()
    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")
    if len(raw) > LARGE_FILE_HARD_LIMIT_BYTES:
        raise ValueError(
            f"{file_name} is {len(raw)} bytes, too large for safe in-memory processing "
            f"(limit {LARGE_FILE_HARD_LIMIT_BYTES} bytes)"
        )

    if suffix in TEXT_FORMATS:
        return _load_text(raw, suffix)
    if suffix in OPENPYXL_FORMATS:
        return _load_openpyxl(raw, suffix, preferred_sheet_name)
    return _load_pandas(raw, suffix, preferred_sheet_name)


def load_grid(
    path: "str | Path",
    preferred_sheet_name: Optional[str] = None,
) -> dict:
    """Same as ``read_grid`` for a file on disk; raises FileNotFoundError when it is missing."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    size = path.stat().st_size
    if size > LARGE_FILE_HARD_LIMIT_BYTES:
        raise ValueError(
            f"{path.name} is {size} bytes, too large for safe in-memory processing "
            f"(limit {LARGE_FILE_HARD_LIMIT_BYTES} bytes)"
        )
    return read_grid(path.read_bytes(), path.name, preferred_sheet_name)
