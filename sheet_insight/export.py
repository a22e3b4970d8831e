"""
Exports of an assembled Dataset: JSON envelope, styled Excel workbook, static HTML report.
"""

from __future__ import annotations

import html
import json
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import openpyxl
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from sheet_insight.contracts import build_contract, utc_now_iso
from sheet_insight.dataset import Dataset, GenericRow
from sheet_insight.views import category_breakdown, dataset_kpis, filter_dataset_rows

WRITE_ONLY_THRESHOLD = 5_000
MAX_BREAKDOWN_SHEETS = 5
HTML_MAX_ROWS = 1_000
SHEET_TITLE_MAX = 31
INVALID_SHEET_CHARS_RE = re.compile(r"[\[\]:*?/\\]")

COLOR_SUMMARY = "1565C0"
COLOR_DATA = "4CAF50"
COLOR_BREAKDOWN = "8E24AA"


# ── JSON ─────────────────────────────────────────────────────────────────────

def dataset_payload(dataset: Dataset, *, include_raw_grid: bool = False) -> dict[str, Any]:
    return {
        "contract": build_contract("sheet_insight.dataset"),
        "exported_at": utc_now_iso(),
        "dataset": dataset.to_dict(include_raw_grid=include_raw_grid),
    }


def export_json(dataset: Dataset, path: "str | Path", *, include_raw_grid: bool = False) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = dataset_payload(dataset, include_raw_grid=include_raw_grid)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


# ── Excel ────────────────────────────────────────────────────────────────────

def _sheet_title(raw: str, used: set[str]) -> str:
    base = INVALID_SHEET_CHARS_RE.sub("_", raw)[:SHEET_TITLE_MAX] or "Sheet"
    title = base
    n = 2
    while title.lower() in used:
        suffix = f" ({n})"
        title = base[: SHEET_TITLE_MAX - len(suffix)] + suffix
        n += 1
    used.add(title.lower())
    return title


def _infer_col_widths(rows: list[list], min_width: int = 10, max_width: int = 60, sample: int = 300) -> list[int]:
    if not rows:
        return []
    width_count = max(len(row) for row in rows[: sample + 1])
    widths = [min_width] * width_count
    for row in rows[: sample + 1]:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], min(max_width, len(str(val)) + 2))
    return widths


def _is_formula_text(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 1 and value.startswith("=")


def _keep_text(cell: Any) -> None:
    """Cell text that starts with ``=`` stays text instead of turning into a formula."""
    if cell.data_type == "f" and _is_formula_text(cell.value):
        cell.data_type = "s"


def _text_cell(ws: Any, value: str) -> WriteOnlyCell:
    cell = WriteOnlyCell(ws, value=value)
    _keep_text(cell)
    return cell


def _summary_rows(dataset: Dataset, rows: list[GenericRow]) -> list[list[Any]]:
    kpis = dataset_kpis(dataset, rows)
    out: list[list[Any]] = [
        ["Indicador", "Valor"],
        ["Dataset", dataset.name],
        ["Registros", kpis["totalRecords"]],
        ["Registros no arquivo", dataset.total_rows],
        ["Colunas", kpis["columns"]],
    ]
    if dataset.sheet_name:
        out.append(["Planilha", dataset.sheet_name])
    date_range = kpis.get("dateRange")
    if date_range:
        out.append(["Data inicial", date_range["from"]])
        out.append(["Data final", date_range["to"]])
    if "entities" in kpis:
        out.append(["Entidades", kpis["entities"]])
    for column, stats in dataset.summary.numeric_stats.items():
        for stat in ("min", "max", "avg", "sum"):
            out.append([f"{column} ({stat})", stats[stat]])
    return out


def _data_rows(dataset: Dataset, rows: list[GenericRow]) -> list[list[Any]]:
    names = dataset.column_names
    return [names] + [[row.get(name, "") for name in names] for row in rows]


def _breakdown_rows(dataset: Dataset, column: str, rows: list[GenericRow]) -> list[list[Any]]:
    out: list[list[Any]] = [[column, "Quantidade", "Percentual"]]
    for value, count, share in category_breakdown(dataset, column, rows):
        out.append([value, count, round(share * 100, 2)])
    return out


def build_export_sheets(dataset: Dataset, rows: list[GenericRow]) -> list[tuple[str, list[list[Any]], str]]:
    """``(title, rows_with_header, header_color)`` for every sheet of the Excel export."""
    used: set[str] = set()
    sheets = [
        (_sheet_title("Resumo", used), _summary_rows(dataset, rows), COLOR_SUMMARY),
        (_sheet_title("Dados", used), _data_rows(dataset, rows), COLOR_DATA),
    ]
    for column in dataset.detected_category_columns[:MAX_BREAKDOWN_SHEETS]:
        sheets.append(
            (_sheet_title(f"Por {column}", used), _breakdown_rows(dataset, column, rows), COLOR_BREAKDOWN)
        )
    return sheets


def _write_workbook_fast(sheets: list[tuple[str, list[list[Any]], str]], output_path: Path) -> None:
    """write_only=True path for large outputs."""
    wb = openpyxl.Workbook(write_only=True)
    hdr_font = Font(bold=True, color="FFFFFF")
    for title, table, color in sheets:
        ws = wb.create_sheet(title)
        header, body = (table[0], table[1:]) if table else ([], [])
        for i in range(1, len(header) + 1):
            ws.column_dimensions[get_column_letter(i)].width = 15
        header_cells = []
        for value in header:
            cell = WriteOnlyCell(ws, value=value)
            _keep_text(cell)
            cell.font = hdr_font
            cell.fill = PatternFill("solid", fgColor=color)
            header_cells.append(cell)
        ws.append(header_cells)
        for row in body:
            ws.append([_text_cell(ws, value) if _is_formula_text(value) else value for value in row])
    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)


def _write_workbook_standard(sheets: list[tuple[str, list[list[Any]], str]], output_path: Path) -> None:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, table, color in sheets:
        ws = wb.create_sheet(title)
        for row in table:
            ws.append(row)
        for row in ws.iter_rows():
            for cell in row:
                _keep_text(cell)
        fill = PatternFill("solid", fgColor=color)
        font = Font(bold=True, color="FFFFFF")
        for cell in ws[1]:
            cell.font = font
            cell.fill = fill
            cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.freeze_panes = "A2"
        for i, width in enumerate(_infer_col_widths(table), start=1):
            ws.column_dimensions[get_column_letter(i)].width = width
    output_path.parent.mkdir(parents=True, exist_ok=True)
    wb.save(output_path)


def export_excel(
    dataset: Dataset,
    path: "str | Path",
    filters: Optional[Mapping[str, Any]] = None,
) -> Path:
    path = Path(path)
    rows = filter_dataset_rows(dataset, filters)
    sheets = build_export_sheets(dataset, rows)
    writer = _write_workbook_fast if len(rows) > WRITE_ONLY_THRESHOLD else _write_workbook_standard
    writer(sheets, path)
    return path


# ── HTML ─────────────────────────────────────────────────────────────────────

HTML_STYLE = """
body{font-family:'Segoe UI',system-ui,sans-serif;margin:0;background:#f8fafc;color:#0f172a}
header{background:#10b981;color:#fff;padding:20px 28px}
header h1{margin:0;font-size:22px}
main{padding:24px;display:flex;flex-direction:column;gap:24px}
.kpis{display:flex;gap:16px;flex-wrap:wrap}
.kpi{background:#fff;border:1px solid #e2e8f0;border-radius:12px;padding:14px 18px;min-width:140px}
.kpi .title{font-size:11px;text-transform:uppercase;color:#64748b}
.kpi .value{font-size:26px;font-weight:700}
table{border-collapse:collapse;background:#fff;font-size:13px}
th,td{border:1px solid #e2e8f0;padding:6px 10px;text-align:left}
th{background:#f1f5f9}
"""


def _table_html(rows: list[list[Any]], caption: Optional[str] = None) -> str:
    if not rows:
        return ""
    parts = ["<table>"]
    if caption:
        parts.append(f"<caption>{html.escape(caption)}</caption>")
    parts.append("<thead><tr>" + "".join(f"<th>{html.escape(str(v))}</th>" for v in rows[0]) + "</tr></thead>")
    parts.append("<tbody>")
    for row in rows[1:]:
        parts.append("<tr>" + "".join(f"<td>{html.escape(str(v))}</td>" for v in row) + "</tr>")
    parts.append("</tbody></table>")
    return "".join(parts)


def render_html_report(dataset: Dataset, filters: Optional[Mapping[str, Any]] = None) -> str:
    rows = filter_dataset_rows(dataset, filters)
    kpis = dataset_kpis(dataset, rows)
    cards = [("Registros", kpis["totalRecords"]), ("Colunas", kpis["columns"])]
    if kpis.get("dateRange"):
        cards.append(("Período", f"{kpis['dateRange']['from']} a {kpis['dateRange']['to']}"))
    if "entities" in kpis:
        cards.append(("Entidades", kpis["entities"]))

    sections = [
        '<section class="kpis">'
        + "".join(
            f'<div class="kpi"><div class="title">{html.escape(title)}</div>'
            f'<div class="value">{html.escape(str(value))}</div></div>'
            for title, value in cards
        )
        + "</section>"
    ]
    for column in dataset.detected_category_columns:
        breakdown = _breakdown_rows(dataset, column, rows)
        sections.append(f"<section>{_table_html(breakdown, column)}</section>")

    data = _data_rows(dataset, rows[:HTML_MAX_ROWS])
    caption = "Dados"
    if len(rows) > HTML_MAX_ROWS:
        caption = f"Dados (primeiros {HTML_MAX_ROWS} de {len(rows)})"
    sections.append(f"<section>{_table_html(data, caption)}</section>")

    name = html.escape(dataset.name)
    generated = html.escape(utc_now_iso())
    return (
        "<!DOCTYPE html>\n"
        '<html lang="pt-BR"><head><meta charset="UTF-8">'
        f"<title>Relatório: {name}</title><style>{HTML_STYLE}</style></head>"
        f"<body><header><h1>Relatório: {name}</h1>"
        f"<div>Gerado em {generated} | {len(rows)} registros</div></header>"
        f"<main>{''.join(sections)}</main></body></html>\n"
    )


def export_html(
    dataset: Dataset,
    path: "str | Path",
    filters: Optional[Mapping[str, Any]] = None,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_html_report(dataset, filters), encoding="utf-8")
    return path
