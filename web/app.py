#!/usr/bin/env python3
from __future__ import annotations

import json
import re
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import pandas as pd
import requests
import streamlit as st
from openpyxl.utils import get_column_letter

from sheet_insight.cells import stringify
from sheet_insight.config import load_settings
from sheet_insight.dataset import KIND_MATRIX, Dataset, MatrixConfig, set_matrix_config, update_raw_grid
from sheet_insight.export import dataset_payload, export_excel, render_html_report
from sheet_insight.importer import parse_workbook
from sheet_insight.loader import ALL_FORMATS
from sheet_insight.store import DatasetStore
from sheet_insight.views import (
    ALL,
    DATE_FROM,
    DATE_TO,
    build_matrix_view,
    category_breakdown,
    dataset_kpis,
    filter_dataset_rows,
    matrix_config_for,
)

MAX_REMOTE_FILE_MB = 100
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024
MAX_PREVIEW_ROWS = 500
IMPORT_FORMAT_LABELS = {"auto": "Detectar automaticamente", "long": "Tabela (uma linha por registro)", "matrix": "Matriz (pessoas x datas)"}


@st.cache_resource(show_spinner=False)
def get_store() -> DatasetStore:
    return DatasetStore(load_settings().store_path)


def ensure_state() -> None:
    store = get_store()
    st.session_state.setdefault("dataset_id", store.get_current_dataset_id())
    st.session_state.setdefault("public_url_input", "")


def normalize_public_url(raw_url: str) -> str:
    """Turn share links from common hosts into direct download links."""
    parsed = urlparse(raw_url.strip())
    if parsed.scheme not in {"http", "https"}:
        raise ValueError("URL must start with http:// or https://")

    host = parsed.netloc.lower()
    query = parse_qs(parsed.query, keep_blank_values=True)

    if host == "github.com" and "/blob/" in parsed.path:
        owner_repo, blob_path = parsed.path.lstrip("/").split("/blob/", 1)
        return f"https://raw.githubusercontent.com/{owner_repo}/{blob_path}"
    if "dropbox.com" in host:
        query["dl"] = ["1"]
        return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))
    if host == "docs.google.com":
        sheet = re.search(r"/spreadsheets/d/([^/]+)", parsed.path)
        if sheet:
            gid = query.get("gid", ["0"])[0]
            return f"https://docs.google.com/spreadsheets/d/{sheet.group(1)}/export?format=xlsx&gid={gid}"
    if host == "drive.google.com":
        match = re.search(r"/file/d/([^/]+)", parsed.path)
        if match:
            return f"https://drive.google.com/uc?export=download&id={match.group(1)}"
    return raw_url.strip()


def _remote_name(url: str, response: requests.Response) -> str:
    disposition = response.headers.get("content-disposition", "")
    match = re.search(r'filename="?([^";]+)"?', disposition, re.I)
    if match:
        return Path(match.group(1).strip()).name
    name = Path(urlparse(response.url or url).path).name
    if "docs.google.com" in url and "/spreadsheets/" in url:
        return f"{name or 'planilha'}.xlsx"
    return name or "arquivo"


def fetch_remote_file(raw_url: str) -> tuple[str, bytes]:
    """Download a public file, refusing anything above MAX_REMOTE_FILE_MB."""
    url = normalize_public_url(raw_url)
    response = requests.get(url, timeout=60, allow_redirects=True, stream=True)
    try:
        response.raise_for_status()
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > MAX_REMOTE_FILE_BYTES:
            raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
        chunks: list[bytes] = []
        downloaded = 0
        for chunk in response.iter_content(chunk_size=1024 * 1024):
            downloaded += len(chunk)
            if downloaded > MAX_REMOTE_FILE_BYTES:
                raise ValueError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
            chunks.append(chunk)
    finally:
        response.close()
    return _remote_name(url, response), b"".join(chunks)


def import_bytes(name: str, payload: bytes, import_format: str, sheet: Optional[str]) -> Dataset:
    settings = load_settings()
    result = parse_workbook(
        payload,
        file_name=name,
        preferred_sheet_name=sheet or settings.preferred_sheet,
        import_format=import_format,
        canonical_status=settings.canonical_status,
        max_rows=settings.max_rows,
    )
    dataset = result["dataset"]
    store = get_store()
    store.save_dataset(dataset)
    store.set_current_dataset_id(dataset.id)
    st.session_state["dataset_id"] = dataset.id
    return dataset


def set_visuals() -> None:
    st.set_page_config(page_title="sheet-insight", page_icon="📊", layout="wide")
    st.markdown(
        """
        <style>
        .block-container { padding-top: 1.5rem; max-width: 1300px; }
        [data-testid="stMetricValue"] { color: #10b981; }
        </style>
        """,
        unsafe_allow_html=True,
    )


def render_import_panel() -> None:
    with st.expander("Importar planilha", expanded=st.session_state.get("dataset_id") is None):
        upload = st.file_uploader(
            "Arquivo",
            type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)],
        )
        url = st.text_input("Ou URL pública", key="public_url_input")
        st.caption(f"URLs públicas fazem requisições de rede e recusam arquivos acima de {MAX_REMOTE_FILE_MB} MB.")
        import_format = st.radio(
            "Formato",
            options=list(IMPORT_FORMAT_LABELS),
            format_func=IMPORT_FORMAT_LABELS.get,
            horizontal=True,
        )
        sheet = st.text_input("Planilha (opcional)")
        if st.button("Importar", type="primary", disabled=not (upload or url.strip())):
            try:
                with st.spinner("Lendo planilha..."):
                    if upload is not None:
                        name, payload = upload.name, upload.getvalue()
                    else:
                        name, payload = fetch_remote_file(url)
                    dataset = import_bytes(name, payload, import_format, sheet.strip() or None)
            except (ValueError, ImportError, requests.RequestException) as exc:
                st.error(f"Não foi possível ler o arquivo: {exc}")
                return
            for warning in dataset.warnings:
                st.warning(warning)
            st.success(f"{dataset.name}: {dataset.total_rows} registros importados.")


def render_dataset_picker() -> Optional[Dataset]:
    store = get_store()
    datasets = store.list_datasets()
    if not datasets:
        return None
    ids = [dataset.id for dataset in datasets]
    current = st.session_state.get("dataset_id")
    index = ids.index(current) if current in ids else 0
    labels = {dataset.id: f"{dataset.name} ({dataset.total_rows} linhas)" for dataset in datasets}
    chosen = st.sidebar.selectbox("Dataset", ids, index=index, format_func=labels.get)
    if chosen != current:
        st.session_state["dataset_id"] = chosen
        store.set_current_dataset_id(chosen)
    if st.sidebar.button("Excluir dataset"):
        store.delete_dataset(chosen)
        st.session_state["dataset_id"] = store.get_current_dataset_id()
        st.rerun()
    return next(dataset for dataset in datasets if dataset.id == chosen)


def render_filters(dataset: Dataset) -> dict:
    filters: dict = {}
    st.sidebar.subheader("Filtros")
    for column in dataset.detected_category_columns:
        meta = dataset.column(column)
        options = [ALL] + sorted(meta.unique_values if meta else [])
        filters[column] = st.sidebar.selectbox(column, options, format_func=lambda v: "Todos" if v == ALL else v)
    date_range = dataset.summary.date_range
    if date_range:
        filters[DATE_FROM] = st.sidebar.text_input("Data inicial", value=date_range["from"])
        filters[DATE_TO] = st.sidebar.text_input("Data final", value=date_range["to"])
    return filters


def render_kpis(dataset: Dataset, rows: list) -> None:
    kpis = dataset_kpis(dataset, rows)
    cols = st.columns(4)
    cols[0].metric("Registros", kpis["totalRecords"])
    cols[1].metric("Colunas", kpis["columns"])
    if kpis.get("dateRange"):
        cols[2].metric("Datas", kpis["distinctDates"], help=f"{kpis['dateRange']['from']} a {kpis['dateRange']['to']}")
    if "entities" in kpis:
        cols[3].metric("Entidades", kpis["entities"])


def render_charts(dataset: Dataset, rows: list) -> None:
    for column in dataset.detected_category_columns[:4]:
        breakdown = category_breakdown(dataset, column, rows)
        if not breakdown:
            continue
        frame = pd.DataFrame(breakdown, columns=[column, "Quantidade", "Percentual"]).set_index(column)
        st.subheader(column)
        st.bar_chart(frame["Quantidade"])
    date_column = dataset.detected_date_column
    if date_column and rows:
        per_day = pd.Series([row.get(date_column) for row in rows if row.get(date_column)]).value_counts().sort_index()
        st.subheader(f"Registros por {date_column}")
        st.line_chart(per_day)


def render_matrix(dataset: Dataset, rows: list) -> None:
    config = matrix_config_for(dataset)
    names = dataset.column_names
    if len(names) < 3:
        st.info("São necessárias pelo menos três colunas para a matriz.")
        return
    defaults = config or (names[0], names[1], names[2])
    cols = st.columns(3)
    row_column = cols[0].selectbox("Linhas", names, index=names.index(defaults[0]))
    col_column = cols[1].selectbox("Colunas", names, index=names.index(defaults[1]))
    value_column = cols[2].selectbox("Valores", names, index=names.index(defaults[2]))
    picked = MatrixConfig(row_column, col_column, value_column)
    if picked.as_tuple() != config:
        get_store().save_dataset(set_matrix_config(dataset, picked))
    view = build_matrix_view(rows, row_column, col_column, value_column, domain_rows=dataset.rows)
    table = view.as_table()
    st.dataframe(pd.DataFrame(table[1:], columns=table[0]), hide_index=True)


def grid_frame(grid: list) -> pd.DataFrame:
    """Raw grid as display text, padded to a rectangle, with spreadsheet column letters."""
    width = max((len(row) for row in grid), default=0)
    cells = [[stringify(cell) for cell in row] + [""] * (width - len(row)) for row in grid]
    return pd.DataFrame(cells, columns=[get_column_letter(i) for i in range(1, width + 1)])


def render_spreadsheet(dataset: Dataset) -> None:
    if not dataset.raw_grid:
        st.info("Planilha original vazia.")
        return
    edited = st.data_editor(
        grid_frame(dataset.raw_grid),
        num_rows="dynamic",
        hide_index=True,
        key=f"grid_{dataset.id}",
    )
    st.caption("Edições alteram apenas a planilha original; importe novamente para recalcular os dados.")
    if st.button("Salvar planilha"):
        grid = [["" if cell is None else cell for cell in row] for row in edited.values.tolist()]
        get_store().save_dataset(update_raw_grid(dataset, grid))
        st.success("Planilha salva.")


def render_downloads(dataset: Dataset, filters: dict) -> None:
    st.download_button(
        "JSON",
        data=json.dumps(dataset_payload(dataset), ensure_ascii=False, indent=2),
        file_name=f"{dataset.name}.json",
        mime="application/json",
    )
    st.download_button(
        "HTML",
        data=render_html_report(dataset, filters),
        file_name=f"{dataset.name}.html",
        mime="text/html",
    )
    with tempfile.TemporaryDirectory() as tmpdir:
        path = export_excel(dataset, Path(tmpdir) / f"{dataset.name}.xlsx", filters)
        st.download_button(
            "Excel",
            data=path.read_bytes(),
            file_name=path.name,
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )


def main() -> None:
    set_visuals()
    ensure_state()

    st.title("sheet-insight")
    st.caption("Importe uma planilha (tabela ou matriz de pessoas x datas) e explore os dados.")
    render_import_panel()

    dataset = render_dataset_picker()
    if dataset is None:
        st.info("Formatos suportados: " + " ".join(sorted(ALL_FORMATS)))
        return

    filters = render_filters(dataset)
    rows = filter_dataset_rows(dataset, filters)
    if dataset.kind == KIND_MATRIX:
        st.caption("Planilha em formato de matriz convertida para uma linha por pessoa e data.")

    dashboard, matrix, data, sheet, downloads = st.tabs(["Dashboard", "Matriz", "Dados", "Planilha", "Exportar"])
    with dashboard:
        render_kpis(dataset, rows)
        render_charts(dataset, rows)
    with matrix:
        render_matrix(dataset, rows)
    with data:
        frame = pd.DataFrame(rows[:MAX_PREVIEW_ROWS], columns=dataset.column_names)
        st.dataframe(frame, hide_index=True)
        if len(rows) > MAX_PREVIEW_ROWS:
            st.caption(f"Mostrando {MAX_PREVIEW_ROWS} de {len(rows)} registros.")
    with sheet:
        render_spreadsheet(dataset)
    with downloads:
        render_downloads(dataset, filters)


if __name__ == "__main__":
    main()
