from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from sheet_insight import __version__ as TOOL_VERSION
from sheet_insight.config import DEFAULT_CONFIG_TEXT, CONFIG_FILE_NAME, Settings, load_settings
from sheet_insight.contracts import build_contract, build_run_summary
from sheet_insight.dataset import IMPORT_FORMATS, KIND_MATRIX, Dataset, MatrixConfig, set_matrix_config
from sheet_insight.export import export_excel, export_html, export_json
from sheet_insight.importer import parse_excel_file
from sheet_insight.store import DatasetStore
from sheet_insight.views import (
    DATE_FROM,
    DATE_TO,
    build_matrix_view,
    filter_dataset_rows,
    matrix_config_for,
)

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_NOT_FOUND = 5

EXPORT_FORMATS = ("json", "xlsx", "html")
CURRENT = "current"
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class SheetInsightArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, (ImportError, UnicodeDecodeError)):
        return EXIT_PARSE_FAILED
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, ValueError):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def settings_for(args: argparse.Namespace) -> Settings:
    settings = load_settings(getattr(args, "config", None))
    if getattr(args, "store", None):
        settings.store_path = Path(args.store)
    return settings


def open_store(args: argparse.Namespace) -> DatasetStore:
    return DatasetStore(settings_for(args).store_path)


def resolve_dataset(store: DatasetStore, dataset_id: str | None) -> Dataset:
    if not dataset_id or dataset_id == CURRENT:
        dataset_id = store.get_current_dataset_id()
        if not dataset_id:
            raise CliError("No current dataset. Import a file first or pass a dataset id.", EXIT_NOT_FOUND)
    dataset = store.get_dataset(dataset_id)
    if dataset is None:
        raise CliError(f"Dataset not found: {dataset_id}", EXIT_NOT_FOUND)
    return dataset


def parse_filters(args: argparse.Namespace) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    for item in getattr(args, "filter", None) or []:
        column, sep, value = item.partition("=")
        if not sep or not column:
            raise CliError(f"Filters must look like COLUMN=VALUE; got {item!r}", EXIT_COMMAND_ERROR)
        filters[column] = value
    if getattr(args, "date_from", None):
        filters[DATE_FROM] = args.date_from
    if getattr(args, "date_to", None):
        filters[DATE_TO] = args.date_to
    return filters


# ── rendering ────────────────────────────────────────────────────────────────

def dataset_overview(dataset: Dataset) -> dict[str, Any]:
    payload = dataset.to_dict(include_raw_grid=False)
    payload.pop("rows")
    return payload


def render_dataset_text(dataset: Dataset) -> str:
    lines = [
        f"Dataset: {dataset.name} ({dataset.id})",
        f"Kind: {'matrix (transposed)' if dataset.kind == KIND_MATRIX else 'table'}",
        f"Rows: {dataset.total_rows}",
    ]
    if dataset.sheet_name:
        lines.append(f"Sheet: {dataset.sheet_name}")
    date_range = dataset.summary.date_range
    if date_range:
        lines.append(f"Dates: {date_range['from']} to {date_range['to']}")
    lines.append("Columns:")
    for col in dataset.columns:
        lines.append(f"  - {col.name} [{col.type}]")
    for column, counts in dataset.summary.category_counts.items():
        top = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:5]
        rendered = ", ".join(f"{value}={count}" for value, count in top)
        lines.append(f"Top {column}: {rendered}")
    for column, stats in dataset.summary.numeric_stats.items():
        lines.append(
            f"{column}: min={stats['min']} max={stats['max']} avg={stats['avg']:.2f} sum={stats['sum']}"
        )
    for warning in dataset.warnings:
        lines.append(f"Warning: {warning}")
    return "\n".join(lines)


def render_table_text(table: list[list[Any]]) -> str:
    if not table:
        return ""
    widths = [0] * max(len(row) for row in table)
    for row in table:
        for i, value in enumerate(row):
            widths[i] = max(widths[i], len(str(value)))
    return "\n".join(
        "  ".join(str(value).ljust(widths[i]) for i, value in enumerate(row)).rstrip()
        for row in table
    )


# ── parser ───────────────────────────────────────────────────────────────────

def _add_common(parser: argparse.ArgumentParser, *, json_flag: bool = True) -> None:
    parser.add_argument("--config", help=f"Config file (default: ./{CONFIG_FILE_NAME} when present)")
    parser.add_argument("--store", help="Dataset store directory (overrides config)")
    if json_flag:
        parser.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    parser.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = SheetInsightArgumentParser(prog="sheet-insight", description="Spreadsheet structure inference and dashboards.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    importer = subparsers.add_parser("import", help="Import a spreadsheet into the local store.")
    importer.add_argument("input", help="Input file path")
    importer.add_argument("--sheet", dest="sheet_name", help="Workbook sheet to import")
    importer.add_argument("--format", dest="import_format", choices=IMPORT_FORMATS, help="Layout: auto-detect, long table, or matrix")
    importer.add_argument("--canonical-status", action="store_true", default=None, help="Canonicalise status codes in matrix sheets")
    importer.add_argument("--max-rows", type=int, help="Maximum grid rows to process")
    importer.add_argument("--no-save", action="store_true", help="Infer and report without storing")
    _add_common(importer)

    lister = subparsers.add_parser("list", help="List stored datasets.")
    _add_common(lister)

    show = subparsers.add_parser("show", help="Describe a stored dataset.")
    show.add_argument("dataset_id", nargs="?", default=CURRENT, help="Dataset id (default: current)")
    show.add_argument("--rows", type=int, default=0, help="Also print the first N rows")
    _add_common(show)

    export = subparsers.add_parser("export", help="Export a stored dataset.")
    export.add_argument("dataset_id", nargs="?", default=CURRENT, help="Dataset id (default: current)")
    export.add_argument("--format", dest="export_format", choices=EXPORT_FORMATS, required=True, help="Export format")
    export.add_argument("-o", "--output", required=True, help="Output path")
    export.add_argument("--filter", action="append", help="COLUMN=VALUE filter (repeatable)")
    export.add_argument("--from", dest="date_from", help="First date (YYYY-MM-DD) to keep")
    export.add_argument("--to", dest="date_to", help="Last date (YYYY-MM-DD) to keep")
    export.add_argument("--raw-grid", action="store_true", help="Include the raw grid in JSON exports")
    export.add_argument("--force", action="store_true", help="Overwrite an existing output")
    _add_common(export)

    matrix = subparsers.add_parser("matrix", help="Pivot a stored dataset into a matrix view.")
    matrix.add_argument("dataset_id", nargs="?", default=CURRENT, help="Dataset id (default: current)")
    matrix.add_argument("--row", dest="row_column", help="Column for matrix rows")
    matrix.add_argument("--col", dest="col_column", help="Column for matrix columns")
    matrix.add_argument("--value", dest="value_column", help="Column for matrix cells")
    matrix.add_argument("--filter", action="append", help="COLUMN=VALUE filter (repeatable)")
    matrix.add_argument("--from", dest="date_from", help="First date (YYYY-MM-DD) to keep")
    matrix.add_argument("--to", dest="date_to", help="Last date (YYYY-MM-DD) to keep")
    matrix.add_argument("--save", action="store_true", help="Remember the chosen columns for this dataset")
    _add_common(matrix)

    delete = subparsers.add_parser("delete", help="Delete a stored dataset.")
    delete.add_argument("dataset_id", help="Dataset id")
    _add_common(delete, json_flag=False)

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=CONFIG_FILE_NAME, help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


# ── commands ─────────────────────────────────────────────────────────────────

def run_import(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    if not input_path.exists():
        eprint(f"File not found: {input_path}")
        return EXIT_COMMAND_ERROR

    try:
        settings = settings_for(args)
        dataset = parse_excel_file(
            input_path,
            preferred_sheet_name=args.sheet_name or settings.preferred_sheet,
            import_format=args.import_format or settings.import_format,
            canonical_status=settings.canonical_status if args.canonical_status is None else True,
            max_rows=args.max_rows or settings.max_rows,
        )
        if not args.no_save:
            store = DatasetStore(settings.store_path)
            store.save_dataset(dataset)
            store.set_current_dataset_id(dataset.id)

        summary = build_run_summary(
            command="import",
            input_path=input_path,
            metrics={
                "dataset_id": dataset.id,
                "kind": dataset.kind,
                "total_rows": dataset.total_rows,
                "columns": len(dataset.columns),
                "saved": not args.no_save,
            },
            warnings=dataset.warnings,
        )
        if args.json:
            payload = {
                "contract": build_contract("sheet_insight.import_summary"),
                "run_summary": summary,
                "dataset": dataset_overview(dataset),
            }
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_dataset_text(dataset), quiet=args.quiet)
            if not args.no_save:
                emit_human(f"Saved as {dataset.id}", quiet=args.quiet)
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_list(args: argparse.Namespace) -> int:
    store = open_store(args)
    datasets = store.list_datasets()
    current = store.get_current_dataset_id()
    if args.json:
        maybe_emit_json_stdout(
            [
                {
                    "id": dataset.id,
                    "name": dataset.name,
                    "kind": dataset.kind,
                    "totalRows": dataset.total_rows,
                    "updatedAt": dataset.updated_at,
                    "current": dataset.id == current,
                }
                for dataset in datasets
            ],
            True,
        )
        return EXIT_SUCCESS
    if not datasets:
        emit_human("No datasets stored.", quiet=args.quiet)
        return EXIT_SUCCESS
    for dataset in datasets:
        marker = "*" if dataset.id == current else " "
        print(f"{marker} {dataset.id}  {dataset.name}  {dataset.total_rows} rows  {dataset.updated_at}")
    return EXIT_SUCCESS


def run_show(args: argparse.Namespace) -> int:
    dataset = resolve_dataset(open_store(args), args.dataset_id)
    if args.json:
        payload = dataset_overview(dataset)
        if args.rows:
            payload["rows"] = dataset.rows[: args.rows]
        maybe_emit_json_stdout(payload, True)
        return EXIT_SUCCESS
    print(render_dataset_text(dataset))
    if args.rows:
        names = dataset.column_names
        table = [names] + [[row.get(name, "") for name in names] for row in dataset.rows[: args.rows]]
        print(render_table_text(table))
    return EXIT_SUCCESS


def run_export(args: argparse.Namespace) -> int:
    dataset = resolve_dataset(open_store(args), args.dataset_id)
    output_path = Path(args.output)
    if output_path.exists() and not args.force:
        raise CliError(f"Refusing to overwrite existing output: {output_path}", EXIT_COMMAND_ERROR)
    filters = parse_filters(args)
    if args.export_format == "json":
        if filters:
            raise CliError("Filters are not supported for JSON exports.", EXIT_COMMAND_ERROR)
        export_json(dataset, output_path, include_raw_grid=args.raw_grid)
    elif args.export_format == "xlsx":
        export_excel(dataset, output_path, filters)
    else:
        export_html(dataset, output_path, filters)

    summary = build_run_summary(
        command="export",
        output_path=output_path,
        metrics={"dataset_id": dataset.id, "format": args.export_format},
    )
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(f"Export written: {output_path}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_matrix(args: argparse.Namespace) -> int:
    store = open_store(args)
    dataset = resolve_dataset(store, args.dataset_id)
    defaults = matrix_config_for(dataset)
    chosen = (args.row_column, args.col_column, args.value_column)
    if defaults is not None:
        chosen = tuple(pick or default for pick, default in zip(chosen, defaults))
    if not all(chosen):
        raise CliError(
            "Could not pick matrix columns for this dataset; pass --row, --col and --value.",
            EXIT_COMMAND_ERROR,
        )
    for column in chosen:
        if dataset.column(column) is None:
            raise CliError(f"Unknown column: {column}", EXIT_COMMAND_ERROR)

    row_column, col_column, value_column = chosen
    if args.save:
        dataset = set_matrix_config(dataset, MatrixConfig(row_column, col_column, value_column))
        store.save_dataset(dataset)
        emit_human(f"Matrix columns saved for {dataset.id}", quiet=args.quiet)
    rows = filter_dataset_rows(dataset, parse_filters(args))
    view = build_matrix_view(rows, row_column, col_column, value_column, domain_rows=dataset.rows)
    if args.json:
        maybe_emit_json_stdout(view.to_dict(), True)
    else:
        print(render_table_text(view.as_table()))
    return EXIT_SUCCESS


def run_delete(args: argparse.Namespace) -> int:
    store = open_store(args)
    if not store.delete_dataset(args.dataset_id):
        raise CliError(f"Dataset not found: {args.dataset_id}", EXIT_NOT_FOUND)
    emit_human(f"Deleted {args.dataset_id}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


COMMANDS = {
    "import": run_import,
    "list": run_list,
    "show": run_show,
    "export": run_export,
    "matrix": run_matrix,
    "delete": run_delete,
}


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        configure_logging(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        handler = COMMANDS.get(args.command)
        if handler is None:
            raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
        return handler(args)
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    except (OSError, ValueError) as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


if __name__ == "__main__":
    raise SystemExit(main())
