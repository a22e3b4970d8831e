import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from openpyxl import load_workbook
from sample_grids import long_grid, matrix_grid

from sheet_insight import export
from sheet_insight.dataset import assemble_dataset
from sheet_insight.export import (
    build_export_sheets,
    export_excel,
    export_html,
    export_json,
    render_html_report,
)


class ExportTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.out = Path(self._tmp.name)
        self.dataset = assemble_dataset(matrix_grid(), "rda_marco.xlsx", sheet_name="CONTROLE")


class JsonExportTests(ExportTestCase):
    def test_envelope_without_raw_grid(self):
        path = export_json(self.dataset, self.out / "sub" / "rda.json")
        payload = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(payload["contract"]["name"], "sheet_insight.dataset")
        self.assertIn("exported_at", payload)
        self.assertEqual(payload["dataset"]["id"], self.dataset.id)
        self.assertEqual(payload["dataset"]["totalRows"], 15)
        self.assertNotIn("rawGrid", payload["dataset"])

    def test_raw_grid_on_request(self):
        path = export_json(self.dataset, self.out / "rda.json", include_raw_grid=True)
        payload = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(payload["dataset"]["rawGrid"][1], ["DATA", "ANA", "BRUNO", "CARLA"])


class ExcelExportTests(ExportTestCase):
    def test_sheet_layout(self):
        path = export_excel(self.dataset, self.out / "rda.xlsx")
        workbook = load_workbook(path)
        self.assertEqual(
            workbook.sheetnames,
            ["Resumo", "Dados", "Por ENTIDADE", "Por GRUPO", "Por VALOR"],
        )
        data = workbook["Dados"]
        self.assertEqual(data.max_row, 16)
        self.assertEqual([cell.value for cell in data[1]], ["DATA", "ENTIDADE", "GRUPO", "VALOR"])
        self.assertEqual(data.freeze_panes, "A2")
        self.assertTrue(data["A1"].font.bold)

        summary = {row[0]: row[1] for row in workbook["Resumo"].iter_rows(min_row=2, values_only=True)}
        self.assertEqual(summary["Registros"], 15)
        self.assertEqual(summary["Planilha"], "CONTROLE")
        self.assertEqual(summary["Data inicial"], "2024-03-01")
        self.assertEqual(summary["Entidades"], 3)

        breakdown = list(workbook["Por VALOR"].iter_rows(values_only=True))
        self.assertEqual(breakdown[0], ("VALOR", "Quantidade", "Percentual"))
        self.assertEqual(breakdown[1], ("ENTREGUE", 8, 53.33))

    def test_filters_apply_to_every_sheet(self):
        path = export_excel(self.dataset, self.out / "ana.xlsx", {"ENTIDADE": "ANA"})
        workbook = load_workbook(path)
        self.assertEqual(workbook["Dados"].max_row, 6)
        breakdown = list(workbook["Por ENTIDADE"].iter_rows(min_row=2, values_only=True))
        self.assertEqual(breakdown, [("ANA", 5, 100.0)])

    def test_large_exports_use_write_only_mode(self):
        with mock.patch.object(export, "WRITE_ONLY_THRESHOLD", 1):
            path = export_excel(self.dataset, self.out / "fast.xlsx")
        workbook = load_workbook(path, read_only=True)
        self.assertEqual(workbook.sheetnames[:2], ["Resumo", "Dados"])
        rows = list(workbook["Dados"].iter_rows(values_only=True))
        workbook.close()
        self.assertEqual(len(rows), 16)

    def test_numeric_stats_in_summary(self):
        dataset = assemble_dataset(long_grid(4), "pedidos.csv")
        titles = [title for title, _, _ in build_export_sheets(dataset, dataset.rows)]
        self.assertEqual(titles, ["Resumo", "Dados"])
        summary_rows = build_export_sheets(dataset, dataset.rows)[0][1]
        self.assertIn(["Valor (sum)", 62.0], summary_rows)

    def test_equals_sign_text_is_not_written_as_formula(self):
        grid = [["Nome", "Obs"], ["Ana", "=HYPERLINK(\"http://x\")"], ["=1+1", "ok"]]
        dataset = assemble_dataset(grid, "obs.csv")
        for threshold in (5_000, 0):
            with self.subTest(write_only=threshold == 0):
                with mock.patch.object(export, "WRITE_ONLY_THRESHOLD", threshold):
                    path = export_excel(dataset, self.out / f"obs_{threshold}.xlsx")
                workbook = load_workbook(path)
                data = workbook["Dados"]
                self.assertEqual(data["B2"].value, '=HYPERLINK("http://x")')
                self.assertEqual(data["B2"].data_type, "s")
                self.assertEqual(data["A3"].value, "=1+1")
                self.assertEqual(data["A3"].data_type, "s")

    def test_breakdown_sheets_are_capped_and_titles_sanitized(self):
        header = [f"Cat/{i}" for i in range(7)]
        grid = [header] + [[f"v{(r + c) % 2}" for c in range(7)] for r in range(20)]
        dataset = assemble_dataset(grid, "cats.csv")
        titles = [title for title, _, _ in build_export_sheets(dataset, dataset.rows)]
        self.assertEqual(len(titles), 2 + export.MAX_BREAKDOWN_SHEETS)
        self.assertIn("Por Cat_0", titles)


class HtmlExportTests(ExportTestCase):
    def test_report_contents(self):
        report = render_html_report(self.dataset)
        self.assertTrue(report.startswith("<!DOCTYPE html>"))
        self.assertIn('lang="pt-BR"', report)
        self.assertIn("Relatório: rda_marco", report)
        self.assertIn("2024-03-01 a 2024-03-05", report)
        self.assertIn("<caption>VALOR</caption>", report)

    def test_values_are_escaped(self):
        grid = [["Nome", "Obs"], ["Ana & Bia", "<script>alert(1)</script>"], ["Caio", "ok"]]
        report = render_html_report(assemble_dataset(grid, "<lista>.csv"))
        self.assertNotIn("<script>", report)
        self.assertIn("&lt;script&gt;", report)
        self.assertIn("Ana &amp; Bia", report)
        self.assertIn("Relatório: &lt;lista&gt;", report)

    def test_row_cap_is_announced(self):
        with mock.patch.object(export, "HTML_MAX_ROWS", 2):
            report = render_html_report(self.dataset)
        self.assertIn("Dados (primeiros 2 de 15)", report)

    def test_export_html_with_filters(self):
        path = export_html(self.dataset, self.out / "r.html", {"VALOR": "FOLGA"})
        text = path.read_text(encoding="utf-8")
        self.assertIn("4 registros", text)


if __name__ == "__main__":
    unittest.main()
