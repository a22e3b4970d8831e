import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from openpyxl import Workbook

from sheet_insight import loader


def write_workbook(path: Path, sheets: dict) -> Path:
    workbook = Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets.items():
        worksheet = workbook.create_sheet(title)
        for row in rows:
            worksheet.append(row)
    workbook.save(path)
    return path


class TextLoaderTests(unittest.TestCase):
    def test_semicolon_csv_with_brazilian_decimals(self):
        raw = "Nome;Valor;Data\nAna;1.234,50;01/03/2024\nBruno;12,5;02/03/2024\n".encode("utf-8")
        result = loader.read_grid(raw, "vendas.csv")
        self.assertEqual(result["delimiter"], ";")
        self.assertEqual(result["detected_format"], "csv")
        self.assertEqual(result["grid"][0], ["Nome", "Valor", "Data"])
        self.assertEqual(result["grid"][1], ["Ana", "1.234,50", "01/03/2024"])
        self.assertEqual(len(result["grid"]), 3)
        self.assertEqual(result["warnings"], [])

    def test_tsv_always_splits_on_tabs(self):
        raw = b"Nome\tSetor\nAna\tNorte\nBruno\tSul\n"
        result = loader.read_grid(raw, "pessoas.tsv")
        self.assertEqual(result["delimiter"], "\t")
        self.assertEqual(result["grid"][2], ["Bruno", "Sul"])

    def test_legacy_encoding_is_decoded(self):
        body = "José;São Paulo\nInês;Belém\nJoão;Maringá\n" * 20
        raw = ("Nome;Cidade\n" + body).encode("cp1252")
        result = loader.read_grid(raw, "cidades.csv")
        self.assertEqual(result["grid"][1], ["José", "São Paulo"])
        self.assertEqual(result["grid"][2], ["Inês", "Belém"])

    def test_bom_is_stripped_from_first_header(self):
        raw = "\ufeffNome,Valor\nAna,1\nBruno,2\n".encode("utf-8")
        result = loader.read_grid(raw, "bom.csv")
        self.assertEqual(result["grid"][0][0], "Nome")

    def test_trailing_blank_cells_are_trimmed(self):
        raw = b"A\tB\t\t\n1\t2\t\t\n\n3\t\t\t\n"
        grid = loader.read_grid(raw, "t.tsv")["grid"]
        self.assertEqual(grid, [["A", "B"], ["1", "2"], [], ["3"]])

    def test_plain_txt_is_rejected(self):
        with self.assertRaisesRegex(ValueError, "does not appear to contain delimited/tabular data"):
            loader.read_grid(b"This is a text file.\n", "notes.txt")

    def test_delimited_txt_is_accepted(self):
        result = loader.read_grid(b"a|b|c\n1|2|3\n4|5|6\n", "export.txt")
        self.assertEqual(result["delimiter"], "|")
        self.assertEqual(result["grid"][1], ["1", "2", "3"])


class WorkbookLoaderTests(unittest.TestCase):
    def test_xlsx_keeps_native_values(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "controle.xlsx",
                {"Plan1": [["Data", "Valor", None], [datetime(2024, 3, 1), 12.5, None]]},
            )
            result = loader.load_grid(path)

        self.assertEqual(result["detected_format"], "xlsx")
        self.assertEqual(result["sheet_name"], "Plan1")
        self.assertEqual(result["sheet_names"], ["Plan1"])
        self.assertEqual(result["grid"], [["Data", "Valor"], [datetime(2024, 3, 1), 12.5]])
        self.assertEqual(result["warnings"], [])

    def test_sheet_with_most_rows_is_chosen(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "book.xlsx",
                {
                    "Capa": [["Relatório"]],
                    "Dados": [["A", "B"], [1, 2], [3, 4]],
                    "Notas": [["x"], ["y"]],
                },
            )
            result = loader.load_grid(path)

        self.assertEqual(result["sheet_name"], "Dados")
        self.assertEqual(len(result["warnings"]), 1)
        self.assertIn("Multiple sheets found (3 total)", result["warnings"][0])

    def test_controle_sheet_is_preferred(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "rda.xlsx",
                {
                    "Dados": [["A", "B"], [1, 2], [3, 4], [5, 6]],
                    "Controle Março": [["DATA", "ANA"], ["01/03/2024", "OK"]],
                },
            )
            result = loader.load_grid(path)
        self.assertEqual(result["sheet_name"], "Controle Março")

    def test_explicit_sheet_wins(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_workbook(
                Path(tmpdir) / "rda.xlsx",
                {"CONTROLE": [["A", "B"]], "Outra": [["C", "D"], [1, 2]]},
            )
            result = loader.load_grid(path, preferred_sheet_name="Outra")
            self.assertEqual(result["grid"][0], ["C", "D"])

            with self.assertRaisesRegex(ValueError, "Sheet 'Falta' not found"):
                loader.load_grid(path, preferred_sheet_name="Falta")

    def test_corrupt_xlsx_raises_clear_error(self):
        with self.assertRaisesRegex(ValueError, "Could not read workbook"):
            loader.read_grid(b"not-a-zip-archive", "broken.xlsx")

    def test_missing_xlrd_raises_clear_importerror(self):
        original_import = __import__

        def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
            if name == "xlrd":
                raise ImportError("simulated missing xlrd")
            return original_import(name, globals, locals, fromlist, level)

        with mock.patch("builtins.__import__", side_effect=fake_import):
            with self.assertRaisesRegex(ImportError, r"\.xls files require xlrd"):
                loader.read_grid(b"not-a-real-xls", "legacy.xls")

    def test_missing_odfpy_raises_clear_importerror(self):
        original_import = __import__

        def fake_import(name, globals=None, locals=None, fromlist=(), level=0):
            if name == "odf":
                raise ImportError("simulated missing odf")
            return original_import(name, globals, locals, fromlist, level)

        with mock.patch("builtins.__import__", side_effect=fake_import):
            with self.assertRaisesRegex(ImportError, r"\.ods files require odfpy"):
                loader.read_grid(b"not-a-real-ods", "sheet.ods")


class SheetChoiceTests(unittest.TestCase):
    def test_choose_sheet_rules(self):
        grids = {"A": [["x"], []], "B": [["x"], ["y"]]}
        self.assertEqual(loader.choose_sheet(["A", "B"], grids), "B")
        self.assertEqual(loader.choose_sheet(["A", "B"]), "A")
        self.assertEqual(loader.choose_sheet(["A", "rda controle"], grids), "rda controle")

    def test_ties_go_to_the_first_sheet(self):
        grids = {"A": [["x"]], "B": [["y"]]}
        self.assertEqual(loader.choose_sheet(["A", "B"], grids), "A")

    def test_empty_workbook(self):
        with self.assertRaisesRegex(ValueError, "no sheets"):
            loader.choose_sheet([])


class LoaderBoundaryTests(unittest.TestCase):
    def test_unsupported_extension(self):
        with self.assertRaisesRegex(ValueError, "Unsupported format '.pdf'"):
            loader.read_grid(b"%PDF", "report.pdf")

    def test_hard_limit_rejects_oversized_input(self):
        with mock.patch.object(loader, "LARGE_FILE_HARD_LIMIT_BYTES", 10):
            with self.assertRaisesRegex(ValueError, "too large for safe in-memory processing"):
                loader.read_grid(b"a;b\n1;2\n3;4\n", "big.csv")

    def test_missing_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileNotFoundError):
                loader.load_grid(Path(tmpdir) / "missing.csv")

    def test_trim_row(self):
        self.assertEqual(loader.trim_row(["a", None, "", "b", None, "  "]), ["a", None, "", "b"])
        self.assertEqual(loader.trim_row(None), [])


if __name__ == "__main__":
    unittest.main()
