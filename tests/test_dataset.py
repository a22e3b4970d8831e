from __future__ import annotations

import json
import unittest
from datetime import datetime

from sample_grids import long_grid, matrix_grid, team_matrix_grid

from sheet_insight.column_types import category_limit, normalized_key
from sheet_insight.dataset import (
    BLANK_CATEGORY,
    KIND_MATRIX,
    KIND_TABLE,
    MAX_UNIQUE_VALUES,
    ROW_INDEX_KEY,
    Dataset,
    MatrixConfig,
    assemble_dataset,
    dataset_name_from_file,
    generate_id,
    set_matrix_config,
    update_raw_grid,
)


class MatrixImportTests(unittest.TestCase):
    def setUp(self):
        self.dataset = assemble_dataset(matrix_grid(), "controle_marco.xlsx")

    def test_matrix_sheet_becomes_long_dataset(self):
        ds = self.dataset
        self.assertEqual(ds.kind, KIND_MATRIX)
        self.assertEqual(ds.header_row_index, 0)
        self.assertEqual(ds.total_rows, 15)
        self.assertEqual(ds.column_names, ["DATA", "ENTIDADE", "GRUPO", "VALOR"])
        self.assertEqual(ds.detected_date_column, "DATA")
        self.assertEqual(ds.detected_category_columns, ["ENTIDADE", "GRUPO", "VALOR"])
        self.assertEqual(ds.name, "controle_marco")

    def test_summary_counts_blanks_as_placeholder(self):
        counts = self.dataset.summary.category_counts
        self.assertEqual(counts["VALOR"], {"ENTREGUE": 8, "FOLGA": 4, BLANK_CATEGORY: 3})
        self.assertEqual(counts["ENTIDADE"], {"ANA": 5, "BRUNO": 5, "CARLA": 5})
        self.assertEqual(self.dataset.summary.date_range, {"from": "2024-03-01", "to": "2024-03-05"})

    def test_category_counts_add_up_to_total(self):
        for column, counts in self.dataset.summary.category_counts.items():
            self.assertEqual(sum(counts.values()), self.dataset.summary.total_records, column)

    def test_raw_grid_is_kept_untouched(self):
        self.assertEqual(self.dataset.raw_grid, matrix_grid())

    def test_long_format_override_keeps_the_sheet_as_is(self):
        ds = assemble_dataset(matrix_grid(), "controle.xlsx", import_format="long")
        self.assertEqual(ds.kind, KIND_TABLE)
        self.assertEqual(ds.header_row_index, 1)
        self.assertEqual(ds.column_names, ["DATA", "ANA", "BRUNO", "CARLA"])
        self.assertEqual(ds.total_rows, 5)

    def test_canonical_status_counts_blanks_as_vazio(self):
        ds = assemble_dataset(matrix_grid(), "controle.xlsx", canonical_status=True)
        self.assertEqual(ds.summary.category_counts["VALOR"]["VAZIO"], 3)


class TeamMatrixImportTests(unittest.TestCase):
    def test_team_band_becomes_group_column(self):
        ds = assemble_dataset(team_matrix_grid(), "controle_equipes.xlsx")
        self.assertEqual(ds.kind, KIND_MATRIX)
        self.assertEqual(ds.column_names, ["DATA", "ENTIDADE", "GRUPO", "VALOR"])
        self.assertEqual(ds.total_rows, 15)
        counts = ds.summary.category_counts
        self.assertEqual(counts["ENTIDADE"], {"ANA": 5, "BRUNO": 5, "CARLA": 5})
        self.assertEqual(counts["GRUPO"], {"EQUIPE A": 10, "EQUIPE B": 5})
        bruno = [row for row in ds.rows if row["ENTIDADE"] == "BRUNO"]
        self.assertEqual({row["GRUPO"] for row in bruno}, {"EQUIPE A"})

    def test_data_header_with_team_labels_and_names_below(self):
        grid = [
            ["DATA", "EQUIPE A", "EQUIPE A", "EQUIPE B"],
            ["", "ANA", "BRUNO", "CARLA"],
            *[list(row) for row in matrix_grid()[2:]],
        ]
        ds = assemble_dataset(grid, "controle.xlsx")
        self.assertEqual(ds.kind, KIND_MATRIX)
        self.assertEqual(ds.column_names, ["DATA", "ENTIDADE", "GRUPO", "VALOR"])
        self.assertEqual(ds.total_rows, 15)
        self.assertEqual(ds.summary.category_counts["GRUPO"], {"EQUIPE A": 10, "EQUIPE B": 5})

    def test_forced_matrix_also_skips_the_team_band(self):
        ds = assemble_dataset(team_matrix_grid(), "controle.xlsx", import_format="matrix")
        self.assertEqual(ds.summary.category_counts["ENTIDADE"], {"ANA": 5, "BRUNO": 5, "CARLA": 5})
        self.assertEqual(ds.warnings, [])


class TableImportTests(unittest.TestCase):
    def test_long_table_types(self):
        ds = assemble_dataset(long_grid(), "pedidos.csv")
        self.assertEqual(ds.kind, KIND_TABLE)
        types = {col.name: col.type for col in ds.columns}
        self.assertEqual(types, {"ID": "id", "Nome": "text", "Valor": "number", "Data": "date"})
        self.assertEqual(ds.detected_numeric_columns, ["Valor"])
        self.assertEqual(ds.detected_text_columns, ["ID", "Nome"])
        self.assertEqual(ds.detected_category_columns, [])
        self.assertEqual(ds.total_rows, 100)

    def test_numeric_stats(self):
        ds = assemble_dataset(long_grid(4), "pedidos.csv")
        stats = ds.summary.numeric_stats["Valor"]
        self.assertEqual(stats["min"], 0.5)
        self.assertEqual(stats["max"], 30.5)
        self.assertEqual(stats["sum"], 62.0)
        self.assertAlmostEqual(stats["avg"], 15.5)

    def test_rows_are_typed_and_indexed(self):
        grid = [
            ["Relatório"],
            ["Data", "Valor", "Setor"],
            [datetime(2024, 1, 5), "1.234,50", "  Norte "],
            ["", "", ""],
            ["06/01/2024", "", "Sul"],
        ]
        ds = assemble_dataset(grid, "vendas.xlsx", import_format="long")
        self.assertEqual(ds.header_row_index, 1)
        self.assertEqual(ds.total_rows, 2)
        first, second = ds.rows
        self.assertEqual(first["Data"], "2024-01-05")
        self.assertEqual(first["Valor"], 1234.5)
        self.assertEqual(first["Setor"], "Norte")
        self.assertEqual(first[ROW_INDEX_KEY], 2)
        self.assertEqual(second["Valor"], "")
        self.assertEqual(second[ROW_INDEX_KEY], 4)

    def test_unparsable_cells_keep_their_text(self):
        grid = [["Data"], ["01/02/2024"], ["02/02/2024"], ["03/02/2024"], ["04/02/2024"], [" a definir "]]
        ds = assemble_dataset(grid, "datas.csv")
        self.assertEqual(ds.columns[0].type, "date")
        self.assertEqual(ds.rows[-1]["Data"], "a definir")

    def test_small_numbers_in_date_columns_are_not_serials(self):
        grid = [["Data", "Obs"], ["01/02/2024", "a"], ["02/02/2024", "b"], ["03/02/2024", "c"], ["04/02/2024", "d"], [5, "e"]]
        ds = assemble_dataset(grid, "datas.csv")
        self.assertEqual(ds.columns[0].type, "date")
        self.assertEqual(ds.rows[-1]["Data"], "5")
        self.assertEqual(ds.summary.date_range, {"from": "2024-02-01", "to": "2024-02-04"})

    def test_all_blank_columns_are_dropped(self):
        grid = [["A", "B", "C"], ["x", "", 1], ["y", None, 2]]
        ds = assemble_dataset(grid, "t.csv")
        self.assertEqual(ds.column_names, ["A", "C"])
        self.assertEqual(ds.column("C").original_index, 2)
        self.assertIsNone(ds.column("B"))
        self.assertNotIn("B", ds.rows[0])

    def test_category_cardinality_bound_holds(self):
        grid = [["Setor", "Status"]] + [[f"S{i % 4}", "OK" if i % 3 else "ERRO"] for i in range(40)]
        ds = assemble_dataset(grid, "t.csv")
        for name in ds.detected_category_columns:
            values = [row[name] for row in ds.rows if row[name] != ""]
            distinct = {normalized_key(value) for value in values}
            self.assertLessEqual(len(distinct), category_limit(len(values)))

    def test_unique_and_sample_values_are_capped(self):
        ds = assemble_dataset(long_grid(300), "pedidos.csv")
        column = ds.column("ID")
        self.assertEqual(len(column.unique_values), MAX_UNIQUE_VALUES)
        self.assertEqual(len(column.sample_values), 10)

    def test_header_without_data(self):
        ds = assemble_dataset([["ID", "Nome"]], "vazio.csv")
        self.assertEqual(ds.total_rows, 0)
        self.assertEqual(ds.summary.category_counts, {})
        self.assertEqual(ds.columns, [])
        self.assertIsNone(ds.summary.date_range)

    def test_empty_grid(self):
        ds = assemble_dataset([], "vazio.csv")
        self.assertEqual(ds.total_rows, 0)
        self.assertIsNone(ds.detected_date_column)


class AssemblyOptionTests(unittest.TestCase):
    def test_grid_cap_records_a_warning(self):
        ds = assemble_dataset(long_grid(100), "pedidos.csv", max_rows=50)
        self.assertEqual(ds.total_rows, 49)
        self.assertEqual(len(ds.raw_grid), 101)
        self.assertEqual(ds.warnings, ["Only the first 50 of 101 rows were processed."])

    def test_caller_warnings_are_carried(self):
        ds = assemble_dataset(long_grid(3), "p.csv", warnings=["Multiple sheets found."])
        self.assertEqual(ds.warnings, ["Multiple sheets found."])

    def test_forced_matrix_without_entities_falls_back(self):
        ds = assemble_dataset([["DATA"], ["01/01/2024"]], "d.csv", import_format="matrix")
        self.assertEqual(ds.kind, KIND_TABLE)
        self.assertEqual(len(ds.warnings), 1)
        self.assertIn("imported as a plain table", ds.warnings[0])

    def test_unknown_import_format(self):
        with self.assertRaises(ValueError):
            assemble_dataset(long_grid(3), "p.csv", import_format="wide")


class DatasetModelTests(unittest.TestCase):
    def test_generated_ids(self):
        first, second = generate_id(), generate_id()
        self.assertRegex(first, r"^ds_\d+_[0-9a-z]{9}$")
        self.assertNotEqual(first, second)

    def test_name_from_file(self):
        self.assertEqual(dataset_name_from_file("/tmp/Controle RDA.xlsx"), "Controle RDA")
        self.assertEqual(dataset_name_from_file("planilha"), "planilha")

    def test_dict_round_trip_through_json(self):
        ds = assemble_dataset(matrix_grid(), "controle.xlsx")
        payload = json.loads(json.dumps(ds.to_dict()))
        self.assertEqual(Dataset.from_dict(payload), ds)

    def test_serialized_field_names(self):
        payload = assemble_dataset(long_grid(5), "p.csv").to_dict(include_raw_grid=False)
        self.assertNotIn("rawGrid", payload)
        self.assertIn("detectedDateColumn", payload)
        self.assertIn("originalIndex", payload["columns"][0])
        self.assertIn(ROW_INDEX_KEY, payload["rows"][0])
        self.assertNotIn("dateRange", assemble_dataset([["A"]], "a.csv").summary.to_dict())

    def test_raw_grid_dates_serialize_as_iso(self):
        ds = assemble_dataset([["Data", "X"], [datetime(2024, 2, 1, 8, 0), "a"]], "d.xlsx")
        self.assertEqual(ds.to_dict()["rawGrid"][1][0], "2024-02-01T08:00:00")

    def test_matrix_config_round_trip(self):
        ds = assemble_dataset(matrix_grid(), "controle.xlsx")
        self.assertNotIn("matrixConfig", ds.to_dict())
        ds.updated_at = "2000-01-01T00:00:00Z"
        saved = set_matrix_config(ds, MatrixConfig("VALOR", "DATA", "ENTIDADE"))
        self.assertNotEqual(saved.updated_at, ds.updated_at)
        payload = json.loads(json.dumps(saved.to_dict()))
        self.assertEqual(
            payload["matrixConfig"],
            {"rowColumn": "VALOR", "colColumn": "DATA", "valueColumn": "ENTIDADE"},
        )
        restored = Dataset.from_dict(payload)
        self.assertEqual(restored.matrix_config, MatrixConfig("VALOR", "DATA", "ENTIDADE"))
        self.assertEqual(restored, saved)

    def test_matrix_config_rejects_unknown_columns(self):
        ds = assemble_dataset(matrix_grid(), "controle.xlsx")
        with self.assertRaises(ValueError):
            set_matrix_config(ds, MatrixConfig("PESSOA", "DATA", "VALOR"))

    def test_update_raw_grid_keeps_inference(self):
        ds = assemble_dataset(long_grid(5), "p.csv")
        ds.updated_at = "2000-01-01T00:00:00Z"
        edited = update_raw_grid(ds, [["ID"], ["novo"]])
        self.assertEqual(edited.raw_grid, [["ID"], ["novo"]])
        self.assertEqual(edited.rows, ds.rows)
        self.assertEqual(edited.id, ds.id)
        self.assertNotEqual(edited.updated_at, ds.updated_at)
        self.assertEqual(len(ds.raw_grid), 6)


if __name__ == "__main__":
    unittest.main()
