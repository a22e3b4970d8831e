import importlib.util
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from sample_grids import matrix_grid

from sheet_insight.dataset import assemble_dataset, update_raw_grid
from sheet_insight.store import DatasetStore

APP_PATH = Path(__file__).resolve().parents[1] / "web" / "app.py"


def load_app():
    spec = importlib.util.spec_from_file_location("sheet_insight_web_app", APP_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class SpreadsheetTabTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = load_app()

    def test_grid_frame_pads_rows_and_uses_column_letters(self):
        frame = self.app.grid_frame([["DATA", "ANA"], [datetime(2024, 3, 1), "ENTREGUE", 7.0]])
        self.assertEqual(list(frame.columns), ["A", "B", "C"])
        self.assertEqual(frame.values.tolist(), [["DATA", "ANA", ""], ["2024-03-01", "ENTREGUE", "7"]])

    def test_edited_grid_is_saved_with_a_new_timestamp(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = DatasetStore(tmpdir)
            dataset = assemble_dataset(matrix_grid(), "rda.xlsx")
            dataset.updated_at = "2000-01-01T00:00:00Z"
            store.save_dataset(dataset)

            edited = self.app.grid_frame(dataset.raw_grid).values.tolist()
            edited[2][1] = "FOLGA"
            store.save_dataset(update_raw_grid(dataset, edited))

            reloaded = store.get_dataset(dataset.id)
            self.assertEqual(reloaded.raw_grid[2], ["01/03/2024", "FOLGA", "FOLGA", ""])
            self.assertNotEqual(reloaded.updated_at, "2000-01-01T00:00:00Z")
            self.assertEqual(reloaded.rows, dataset.rows)


if __name__ == "__main__":
    unittest.main()
