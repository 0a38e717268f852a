import os
import tempfile
import unittest

import pandas as pd

from precip_kriging.errors import InvalidParameterError
from precip_kriging.io import load_samples, read_csv_robust, validate_columns


class TestReadCsvRobust(unittest.TestCase):
    def test_read_csv_robust_semicolon(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "test.csv")
            df = pd.DataFrame({"A": [1, 2], "B": [3, 4]})
            df.to_csv(path, sep=";", index=False)

            out = read_csv_robust(path)
            self.assertEqual(out.shape, (2, 2))
            self.assertListEqual(list(out.columns), ["A", "B"])

    def test_read_csv_robust_latin1(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "estaciones.csv")
            with open(path, "w", encoding="latin-1") as handle:
                handle.write("estación,x,y,pp\n")
                handle.write("Peñuelas,1.0,2.0,3.5\n")

            out = read_csv_robust(path)
            self.assertListEqual(list(out.columns), ["estación", "x", "y", "pp"])
            self.assertEqual(out.iloc[0, 0], "Peñuelas")

    def test_validate_columns_reports_missing(self):
        df = pd.DataFrame({"x": [1.0], "y": [2.0]})
        with self.assertRaises(KeyError):
            validate_columns(df, ["x", "y", "precip"])


class TestLoadSamples(unittest.TestCase):
    def _config(self, path, strategy="mean"):
        return {
            "data": {
                "path": path,
                "x_col": "este",
                "y_col": "norte",
                "value_col": "pp",
                "duplicate_strategy": strategy,
            }
        }

    def test_load_samples_collapses_duplicates(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "pp.csv")
            pd.DataFrame(
                {
                    "este": [0.0, 0.0, 10.0, 20.0],
                    "norte": [0.0, 0.0, 5.0, None],
                    "pp": [10.0, 20.0, 30.0, 40.0],
                }
            ).to_csv(path, index=False)

            samples, metadata = load_samples(self._config(path))
            self.assertEqual(len(samples), 2)
            self.assertEqual(metadata["samples"], 2)
            self.assertEqual(metadata["input_shape"], [4, 3])
            self.assertEqual(len(metadata["input_hash"]), 64)
            self.assertIn(15.0, list(samples.values))

            first, _ = load_samples(self._config(path, strategy="first"))
            self.assertListEqual(sorted(first.values.tolist()), [10.0, 30.0])

    def test_error_strategy_rejects_shared_positions(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "pp.csv")
            pd.DataFrame(
                {"este": [0.0, 0.0, 10.0], "norte": [0.0, 0.0, 5.0], "pp": [10.0, 18.0, 30.0]}
            ).to_csv(path, index=False)

            with self.assertRaises(InvalidParameterError) as ctx:
                load_samples(self._config(path, strategy="error"))
            self.assertIn("data.duplicate_strategy", str(ctx.exception))

    def test_error_strategy_accepts_distinct_positions(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "pp.csv")
            pd.DataFrame({"este": [0.0, 5.0, 10.0], "norte": [0.0, 0.0, 5.0], "pp": [10.0, 18.0, 30.0]}).to_csv(
                path, index=False
            )

            samples, _ = load_samples(self._config(path, strategy="error"))
            self.assertEqual(len(samples), 3)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_samples(self._config("/nonexistent/pp.csv"))


if __name__ == "__main__":
    unittest.main()
