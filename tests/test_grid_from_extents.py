import unittest

import numpy as np

from precip_kriging.errors import InvalidParameterError
from precip_kriging.grid import grid_coordinates, grid_from_extents, make_prediction_grid
from precip_kriging.samples import SampleSet


class TestGridFromExtents(unittest.TestCase):
    def setUp(self):
        self.samples = SampleSet([[0.0, 0.0], [100.0, 50.0]], [0.0, 50.0])

    def test_grid_spec_basic(self):
        spec = grid_from_extents(self.samples, dx=10, dy=10, pad=0)
        self.assertEqual(spec["nx"], 10)
        self.assertEqual(spec["ny"], 5)
        self.assertEqual(spec["xmin"], 0.0)
        self.assertEqual(spec["ymin"], 0.0)

    def test_grid_spec_pad(self):
        spec = grid_from_extents(self.samples, dx=10, dy=10, pad=5)
        self.assertEqual(spec["nx"], 11)
        self.assertEqual(spec["ny"], 6)
        self.assertEqual(spec["xmin"], -5.0)

    def test_single_sample_gives_one_cell(self):
        spec = grid_from_extents(SampleSet([[3.0, 4.0]], [1.0]), dx=10, dy=10)
        self.assertEqual((spec["nx"], spec["ny"]), (1, 1))

    def test_invalid_cell_size(self):
        with self.assertRaises(InvalidParameterError):
            grid_from_extents(self.samples, dx=0, dy=10)

    def test_cell_centres(self):
        spec = {"xmin": 0.0, "ymin": 0.0, "dx": 10.0, "dy": 5.0, "nx": 2, "ny": 3}
        coords = grid_coordinates(spec)
        self.assertEqual(coords.shape, (6, 2))
        np.testing.assert_allclose(coords[0], [5.0, 2.5])
        np.testing.assert_allclose(coords[1], [15.0, 2.5])
        np.testing.assert_allclose(coords[-1], [15.0, 12.5])

    def test_prediction_grid_covariates(self):
        spec = grid_from_extents(self.samples, dx=10, dy=10)
        grid = make_prediction_grid(spec, trend="coordinates")
        self.assertEqual(len(grid), 50)
        np.testing.assert_allclose(grid.covariates, grid.coords)
        self.assertIsNone(make_prediction_grid(spec, trend="none").covariates)


if __name__ == "__main__":
    unittest.main()
