import pytest
import numpy as np
from rasterio.transform import from_origin

from geostage.dataset import RasterGrid
from geostage.errors import GridMismatchError
from geostage.raster.algebra import (
    add,
    aggregate,
    compare,
    divide,
    focal,
    mask,
    multiply,
    subtract,
    threshold,
)


def grid_of(values, cell=10, crs="EPSG:27700") -> RasterGrid:
    values = np.asarray(values, dtype="float64")
    height = values.shape[-2]
    return RasterGrid.from_array(values, from_origin(0, height * cell, cell, cell), crs)


def test_aggregate_ones_by_two(ones_grid):
    result = aggregate(ones_grid, 2, "mean")
    assert result.shape == (2, 2)
    np.testing.assert_array_equal(result.array(0), np.ones((2, 2)))
    assert result.resolution == (20, 20)
    assert result.extent.bounds == ones_grid.extent.bounds


def test_aggregate_partial_blocks_use_available_cells():
    result = aggregate(grid_of(np.ones((5, 5))), 2, "sum")
    assert result.shape == (3, 3)
    assert result.array(0)[0, 0] == 4
    assert result.array(0)[0, 2] == 2
    assert result.array(0)[2, 2] == 1


def test_aggregate_majority_and_nodata():
    values = np.array([
        [1, 1, np.nan, np.nan],
        [2, 1, np.nan, np.nan],
        [3, 3, 4, 4],
        [3, 5, 5, 4],
    ])
    result = aggregate(grid_of(values), 2, "majority")
    expected = np.array([[1, np.nan], [3, 4]])
    np.testing.assert_array_equal(result.array(0), expected)


def test_aggregate_with_callable():
    result = aggregate(grid_of(np.arange(16).reshape(4, 4)), 2, np.max)
    np.testing.assert_array_equal(result.array(0), [[5, 7], [13, 15]])


def test_aggregate_rejects_bad_factor(ones_grid):
    with pytest.raises(ValueError):
        aggregate(ones_grid, 0)
    with pytest.raises(ValueError):
        aggregate(ones_grid, 1.5)


def test_arithmetic():
    a = grid_of([[1, 2], [3, 4]])
    b = grid_of([[4, 3], [2, 1]])
    np.testing.assert_array_equal(add(a, b).array(0), [[5, 5], [5, 5]])
    np.testing.assert_array_equal(subtract(a, 1).array(0), [[0, 1], [2, 3]])
    np.testing.assert_array_equal(multiply(2, a).array(0), [[2, 4], [6, 8]])


def test_divide_by_zero_is_nodata():
    result = divide(grid_of([[1, 2]]), grid_of([[0, 2]]))
    assert np.isnan(result.array(0)[0, 0])
    assert result.array(0)[0, 1] == 1


def test_mismatched_grids_raise():
    with pytest.raises(GridMismatchError):
        add(grid_of(np.ones((2, 2))), grid_of(np.ones((3, 3))))
    with pytest.raises(GridMismatchError):
        add(grid_of(np.ones((2, 2))), grid_of(np.ones((2, 2)), cell=20))
    with pytest.raises(GridMismatchError):
        add(grid_of(np.ones((2, 2))), grid_of(np.ones((2, 2)), crs="EPSG:3857"))


def test_scalars_only_raise():
    with pytest.raises(TypeError):
        add(1, 2)


def test_compare_keeps_nodata():
    grid = grid_of([[1, 5], [np.nan, 10]])
    result = compare(grid, 5, ">=")
    np.testing.assert_array_equal(result.array(0), [[0, 1], [np.nan, 1]])
    with pytest.raises(ValueError):
        compare(grid, 5, "=>")


def test_threshold():
    grid = grid_of([[1, 5, 10]])
    np.testing.assert_array_equal(threshold(grid, 4).array(0), [[0, 1, 1]])
    np.testing.assert_array_equal(threshold(grid, 4, above=False).array(0), [[1, 0, 0]])


def test_mask_sets_matching_cells_to_nodata():
    grid = grid_of([[1, 2], [3, 4]])
    predicate = compare(grid, 2, ">")
    masked = mask(grid, predicate, mask_value=1.0)
    np.testing.assert_array_equal(masked.array(0), [[1, 2], [np.nan, np.nan]])
    assert grid.array(0)[1, 1] == 4


def test_focal_mean_of_ones_is_ones():
    result = focal(grid_of(np.ones((5, 5))), size=3, reducer="mean")
    np.testing.assert_array_equal(result.array(0), np.ones((5, 5)))


def test_focal_partial_edges_use_in_bounds_cells():
    result = focal(grid_of(np.ones((4, 4))), size=3, reducer="sum")
    assert result.array(0)[0, 0] == 4
    assert result.array(0)[0, 1] == 6
    assert result.array(0)[1, 1] == 9


def test_focal_nodata_edges():
    result = focal(grid_of(np.ones((5, 5))), size=3, edge="nodata")
    values = result.array(0)
    assert np.isnan(values[0]).all()
    assert np.isnan(values[:, -1]).all()
    np.testing.assert_array_equal(values[1:-1, 1:-1], np.ones((3, 3)))


def test_focal_skip_missing():
    values = np.ones((5, 5))
    values[2, 2] = np.nan
    grid = grid_of(values)
    skipped = focal(grid, size=3, reducer="sum", skip_missing=True)
    assert skipped.array(0)[2, 2] == 8
    propagated = focal(grid, size=3, reducer="sum", skip_missing=False)
    assert np.isnan(propagated.array(0)[1:4, 1:4]).all()
    assert propagated.array(0)[0, 0] == 4


def test_focal_tiled_matches_untiled():
    values = np.random.default_rng(0).normal(size=(2, 11, 7))
    values[0, 4, 3] = np.nan
    grid = grid_of(values)
    whole = focal(grid, size=5, reducer="median", tile_rows=0)
    tiled = focal(grid, size=5, reducer="median", tile_rows=3)
    np.testing.assert_allclose(tiled.values, whole.values, equal_nan=True)


def test_focal_requires_odd_window(ones_grid):
    with pytest.raises(ValueError):
        focal(ones_grid, size=2)
