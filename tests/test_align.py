import pytest
import numpy as np
import geopandas as gpd
from shapely.geometry import Point
from rasterio.transform import from_origin

from geostage.align import align, align_grids, assign_crs, match_grid, reproject
from geostage.dataset import RasterGrid, VectorLayer
from geostage.errors import CrsUndefinedError, UnsafeOperationError


@pytest.fixture
def bng_points() -> VectorLayer:
    frame = gpd.GeoDataFrame(
        {"name": ["a", "b"]},
        geometry=[Point(400000, 300000), Point(450000, 350000)],
        crs="EPSG:27700",
    )
    return VectorLayer(frame, name="points", id_field="name")


@pytest.fixture
def bng_grid() -> RasterGrid:
    values = np.arange(100, dtype="float64").reshape(10, 10)
    return RasterGrid.from_array(values, from_origin(400000, 301000, 100, 100), "EPSG:27700", name="grid")


def test_round_trip_reprojection_preserves_coordinates(bng_points):
    there = reproject(bng_points, "EPSG:4326")
    back = reproject(there, "EPSG:27700")
    np.testing.assert_allclose(back.geometry.x, bng_points.geometry.x, atol=1e-3)
    np.testing.assert_allclose(back.geometry.y, bng_points.geometry.y, atol=1e-3)


def test_align_round_trip(bng_points, bng_grid):
    wgs84_points = reproject(bng_points, "EPSG:4326")
    grid, points = align(bng_grid, wgs84_points)
    assert points.crs == "EPSG:27700"
    again_grid, again_points = align(grid, points)
    np.testing.assert_allclose(again_points.geometry.x, bng_points.geometry.x, atol=1e-3)
    np.testing.assert_array_equal(again_grid.values, bng_grid.values)


def test_align_reprojects_cheaper_operand(bng_points, bng_grid):
    wgs84_points = reproject(bng_points, "EPSG:4326")
    points, grid = align(wgs84_points, bng_grid)
    assert points.crs == "EPSG:27700"
    assert grid.crs == "EPSG:27700"
    # the grid is never resampled
    np.testing.assert_array_equal(grid.values, bng_grid.values)
    assert grid.transform == bng_grid.transform


def test_align_same_crs_returns_copies(bng_points, bng_grid):
    points, grid = align(bng_points, bng_grid)
    assert points is not bng_points
    assert grid is not bng_grid
    assert points.crs == bng_points.crs


def test_align_unknown_crs_raises(bng_grid):
    unknown = VectorLayer.from_geometries([Point(400500, 300500)], name="unknown")
    with pytest.raises(CrsUndefinedError):
        align(unknown, bng_grid)


def test_align_with_override(bng_grid):
    unknown = VectorLayer.from_geometries([Point(400500, 300500)], name="unknown")
    points, grid = align(unknown, bng_grid, override_crs="EPSG:27700")
    assert points.crs == "EPSG:27700"
    assert points.geometry.iloc[0].equals(Point(400500, 300500))


def test_reproject_unknown_crs_raises():
    unknown = VectorLayer.from_geometries([Point(0, 0)])
    with pytest.raises(CrsUndefinedError):
        reproject(unknown, "EPSG:4326")


def test_reproject_grid(bng_grid):
    reprojected = reproject(bng_grid, "EPSG:3857", resampling="nearest")
    assert reprojected.crs == "EPSG:3857"
    assert np.nanmax(reprojected.values) <= 99
    assert bng_grid.crs == "EPSG:27700"


def test_align_grids_matches_lattice(bng_grid):
    coarse = RasterGrid.from_array(
        np.ones((5, 5)), from_origin(400000, 301000, 200, 200), "EPSG:27700", name="coarse"
    )
    a, b = align_grids(bng_grid, coarse)
    assert a.same_geometry(b)
    assert b.shape == (10, 10)


def test_match_grid_same_geometry_is_copy(bng_grid):
    matched = match_grid(bng_grid, bng_grid)
    assert matched is not bng_grid
    np.testing.assert_array_equal(matched.values, bng_grid.values)


def test_assign_crs_requires_confirmation(bng_points):
    with pytest.raises(UnsafeOperationError):
        assign_crs(bng_points, "EPSG:4326")


def test_assign_crs_relabels_without_moving(bng_points):
    relabelled = assign_crs(bng_points, "EPSG:3857", confirm=True)
    assert relabelled.crs == "EPSG:3857"
    np.testing.assert_array_equal(relabelled.geometry.x, bng_points.geometry.x)
    assert bng_points.crs == "EPSG:27700"


def test_assign_crs_to_grid(bng_grid):
    relabelled = assign_crs(bng_grid, "EPSG:3857", confirm=True)
    assert relabelled.crs == "EPSG:3857"
    assert relabelled.transform == bng_grid.transform
