import pytest
import numpy as np
from rasterio.transform import from_origin

from geostage.dataset import RasterGrid
from geostage.raster.terrain import (
    aspect,
    directional_similarity,
    hillshade,
    roughness,
    slope,
    southwestness,
    terrain,
    tpi,
    tri,
)


def aspect_grid(values) -> RasterGrid:
    values = np.asarray(values, dtype="float64")
    return RasterGrid.from_array(values, from_origin(0, 20, 10, 10), "EPSG:27700", band_names=["aspect"])


@pytest.fixture
def northward_dem(transform) -> RasterGrid:
    """Elevation rising towards the north, so slopes face south."""
    rows = (9 - np.arange(10)) * 5.0
    values = np.tile(rows[:, np.newaxis], (1, 10))
    return RasterGrid.from_array(values, transform, "EPSG:27700")


@pytest.fixture
def flat_dem(transform) -> RasterGrid:
    return RasterGrid.from_array(np.full((10, 10), 100.0), transform, "EPSG:27700")


def test_slope_of_plane(eastward_dem):
    degrees = slope(eastward_dem).array(0)
    np.testing.assert_allclose(degrees[1:-1, 1:-1], 45.0)
    percent = slope(eastward_dem, units="percent").array(0)
    np.testing.assert_allclose(percent[1:-1, 1:-1], 100.0)
    radians = slope(eastward_dem, units="radians").array(0)
    np.testing.assert_allclose(radians[1:-1, 1:-1], np.pi / 4)


def test_slope_edges_are_nodata(eastward_dem):
    degrees = slope(eastward_dem).array(0)
    assert np.isnan(degrees[0]).all()
    assert np.isnan(degrees[:, 0]).all()


def test_slope_rejects_unknown_units(eastward_dem):
    with pytest.raises(ValueError):
        slope(eastward_dem, units="gradians")


def test_aspect_is_clockwise_from_north(eastward_dem, northward_dem):
    np.testing.assert_allclose(aspect(eastward_dem).array(0)[1:-1, 1:-1], 270.0)
    np.testing.assert_allclose(aspect(northward_dem).array(0)[1:-1, 1:-1], 180.0)


def test_flat_cells_have_no_aspect(flat_dem):
    assert np.isnan(aspect(flat_dem).array(0)).all()
    np.testing.assert_allclose(slope(flat_dem).array(0)[1:-1, 1:-1], 0.0)


def test_roughness_indices_of_flat_surface(flat_dem):
    for func in (tri, tpi, roughness):
        np.testing.assert_allclose(func(flat_dem).array(0)[1:-1, 1:-1], 0.0)


def test_roughness_indices_of_plane(eastward_dem):
    interior = (slice(1, -1), slice(1, -1))
    np.testing.assert_allclose(tpi(eastward_dem).array(0)[interior], 0.0, atol=1e-9)
    np.testing.assert_allclose(roughness(eastward_dem).array(0)[interior], 20.0)
    np.testing.assert_allclose(tri(eastward_dem).array(0)[interior], 60.0 / 8)


def test_hillshade_is_bounded(eastward_dem):
    shade = hillshade(eastward_dem).array(0)
    valid = shade[~np.isnan(shade)]
    assert valid.size > 0
    assert ((valid >= 0) & (valid <= 1)).all()


def test_directional_similarity_folds_around_north():
    grid = aspect_grid([[90, 0], [270, 225]])
    similarity = directional_similarity(grid, 225).array(0)
    np.testing.assert_allclose(similarity, [[0.75, 0.75], [0.25, 0.0]])


def test_southwestness_matches_folded_difference():
    grid = aspect_grid([[0, 45], [180, np.nan]])
    values = southwestness(grid).array(0)
    assert values[0, 0] == pytest.approx(0.75)
    assert values[0, 1] == pytest.approx(1.0)
    assert values[1, 0] == pytest.approx(0.25)
    assert np.isnan(values[1, 1])


def test_directional_similarity_rejects_bad_bearing():
    with pytest.raises(ValueError):
        directional_similarity(aspect_grid([[0]]), 400)


def test_terrain_stack(eastward_dem):
    stack = terrain(eastward_dem, variables=["slope", "aspect", "hillshade"])
    assert stack.band_names == ["slope", "aspect", "hillshade"]
    assert stack.same_geometry(eastward_dem)
    with pytest.raises(ValueError):
        terrain(eastward_dem, variables=["curvature"])
