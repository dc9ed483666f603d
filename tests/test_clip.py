import pytest
import numpy as np
import geopandas as gpd
from shapely.geometry import LineString, Point, Polygon, box

from geostage.clip import clip, crop_to_extent, mask_to_geometry, repair_geometry
from geostage.align import reproject
from geostage.crs import Extent
from geostage.dataset import RasterGrid, VectorLayer
from geostage.errors import CrsUndefinedError, EmptyResultError, InvalidGeometryError


def test_crop_grid_keeps_overlapping_cells(index_grid):
    cropped = crop_to_extent(index_grid, Extent(20, 20, 50, 50, "EPSG:27700"))
    assert cropped.shape == (3, 3)
    assert cropped.transform.c == 20
    assert cropped.transform.f == 50
    # top-left cell is row 5, col 2 of the source
    assert cropped.array(0)[0, 0] == 52


def test_crop_is_idempotent(index_grid):
    extent = Extent(12, 33, 57, 81, "EPSG:27700")
    once = crop_to_extent(index_grid, extent)
    twice = crop_to_extent(once, extent)
    assert once.shape == twice.shape
    assert once.transform == twice.transform
    np.testing.assert_array_equal(once.values, twice.values)


def test_crop_with_buffer(index_grid):
    cropped = crop_to_extent(index_grid, Extent(20, 20, 50, 50, "EPSG:27700"), buffer=10)
    assert cropped.shape == (5, 5)


def test_crop_extent_without_crs_raises(index_grid, square_region):
    with pytest.raises(CrsUndefinedError):
        crop_to_extent(index_grid, Extent(0, 0, 10, 10))
    with pytest.raises(CrsUndefinedError):
        crop_to_extent(square_region, Extent(0, 0, 10, 10))


def test_crop_outside_grid_raises(index_grid):
    with pytest.raises(EmptyResultError):
        crop_to_extent(index_grid, Extent(500, 500, 600, 600, "EPSG:27700"))


def test_crop_does_not_modify_source(index_grid):
    cropped = crop_to_extent(index_grid, Extent(20, 20, 50, 50, "EPSG:27700"))
    cropped.data.values[:] = -1
    assert index_grid.array(0)[5, 2] == 52


def test_crop_vector_by_bounding_box(crs):
    layer = VectorLayer.from_geometries([Point(5, 5), Point(50, 50), Point(95, 95)], crs=crs)
    cropped = crop_to_extent(layer, Extent(0, 0, 60, 60, crs))
    assert len(cropped) == 2
    assert crop_to_extent(cropped, Extent(0, 0, 60, 60, crs)).ids == cropped.ids


def test_crop_vector_keeps_feature_when_only_its_box_overlaps(crs):
    # the line passes outside the extent but its bounding box covers it
    line = LineString([(0, 100), (100, 100), (100, 0)])
    layer = VectorLayer.from_geometries([line, Point(200, 200)], crs=crs)
    cropped = crop_to_extent(layer, Extent(10, 10, 40, 40, crs))
    assert cropped.ids == [0]


def test_mask_grid_sets_outside_cells_to_nodata(index_grid):
    triangle = Polygon([(0, 0), (100, 0), (0, 100)])
    masked = mask_to_geometry(index_grid, triangle)
    assert masked.shape == index_grid.shape
    values = masked.array(0)
    # bottom-left is inside, top-right is outside
    assert values[9, 0] == 90
    assert np.isnan(values[0, 9])
    assert np.isnan(values).sum() > 0


def test_mask_vector_splits_features(crs):
    line = LineString([(-50, 50), (150, 50)])
    layer = VectorLayer.from_geometries([line], crs=crs)
    masked = mask_to_geometry(layer, box(0, 0, 100, 100))
    assert masked.geometry.iloc[0].length == pytest.approx(100)


def test_mask_vector_explode_gives_one_row_per_part(crs):
    line = LineString([(-50, 50), (150, 50)])
    layer = VectorLayer.from_geometries([line], crs=crs)
    region = box(0, 0, 40, 100).union(box(60, 0, 100, 100))
    masked = mask_to_geometry(layer, region, explode=True)
    assert len(masked) == 2
    assert masked.ids == ["0_0", "0_1"]


def test_mask_keeps_feature_order(crs):
    layer = VectorLayer.from_geometries(
        [Point(90, 90), Point(10, 10), Point(200, 200), Point(50, 50)], crs=crs
    )
    masked = mask_to_geometry(layer, box(0, 0, 100, 100))
    assert masked.ids == [0, 1, 3]


def test_mask_with_layer_region_in_other_crs(gb_index_grid, crs, in_gb):
    region = reproject(VectorLayer.from_geometries([in_gb(box(0, 0, 50, 50))], crs=crs), "EPSG:4326")
    masked = mask_to_geometry(gb_index_grid, region)
    assert not np.isnan(masked.array(0)[9, 0])
    assert np.isnan(masked.array(0)[0, 9])


def test_mask_repairs_invalid_polygon(index_grid):
    bowtie = Polygon([(0, 0), (100, 100), (100, 0), (0, 100), (0, 0)])
    assert not bowtie.is_valid
    masked = mask_to_geometry(index_grid, bowtie)
    assert masked.shape == index_grid.shape


def test_mask_unknown_crs_raises(transform):
    grid = RasterGrid.from_array(np.ones((2, 2)), transform)
    with pytest.raises(CrsUndefinedError):
        mask_to_geometry(grid, box(0, 0, 10, 10))


def test_repair_geometry():
    valid = box(0, 0, 1, 1)
    assert repair_geometry(valid) is valid
    bowtie = Polygon([(0, 0), (10, 10), (10, 0), (0, 10), (0, 0)])
    repaired = repair_geometry(bowtie)
    assert repaired.is_valid
    assert not repaired.is_empty
    with pytest.raises(InvalidGeometryError):
        repair_geometry(None)


def test_clip_combines_crop_and_mask(index_grid):
    region = VectorLayer.from_geometries([Polygon([(20, 20), (60, 20), (20, 60)])], crs="EPSG:27700")
    clipped = clip(index_grid, region)
    assert clipped.shape == (4, 4)
    assert np.isnan(clipped.values).any()
    assert not np.isnan(clipped.values).all()


def test_clip_vector_layer(three_polygons):
    clipped = clip(three_polygons, box(0, 0, 120, 260))
    assert clipped.ids == ["north", "south"]
    assert clipped.geometry.loc["north"].area == pytest.approx(100 * 60)
