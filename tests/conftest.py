import pytest
import numpy as np
import geopandas as gpd
from shapely.affinity import translate
from shapely.geometry import box, Point
from rasterio.transform import from_origin

from geostage.dataset import RasterGrid, VectorLayer

CRS = "EPSG:27700"


@pytest.fixture
def crs() -> str:
    return CRS


@pytest.fixture
def transform():
    """10 m cells with the top-left corner at (0, 100)."""
    return from_origin(0, 100, 10, 10)


@pytest.fixture
def ones_grid() -> RasterGrid:
    """A 4x4 grid of ones."""
    return RasterGrid.from_array(np.ones((4, 4)), from_origin(0, 40, 10, 10), CRS, name="ones")


@pytest.fixture
def index_grid(transform) -> RasterGrid:
    """A 10x10 grid whose cell values are row * 10 + col."""
    values = np.arange(100, dtype="float64").reshape(10, 10)
    return RasterGrid.from_array(values, transform, CRS, band_names=["index"], name="index")


@pytest.fixture
def eastward_dem(transform) -> RasterGrid:
    """Elevation rising 1 m per metre towards the east: 45 degree slopes facing west."""
    cols = np.arange(10) * 10.0
    values = np.tile(cols, (10, 1))
    return RasterGrid.from_array(values, transform, CRS, band_names=["elevation"], name="dem")


@pytest.fixture
def square_region() -> VectorLayer:
    return VectorLayer.from_geometries([box(0, 0, 100, 100)], crs=CRS, name="square")


@pytest.fixture
def three_polygons() -> VectorLayer:
    frame = gpd.GeoDataFrame(
        {"site": ["north", "middle", "south"]},
        geometry=[box(0, 200, 100, 300), box(150, 100, 250, 150), box(0, 0, 50, 50)],
        crs=CRS,
    )
    return VectorLayer(frame, name="sites", id_field="site")


@pytest.fixture
def cell_centre_points() -> VectorLayer:
    frame = gpd.GeoDataFrame(
        {"point_id": ["a", "b", "c"]},
        geometry=[Point(5, 95), Point(25, 75), Point(95, 5)],
        crs=CRS,
    )
    return VectorLayer(frame, name="points", id_field="point_id")


# Local fixture coordinates shifted into Great Britain, for tests that
# transform to another CRS and back.
BNG_OFFSET = (400000, 300000)


@pytest.fixture
def in_gb():
    """Move a local test geometry or layer into the valid area of the British National Grid."""
    def shift(item):
        if isinstance(item, VectorLayer):
            frame = item.frame
            return item.with_frame(frame.set_geometry(frame.geometry.translate(*BNG_OFFSET)))
        return translate(item, *BNG_OFFSET)
    return shift


@pytest.fixture
def gb_index_grid() -> RasterGrid:
    """``index_grid`` placed inside Great Britain."""
    values = np.arange(100, dtype="float64").reshape(10, 10)
    transform = from_origin(BNG_OFFSET[0], BNG_OFFSET[1] + 100, 10, 10)
    return RasterGrid.from_array(values, transform, CRS, band_names=["index"], name="index")
