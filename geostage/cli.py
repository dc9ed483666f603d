import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from geostage.clip import clip, crop_to_extent
from geostage.dataset import RasterGrid, VectorLayer
from geostage.errors import GeoStageError
from geostage.extract import extract_at_points, extract_at_polygons
from geostage.io import fetch as fetch_source
from geostage.io import list_layers, read_grid, read_layer, write_grid, write_layer
from geostage.raster.terrain import TERRAIN_VARIABLES
from geostage.raster.terrain import terrain as terrain_stack
from geostage.sampling import SamplingConfig, SamplingEngine
from geostage.utils import setup_logging

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="geostage",
    help="Stage spatial data: load, align, clip, derive, sample and extract.",
    add_completion=False,
)

RASTER_SUFFIXES = {".tif", ".tiff", ".vrt", ".img", ".nc", ".asc"}


@contextmanager
def _exit_on_error():
    try:
        yield
    except GeoStageError as e:
        logger.error(str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def _is_raster(path: Path) -> bool:
    return path.suffix.lower() in RASTER_SUFFIXES


def _write(dataset, output_path: Path) -> None:
    if isinstance(dataset, RasterGrid):
        write_grid(dataset, output_path)
    else:
        write_layer(dataset, output_path)


@app.command()
def layers(
    source_path: Annotated[Path, typer.Argument(help="Vector source to inspect.")],
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """List the layers in a vector source."""
    setup_logging(verbose=verbose)
    with _exit_on_error():
        for name in list_layers(source_path):
            typer.echo(name)


@app.command()
def crop(
    input_path: Annotated[
        Path,
        typer.Option(help="Raster or vector dataset to clip.", exists=True, readable=True, resolve_path=True),
    ],
    region_path: Annotated[
        Path,
        typer.Option(help="Polygon layer defining the region.", exists=True, readable=True, resolve_path=True),
    ],
    output_path: Annotated[Path, typer.Option(help="Where to save the clipped dataset.", resolve_path=True)],
    region_layer: Annotated[
        Optional[str], typer.Option(help="Layer of the region source, when it has several.")
    ] = None,
    input_layer: Annotated[
        Optional[str], typer.Option(help="Layer of a vector input, when it has several.")
    ] = None,
    buffer: Annotated[float, typer.Option(help="Grow the region by this distance (dataset units).")] = 0.0,
    extent_only: Annotated[
        bool, typer.Option("--extent-only", help="Only crop to the region's bounding box.")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """
    Clip a dataset to a region: crop to the bounding box, then mask to the
    polygons.
    """
    setup_logging(verbose=verbose)
    with _exit_on_error():
        region = read_layer(region_path, layer=region_layer)
        dataset = read_grid(input_path) if _is_raster(input_path) else read_layer(input_path, layer=input_layer)
        if extent_only:
            extent = region.extent.to_crs(dataset.crs) if region.crs != dataset.crs else region.extent
            result = crop_to_extent(dataset, extent, buffer=buffer)
        else:
            result = clip(dataset, region, buffer=buffer)
        _write(result, output_path)
        typer.echo(f"Saved {result!r} to {output_path}")


@app.command()
def terrain(
    dem_path: Annotated[
        Path, typer.Option(help="Elevation grid.", exists=True, readable=True, resolve_path=True)
    ],
    output_path: Annotated[Path, typer.Option(help="Where to save the derivative stack.", resolve_path=True)],
    variables: Annotated[
        Optional[List[str]],
        typer.Option("--variable", help=f"Derivative to compute (repeatable): {', '.join(TERRAIN_VARIABLES)}."),
    ] = None,
    cog: Annotated[bool, typer.Option("--cog", help="Write a Cloud Optimized GeoTIFF.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """Compute terrain derivatives from a DEM and save them as one stack."""
    setup_logging(verbose=verbose)
    with _exit_on_error():
        dem = read_grid(dem_path, band=0)
        if variables:
            stack = terrain_stack(dem, variables=variables)
        else:
            stack = terrain_stack(dem)
        write_grid(stack, output_path, cog=cog)
        typer.echo(f"Saved {', '.join(stack.band_names)} to {output_path}")


@app.command()
def sample(
    region_path: Annotated[
        Path, typer.Option(help="Polygon layer to sample.", exists=True, readable=True, resolve_path=True)
    ],
    output_path: Annotated[Path, typer.Option(help="Where to save the points.", resolve_path=True)],
    region_layer: Annotated[Optional[str], typer.Option(help="Layer of the region source.")] = None,
    id_field: Annotated[Optional[str], typer.Option(help="Attribute identifying each polygon (stratum).")] = None,
    mode: Annotated[str, typer.Option(help="'random' or 'grid'.")] = "random",
    count: Annotated[Optional[int], typer.Option(help="Points per stratum.")] = None,
    spacing: Annotated[Optional[float], typer.Option(help="Grid spacing (grid mode).")] = None,
    exact: Annotated[bool, typer.Option("--exact/--approximate", help="Guarantee the count.")] = True,
    stratify: Annotated[bool, typer.Option("--stratify", help="Sample each polygon separately.")] = False,
    seed: Annotated[Optional[int], typer.Option(help="Random seed.")] = None,
    tessellation: Annotated[str, typer.Option(help="'square' or 'hexagonal' (grid mode).")] = "square",
    anchor: Annotated[str, typer.Option(help="'center' or 'corner' (grid mode).")] = "center",
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """Generate grid or random sample points within a region."""
    setup_logging(verbose=verbose)
    try:
        config = SamplingConfig(
            mode=mode,
            count=count,
            spacing=spacing,
            exact=exact,
            stratify_by_feature=stratify,
            seed=seed,
            tessellation=tessellation,
            anchor=anchor,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))
    with _exit_on_error():
        region = read_layer(region_path, layer=region_layer, id_field=id_field)
        samples = SamplingEngine(config).sample(region)
        write_layer(samples.to_layer(), output_path)
        typer.echo(f"Saved {len(samples)} points to {output_path}")


@app.command()
def extract(
    grid_path: Annotated[
        Path, typer.Option(help="Grid to read values from.", exists=True, readable=True, resolve_path=True)
    ],
    features_path: Annotated[
        Path,
        typer.Option(help="Point or polygon layer.", exists=True, readable=True, resolve_path=True),
    ],
    output_path: Annotated[Path, typer.Option(help="CSV file for the extracted values.", resolve_path=True)],
    features_layer: Annotated[Optional[str], typer.Option(help="Layer of the features source.")] = None,
    id_field: Annotated[Optional[str], typer.Option(help="Attribute identifying each feature.")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """
    Extract grid values at points (one row per point) or under polygons (one
    row per polygon and cell).
    """
    setup_logging(verbose=verbose)
    with _exit_on_error():
        grid = read_grid(grid_path)
        features: VectorLayer = read_layer(features_path, layer=features_layer, id_field=id_field)
        is_points = set(features.geom_types) == {"Point"}
        if is_points:
            table = extract_at_points(grid, features)
        else:
            table = extract_at_polygons(grid, features)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        table.to_csv(output_path, index=is_points)
        typer.echo(f"Saved {len(table)} rows to {output_path}")


@app.command()
def fetch(
    url: Annotated[str, typer.Argument(help="URL of the source to download.")],
    destination: Annotated[Path, typer.Argument(help="Local file to download to.")],
    overwrite: Annotated[bool, typer.Option("--overwrite", help="Download even if the file exists.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging.")] = False,
) -> None:
    """Download a source once; an existing file is kept."""
    setup_logging(verbose=verbose)
    with _exit_on_error():
        path = fetch_source(url, destination, overwrite=overwrite)
        typer.echo(str(path))


if __name__ == "__main__":
    app()
