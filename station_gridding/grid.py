"""
Grid
----

Functions for creating prediction grids covering a region, masking grid cells
outside the region, and moving between gridded and tabular (point) forms.

Grids are xarray.DataArray objects with two coordinates, by default "y" and "x"
(northing and easting in a projected coordinate reference system), with values
ordered row-major ("C" ordering) when flattened.
"""

from collections.abc import Iterable
from typing import Any
import geopandas as gpd
import numpy as np
import polars as pl
import shapely
import xarray as xr

from .utils import check_cols, find_nearest


def map_to_grid(
    obs: pl.DataFrame,
    grid: xr.DataArray,
    obs_coords: list[str] = ["y", "x"],
    grid_coords: list[str] = ["y", "x"],
    sort: bool = False,
    add_grid_pts: bool = True,
    grid_prefix: str = "grid_",
) -> pl.DataFrame:
    """
    Map each observation to the nearest grid cell.

    Parameters
    ----------
    obs : polars.DataFrame
        Observations, with positions in the reference system of the grid.
    grid : xarray.DataArray
        The grid.
    obs_coords : list[str]
        Names of the observation position columns, in the order of
        `grid_coords`.
    grid_coords : list[str]
        Names of the grid coordinates, in the order of the grid dimensions.
    sort : bool
        Sort the observations by the grid index.
    add_grid_pts : bool
        Add the position of the grid cell centre to the observations.
    grid_prefix : str
        Prefix to use for the new grid columns.

    Returns
    -------
    obs : polars.DataFrame
        With an additional `grid_idx` column, the 1d index of the grid cell
        (assuming "C" style ravelling), and optionally `grid_*` positions.
    """
    check_cols(obs, obs_coords)
    grid_idx: list[list[int]] = []
    obs_to_grid_pos: list[np.ndarray] = []
    for grid_coord, obs_coord in zip(grid_coords, obs_coords):
        _grid_idx, _grid_pos = find_nearest(
            grid.coords[grid_coord].values, obs[obs_coord]
        )
        grid_idx.append(_grid_idx)
        obs_to_grid_pos.append(_grid_pos)

    flattened_idx = np.ravel_multi_index(grid_idx, grid.shape, order="C")
    obs = obs.with_columns(pl.Series(grid_prefix + "idx", flattened_idx))
    if add_grid_pts:
        obs = obs.with_columns(
            [
                pl.Series(grid_prefix + obs_coord, grid_pos)
                for grid_pos, obs_coord in zip(obs_to_grid_pos, obs_coords)
            ]
        )
    if sort:
        obs = obs.sort(grid_prefix + "idx")
    return obs


def grid_from_resolution(
    resolution: float | list[float],
    bounds: list[tuple[float, float]],
    coord_names: list[str],
) -> xr.DataArray:
    """
    Generate a grid from a resolution value, or a list of resolutions for
    given boundaries and coordinate names.

    Note that all list inputs must have the same length, the ordering of values
    in the lists is assumed align.

    Parameters
    ----------
    resolution : float | list[float]
        Resolution of the grid. Can be a single resolution value that will be
        applied to all coordinates, or a list of values mapping a resolution
        value to each of the coordinates.
    bounds : list[tuple[float, float]]
        A list of bounds of the form `(lower_bound, upper_bound)` indicating
        the bounding box of the returned grid
    coord_names : list[str]
        List of coordinate names

    Returns
    -------
    grid : xarray.DataArray:
        The grid defined by the resolution and bounding box.
    """
    if not isinstance(resolution, Iterable):
        resolution = [resolution for _ in range(len(bounds))]
    if len(resolution) != len(coord_names) or len(bounds) != len(coord_names):
        raise ValueError("Input lists must have the same length")
    coords = {
        c_name: np.arange(lbound, ubound, res)
        for c_name, (lbound, ubound), res in zip(
            coord_names, bounds, resolution
        )
    }
    grid = xr.DataArray(coords=xr.Coordinates(coords))
    return grid


def grid_from_boundary(
    boundary: gpd.GeoDataFrame,
    resolution: float,
    coord_names: list[str] = ["y", "x"],
) -> xr.DataArray:
    """
    Generate a grid of cell centres covering the bounding box of a region
    boundary.

    Parameters
    ----------
    boundary : geopandas.GeoDataFrame
        The region boundary, in a projected coordinate reference system.
    resolution : float
        Size of the (square) grid cells in the units of the reference system.
    coord_names : list[str]
        Names of the northing and easting coordinates (in that order).

    Returns
    -------
    grid : xarray.DataArray
    """
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    minx, miny, maxx, maxy = boundary.total_bounds
    half = resolution / 2
    grid = grid_from_resolution(
        resolution,
        [(miny + half, maxy), (minx + half, maxx)],
        coord_names,
    )
    if boundary.crs is not None:
        grid.attrs["crs"] = boundary.crs.to_string()
    return grid


def mask_grid(
    grid: xr.DataArray,
    boundary: gpd.GeoDataFrame,
    coord_names: list[str] = ["y", "x"],
) -> xr.DataArray:
    """
    Mask grid cells whose centres are outside a region boundary.

    Parameters
    ----------
    grid : xarray.DataArray
        The grid, in the reference system of the boundary.
    boundary : geopandas.GeoDataFrame
        The region boundary.
    coord_names : list[str]
        Names of the northing and easting coordinates of the grid.

    Returns
    -------
    mask : xarray.DataArray
        Boolean array, True for grid cells outside the region (masked).
    """
    y_name, x_name = coord_names
    region = boundary.geometry.union_all()
    yy, xx = np.meshgrid(
        grid.coords[y_name].values, grid.coords[x_name].values, indexing="ij"
    )
    inside = shapely.contains_xy(region, xx, yy)
    return xr.DataArray(
        ~inside,
        coords={y_name: grid.coords[y_name], x_name: grid.coords[x_name]},
        dims=[y_name, x_name],
        name="mask",
    )


def grid_points(
    grid: xr.DataArray,
    mask: xr.DataArray | None = None,
    coord_names: list[str] = ["y", "x"],
    idx_name: str = "grid_idx",
) -> pl.DataFrame:
    """
    Get the positions of the cell centres of a grid as a DataFrame, with the
    1d index of each cell (assuming "C" style ravelling).

    Parameters
    ----------
    grid : xarray.DataArray
        The grid.
    mask : xarray.DataArray | None
        Optional boolean mask, cells with value True are excluded.
    coord_names : list[str]
        Names of the grid coordinates, in the order of the grid dimensions.
    idx_name : str
        Name of the index column.

    Returns
    -------
    points : polars.DataFrame
        Containing the index column and one column per coordinate.
    """
    mesh = np.meshgrid(
        *[grid.coords[c].values for c in coord_names], indexing="ij"
    )
    points = pl.DataFrame(
        {idx_name: np.arange(mesh[0].size)}
        | {c: m.ravel(order="C") for c, m in zip(coord_names, mesh)}
    )
    if mask is not None:
        keep = ~mask.transpose(*coord_names).values.ravel(order="C")
        points = points.filter(pl.Series(keep))
    return points


def assign_to_grid(
    values: np.ndarray,
    grid_idx: np.ndarray,
    grid: xr.DataArray,
    fill_value: Any = np.nan,
    name: str | None = None,
) -> xr.DataArray:
    """
    Assign a vector of values to a grid, using a list of grid index values.
    Grid cells without a value are set to fill_value (NaN by default).

    Parameters
    ----------
    values : numpy.ndarray
        The values to map onto the output grid.
    grid_idx : numpy.ndarray
        The 1d index of the grid (assuming "C" style ravelling) for each value.
    grid : xarray.DataArray
        The grid used to define the output grid.
    fill_value : Any
        Value of grid cells not in grid_idx.
    name : str | None
        Name of the output array.

    Returns
    -------
    out_grid : xarray.DataArray
        A new grid containing the values mapped onto the grid.
    """
    out_grid = xr.DataArray(
        data=np.full(grid.shape, fill_value, dtype="float"),
        coords=grid.coords,
        dims=grid.dims,
        name=name,
        attrs=grid.attrs,
    )
    coords_to_assign = np.unravel_index(
        np.asarray(grid_idx, dtype=int), out_grid.shape, "C"
    )
    out_grid.values[coords_to_assign] = values
    return out_grid


def sample_raster_to_grid(
    raster: xr.DataArray,
    grid: xr.DataArray,
    coord_names: list[str] = ["y", "x"],
    raster_coords: list[str] = ["y", "x"],
    name: str | None = None,
) -> xr.DataArray:
    """
    Sample a raster (for example a digital elevation model) onto a grid using
    the nearest raster cell. Grid cells outside the raster are NaN.

    Parameters
    ----------
    raster : xarray.DataArray
        The raster, in the reference system of the grid.
    grid : xarray.DataArray
        The output grid.
    coord_names : list[str]
        Names of the northing and easting coordinates of the grid.
    raster_coords : list[str]
        Names of the northing and easting coordinates of the raster.
    name : str | None
        Name of the output array, the name of the raster by default.

    Returns
    -------
    sampled : xarray.DataArray
        Raster values on the grid.
    """
    rename = {r: c for r, c in zip(raster_coords, coord_names) if r != c}
    raster = raster.rename(rename) if rename else raster
    raster = raster.sortby(coord_names)
    sampled = raster.interp(
        {c: grid.coords[c].values for c in coord_names},
        method="nearest",
    ).transpose(*coord_names)
    # Drop any extra scalar coordinates, e.g. spatial_ref from rioxarray
    sampled = sampled.reset_coords(drop=True)
    sampled.name = name or raster.name
    return sampled
