"""
Observations
------------

Functions for preparing station observations for interpolation: transforming
positions to a common (projected) coordinate reference system, clipping to a
region, removing missing or duplicated values, and sampling covariates from
rasters.
"""

import logging
import geopandas as gpd
import numpy as np
import polars as pl
import shapely
import xarray as xr
from warnings import warn

from .constants import WGS84
from .utils import check_cols, find_nearest


def to_geodataframe(
    df: pl.DataFrame,
    x_col: str = "lon",
    y_col: str = "lat",
    crs: str = WGS84,
) -> gpd.GeoDataFrame:
    """
    Convert a polars DataFrame of observations to a geopandas GeoDataFrame of
    points.

    Parameters
    ----------
    df : polars.DataFrame
        Observations, containing the position columns.
    x_col : str
        Name of the column containing the x (or longitude) position.
    y_col : str
        Name of the column containing the y (or latitude) position.
    crs : str
        Coordinate reference system of the positions.

    Returns
    -------
    gdf : geopandas.GeoDataFrame
    """
    check_cols(df, [x_col, y_col])
    pdf = df.to_pandas()
    return gpd.GeoDataFrame(
        pdf,
        geometry=gpd.points_from_xy(pdf[x_col], pdf[y_col]),
        crs=crs,
    )


def project_observations(
    df: pl.DataFrame,
    crs_to: str,
    crs_from: str = WGS84,
    lon_col: str = "lon",
    lat_col: str = "lat",
    x_col: str = "x",
    y_col: str = "y",
) -> pl.DataFrame:
    """
    Add projected coordinates to a DataFrame of observations.

    All layers of an analysis (observations, boundary, raster, grid) must share
    a coordinate reference system before any distance is computed.

    Parameters
    ----------
    df : polars.DataFrame
        Observations with positions in the `crs_from` reference system.
    crs_to : str
        Target (projected) coordinate reference system, e.g. "EPSG:25831".
    crs_from : str
        Reference system of the input positions, WGS84 by default.
    lon_col, lat_col : str
        Names of the input position columns.
    x_col, y_col : str
        Names of the output projected coordinate columns.

    Returns
    -------
    df : polars.DataFrame
        The input DataFrame with additional (or replaced) `x_col` and `y_col`
        columns.
    """
    gdf = to_geodataframe(df, lon_col, lat_col, crs_from).to_crs(crs_to)
    return df.with_columns(
        pl.Series(x_col, gdf.geometry.x.to_numpy()),
        pl.Series(y_col, gdf.geometry.y.to_numpy()),
    )


def clip_to_boundary(
    df: pl.DataFrame,
    boundary: gpd.GeoDataFrame,
    x_col: str = "x",
    y_col: str = "y",
) -> pl.DataFrame:
    """
    Keep only the observations positioned within a region boundary. The
    observation positions must be in the reference system of the boundary.

    Parameters
    ----------
    df : polars.DataFrame
        Observations.
    boundary : geopandas.GeoDataFrame
        The region boundary.
    x_col, y_col : str
        Names of the position columns.

    Returns
    -------
    df : polars.DataFrame
        Observations within the boundary.
    """
    check_cols(df, [x_col, y_col])
    region = boundary.geometry.union_all()
    inside = shapely.contains_xy(
        region,
        df.get_column(x_col).to_numpy(),
        df.get_column(y_col).to_numpy(),
    )
    n_out = int(np.sum(~inside))
    if n_out:
        logging.info(f"Removing {n_out} observations outside the boundary")
    return df.filter(pl.Series(inside))


def drop_missing(
    df: pl.DataFrame,
    value_cols: str | list[str],
) -> pl.DataFrame:
    """Remove observations with null or NaN values in any of value_cols"""
    value_cols = [value_cols] if isinstance(value_cols, str) else value_cols
    check_cols(df, value_cols)
    n = df.height
    df = df.drop_nulls(value_cols)
    float_cols = [c for c in value_cols if df.schema[c].is_float()]
    if float_cols:
        df = df.filter(
            pl.all_horizontal([pl.col(c).is_not_nan() for c in float_cols])
        )
    if df.height < n:
        logging.info(f"Dropped {n - df.height} observations with no value")
    return df


def average_duplicates(
    df: pl.DataFrame,
    coord_cols: list[str] = ["x", "y"],
    value_cols: str | list[str] = "value",
) -> pl.DataFrame:
    """
    Average the values of observations that share a position.

    Co-located observations make the Kriging system singular, they are merged
    into a single observation with the mean value. The first value of any other
    column is kept.

    Parameters
    ----------
    df : polars.DataFrame
        Observations.
    coord_cols : list[str]
        Names of the position columns.
    value_cols : str | list[str]
        Names of the columns to average.

    Returns
    -------
    df : polars.DataFrame
        Observations with unique positions, in the order of first appearance.
    """
    value_cols = [value_cols] if isinstance(value_cols, str) else value_cols
    check_cols(df, coord_cols + value_cols)
    other_cols = [c for c in df.columns if c not in coord_cols + value_cols]
    n = df.height
    df = df.group_by(coord_cols, maintain_order=True).agg(
        [pl.col(c).mean() for c in value_cols]
        + [pl.col(c).first() for c in other_cols]
    )
    if df.height < n:
        warn(f"Averaged {n - df.height} co-located observations")
    return df.select(coord_cols + value_cols + other_cols)


def _outside(coord: np.ndarray, pos: np.ndarray) -> np.ndarray:
    half = np.abs(np.diff(coord)).min() / 2 if len(coord) > 1 else 0.0
    return (pos < coord.min() - half) | (pos > coord.max() + half)


def sample_raster(
    df: pl.DataFrame,
    raster: xr.DataArray,
    name: str,
    x_col: str = "x",
    y_col: str = "y",
    raster_coords: list[str] = ["x", "y"],
) -> pl.DataFrame:
    """
    Sample the value of a raster at each observation position, using the
    nearest raster cell. For example, to extract elevation from a digital
    elevation model for use as a Kriging covariate. Positions more than half
    a cell outside the raster are missing (NaN), with a warning.

    Parameters
    ----------
    df : polars.DataFrame
        Observations, positions must be in the reference system of the raster.
    raster : xarray.DataArray
        The raster, with coordinates named by `raster_coords`.
    name : str
        Name of the new column.
    x_col, y_col : str
        Names of the observation position columns.
    raster_coords : list[str]
        Names of the x and y coordinates of the raster.

    Returns
    -------
    df : polars.DataFrame
        With the additional `name` column.
    """
    check_cols(df, [x_col, y_col])
    x_name, y_name = raster_coords
    x_idx, _ = find_nearest(raster.coords[x_name].values, df[x_col])
    y_idx, _ = find_nearest(raster.coords[y_name].values, df[y_col])
    values = raster.transpose(y_name, x_name).values[y_idx, x_idx]
    values = values.astype(float)
    # Positions more than half a cell beyond the raster edge are missing
    outside = _outside(raster.coords[x_name].values, df[x_col].to_numpy())
    outside |= _outside(raster.coords[y_name].values, df[y_col].to_numpy())
    values[outside] = np.nan
    n_nan = int(np.isnan(values).sum())
    if n_nan:
        warn(f"{n_nan} observations sampled missing raster values")
    return df.with_columns(pl.Series(name, values))
