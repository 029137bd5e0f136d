"""
Functions for loading configuration, observations, boundaries and rasters, and
for writing interpolated grids to netCDF files.
"""

import logging
import os
from typing import Any
import geopandas as gpd
import polars as pl
import rioxarray
import xarray as xr
import yaml


def load_config(path: str) -> dict:
    """Load a yaml configuration file into a dictionary"""
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Config file: {path} not found")
    with open(path, "r") as io:
        config: dict = yaml.safe_load(io)
    return config or {}


def get_recurse(
    config: dict,
    *keys,
    default: Any = None,
) -> Any:
    """
    Get a value from a nested dictionary, returning a default value if any of
    the keys are not found.

    Parameters
    ----------
    config : dict
        The (nested) dictionary, typically a loaded configuration.
    *keys
        The sequence of keys to follow through the nested dictionary.
    default : Any
        Value to return if the key sequence cannot be followed.

    Examples
    --------
    >>> get_recurse({"a": {"b": 2}}, "a", "b")
    2
    >>> get_recurse({"a": {"b": 2}}, "a", "c", default=0)
    0
    """
    value: Any = config
    for key in keys:
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return value


def read_observations(
    path: str,
    columns: list[str] | None = None,
    rename: dict[str, str] | None = None,
) -> pl.DataFrame:
    """
    Read a CSV file of station observations into a polars.DataFrame.

    Parameters
    ----------
    path : str
        Path to the CSV file.
    columns : list[str] | None
        Optionally only read a subset of columns.
    rename : dict[str, str] | None
        Optionally rename columns after reading, for example to map the
        column names of a file to "lon", "lat".

    Returns
    -------
    df : polars.DataFrame
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Observation file: {path} not found")
    df = pl.read_csv(path, columns=columns)
    if rename:
        df = df.rename(rename)
    logging.info(f"Read {df.height} observations from {path}")
    return df


def write_observations(df: pl.DataFrame, path: str) -> None:
    """Write observations to a CSV file, creating the directory if required"""
    dirname = os.path.dirname(path)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    df.write_csv(path)
    logging.info(f"Wrote {df.height} observations to {path}")
    return None


def read_boundary(
    path: str,
    crs: str | None = None,
) -> gpd.GeoDataFrame:
    """
    Read a region boundary from a GeoJSON (or any vector format supported by
    geopandas). All features are dissolved into a single (multi-)polygon.

    Parameters
    ----------
    path : str
        Path to the vector file.
    crs : str | None
        Optionally re-project the boundary to this coordinate reference
        system, for example "EPSG:25831".

    Returns
    -------
    boundary : geopandas.GeoDataFrame
        A GeoDataFrame with a single row.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Boundary file: {path} not found")
    boundary = gpd.read_file(path)
    if boundary.crs is None:
        raise ValueError(f"Boundary file: {path} has no CRS")
    boundary = boundary[["geometry"]].dissolve()
    if crs is not None:
        boundary = boundary.to_crs(crs)
    return boundary


def read_raster(
    path: str,
    crs: str | None = None,
) -> xr.DataArray:
    """
    Read a single band raster (for example a digital elevation model) into an
    xarray.DataArray with "y" and "x" coordinates. No-data values are masked
    as NaN.

    Parameters
    ----------
    path : str
        Path to the raster file.
    crs : str | None
        Optionally re-project the raster to this coordinate reference system.

    Returns
    -------
    raster : xarray.DataArray
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Raster file: {path} not found")
    raster = rioxarray.open_rasterio(path, masked=True)
    if "band" in raster.dims:
        if raster.sizes["band"] != 1:
            raise ValueError(f"Raster file: {path} has more than one band")
        raster = raster.squeeze("band", drop=True)
    if crs is not None:
        raster = raster.rio.reproject(crs)
    return raster


def save_grid(
    ds: xr.Dataset | xr.DataArray,
    path: str,
) -> None:
    """Write an interpolated grid to a netCDF file"""
    dirname = os.path.dirname(path)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    if isinstance(ds, xr.DataArray):
        ds = ds.to_dataset(name=ds.name or "pred")
    ds.to_netcdf(path, engine="netcdf4")
    logging.info(f"Wrote grid to {path}")
    return None


def load_dataset(
    path,
    **kwargs,
) -> xr.Dataset:
    """
    Load an xarray.Dataset from a netCDF file. Can input a filename or a
    string to format with keyword arguments.

    Parameters
    ----------
    path : str
        Full filename (including path), or filename with replacements using
        str.format with named replacements. For example:
            /path/to/idw_precipitation_{year}.nc
    **kwargs
        Keywords arguments matching the replacements in the input path.

    Returns
    -------
    arr : xarray.Dataset
        The netcdf dataset as an xarray.Dataset.
    """
    if os.path.isfile(path):
        filename = path
    elif kwargs:
        if not os.path.isdir(os.path.dirname(path)):
            raise FileNotFoundError(f"Path: {path} not found")
        filename = path.format(**kwargs)
        if not os.path.isfile(filename):
            raise FileNotFoundError(f"File: {filename} not found")
    else:
        raise FileNotFoundError("Cannot determine filename")

    return xr.open_dataset(filename, engine="netcdf4")


def load_array(
    path: str,
    var: str = "pred",
    **kwargs,
) -> xr.DataArray:
    """
    Load an xarray.DataArray from a netCDF file. Can input a filename or a
    string to format with keyword arguments.

    Parameters
    ----------
    path : str
        Full filename (including path), or filename with replacements using
        str.format with named replacements.
    var : str
        Name of the variable to select from the input file
    **kwargs
        Keywords arguments matching the replacements in the input path.

    Returns
    -------
    arr : xarray.DataArray
        An array containing the values of the variable specified by var
    """
    return load_dataset(path, **kwargs)[var]
