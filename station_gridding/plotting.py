"""
Plotting
--------

Maps of stations and interpolated grids, variogram plots and scatter plots.

Maps are drawn on cartopy GeoAxes in the (projected) reference system of the
analysis, so data can be plotted directly in projected coordinates.
"""

import logging
import math
import os
from typing import Any
import cartopy.crs as ccrs
import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import xarray as xr
from matplotlib.axes import Axes
from matplotlib.figure import Figure

from .utils import check_cols
from .variogram import Variogram


def projection(crs: str) -> ccrs.Projection:
    """
    Get the cartopy projection for a coordinate reference system string of
    the form "EPSG:<code>". Geographic WGS84 maps to PlateCarree.
    """
    authority, _, code = crs.partition(":")
    if authority.upper() != "EPSG" or not code.isdigit():
        raise ValueError(f"Unsupported CRS: {crs}, expected 'EPSG:<code>'")
    if int(code) == 4326:
        return ccrs.PlateCarree()
    return ccrs.epsg(int(code))


def map_axes(
    crs: str | None = None,
    figsize: tuple[float, float] = (8, 7),
    nrows: int = 1,
    ncols: int = 1,
) -> tuple[Figure, Any]:
    """
    Create a figure with map axes.

    Parameters
    ----------
    crs : str | None
        Reference system of the data, for example "EPSG:25831". Plain
        matplotlib axes are returned if not set.
    figsize : tuple[float, float]
        Size of the figure.
    nrows, ncols : int
        Number of rows and columns of axes.

    Returns
    -------
    fig : matplotlib.figure.Figure
    ax : GeoAxes | Axes | numpy.ndarray
        A single axis, or an array of axes if nrows * ncols > 1.
    """
    subplot_kw = None if crs is None else {"projection": projection(crs)}
    fig, ax = plt.subplots(
        nrows, ncols, figsize=figsize, subplot_kw=subplot_kw, squeeze=True
    )
    return fig, ax


def _add_boundary(ax: Axes, boundary: gpd.GeoDataFrame | None) -> None:
    if boundary is not None:
        boundary.boundary.plot(ax=ax, color="black", linewidth=0.8)
    return None


def _finish_map(ax: Axes, title: str | None) -> None:
    if hasattr(ax, "gridlines"):
        gl = ax.gridlines(
            crs=ccrs.PlateCarree(), draw_labels=True, linewidth=0.3
        )
        gl.top_labels = False
        gl.right_labels = False
    else:
        ax.set_aspect("equal")
    if title is not None:
        ax.set_title(title, pad=20)
    return None


def plot_stations(
    ax: Axes,
    obs: pl.DataFrame,
    value_col: str | None = None,
    boundary: gpd.GeoDataFrame | None = None,
    x_col: str = "x",
    y_col: str = "y",
    add_colorbar: bool = True,
    title: str | None = None,
    skwargs: dict[str, Any] = {},
    ckwargs: dict[str, Any] = {},
) -> None:
    """
    Plot station positions, optionally coloured by a value.

    Parameters
    ----------
    ax : GeoAxes | Axes
        The axis on which to add the plot.
    obs : polars.DataFrame
        Observations, with positions in the reference system of the axis.
    value_col : str | None
        Optionally colour the stations by this column.
    boundary : geopandas.GeoDataFrame | None
        Optionally draw the region boundary.
    x_col, y_col : str
        Names of the position columns.
    add_colorbar : bool
        Add a colorbar if the stations are coloured by a value.
    title : str | None
        Title of the plot
    skwargs : dict[str, Any]
        Keyword arguments to pass to ax.scatter.
    ckwargs : dict[str, Any]
        Keyword arguments to pass to fig.colorbar.
    """
    cols = [x_col, y_col] + ([value_col] if value_col else [])
    check_cols(obs, cols)
    skwargs = {"s": 20, "edgecolor": "black", "linewidth": 0.3} | skwargs
    if value_col is not None:
        skwargs["c"] = obs.get_column(value_col).to_numpy()
    _add_boundary(ax, boundary)
    pcm = ax.scatter(obs[x_col].to_numpy(), obs[y_col].to_numpy(), **skwargs)
    if value_col is not None and add_colorbar:
        ax.figure.colorbar(pcm, ax=ax, **({"label": value_col} | ckwargs))
    _finish_map(ax, title)
    return None


def plot_grid(
    ax: Axes,
    da: xr.DataArray,
    boundary: gpd.GeoDataFrame | None = None,
    obs: pl.DataFrame | None = None,
    coord_names: list[str] = ["y", "x"],
    obs_cols: list[str] = ["x", "y"],
    add_colorbar: bool = True,
    title: str | None = None,
    pkwargs: dict[str, Any] = {},
    ckwargs: dict[str, Any] = {},
) -> Any:
    """
    Plot an interpolated grid with pcolormesh.

    Parameters
    ----------
    ax : GeoAxes | Axes
        The axis on which to add the plot.
    da : xarray.DataArray
        The grid, in the reference system of the axis.
    boundary : geopandas.GeoDataFrame | None
        Optionally draw the region boundary.
    obs : polars.DataFrame | None
        Optionally overlay the station positions.
    coord_names : list[str]
        Names of the northing and easting coordinates of the grid.
    obs_cols : list[str]
        Names of the easting and northing columns of the observations.
    add_colorbar : bool
        Add a colorbar.
    title : str | None
        Title of the plot
    pkwargs : dict[str, Any]
        Keyword arguments to pass to ax.pcolormesh, for example cmap, vmin,
        vmax.
    ckwargs : dict[str, Any]
        Keyword arguments to pass to fig.colorbar.

    Returns
    -------
    pcm : matplotlib.collections.QuadMesh
    """
    y_name, x_name = coord_names
    da = da.transpose(y_name, x_name)
    pcm = ax.pcolormesh(
        da.coords[x_name].values,
        da.coords[y_name].values,
        da.values,
        **({"shading": "auto"} | pkwargs),
    )
    _add_boundary(ax, boundary)
    if obs is not None:
        ax.scatter(
            obs[obs_cols[0]].to_numpy(),
            obs[obs_cols[1]].to_numpy(),
            s=4,
            color="black",
        )
    if add_colorbar:
        ax.figure.colorbar(pcm, ax=ax, **({"label": da.name} | ckwargs))
    _finish_map(ax, title)
    return pcm


def plot_power_sweep(
    sweep: xr.DataArray,
    crs: str | None = None,
    boundary: gpd.GeoDataFrame | None = None,
    obs: pl.DataFrame | None = None,
    ncols: int = 3,
    coord_names: list[str] = ["y", "x"],
    cmap: str = "viridis",
) -> Figure:
    """
    Plot one map per inverse distance power, on a shared colour scale.

    Parameters
    ----------
    sweep : xarray.DataArray
        Output of `station_gridding.idw.idw_power_sweep`.
    crs : str | None
        Reference system of the grid.
    boundary, obs
        Optional boundary and stations to overlay.
    ncols : int
        Number of columns of maps.
    coord_names : list[str]
        Names of the northing and easting coordinates.
    cmap : str
        Colour map.

    Returns
    -------
    fig : matplotlib.figure.Figure
    """
    powers = sweep.coords["power"].values
    nrows = math.ceil(len(powers) / ncols)
    ncols = min(ncols, len(powers))
    fig, axes = map_axes(
        crs, figsize=(4.5 * ncols, 4.5 * nrows), nrows=nrows, ncols=ncols
    )
    axes = np.atleast_1d(axes).ravel()
    vmin = float(sweep.min(skipna=True))
    vmax = float(sweep.max(skipna=True))
    for ax, power in zip(axes, powers):
        plot_grid(
            ax,
            sweep.sel(power=power),
            boundary=boundary,
            obs=obs,
            coord_names=coord_names,
            add_colorbar=False,
            title=f"power = {power:g}",
            pkwargs={"cmap": cmap, "vmin": vmin, "vmax": vmax},
        )
    for ax in axes[len(powers) :]:
        ax.set_visible(False)
    mappable = plt.cm.ScalarMappable(
        norm=plt.Normalize(vmin=vmin, vmax=vmax), cmap=cmap
    )
    fig.colorbar(mappable, ax=list(axes), label=sweep.name, shrink=0.8)
    return fig


def plot_variogram(
    ax: Axes,
    empirical: pl.DataFrame,
    model: Variogram | None = None,
    annotate: bool = True,
    title: str | None = None,
) -> None:
    """
    Plot an empirical variogram, with an optional fitted model.

    Parameters
    ----------
    ax : matplotlib.axes.Axes
        The axis on which to add the plot.
    empirical : polars.DataFrame
        Output of `station_gridding.variogram.empirical_variogram`. One series
        is plotted per direction.
    model : Variogram | None
        Optionally overlay a model curve.
    annotate : bool
        Label each point with the number of pairs.
    title : str | None
        Title of the plot
    """
    check_cols(empirical, ["np", "dist", "gamma", "dir_hor"])
    directions = empirical.get_column("dir_hor").unique().sort().to_list()
    for direction in directions:
        sub = empirical.filter(pl.col("dir_hor") == direction).sort("dist")
        label = f"{direction:g}°" if len(directions) > 1 else "sample"
        ax.plot(
            sub["dist"].to_numpy(), sub["gamma"].to_numpy(), "o", label=label
        )
        if annotate:
            for row in sub.iter_rows(named=True):
                ax.annotate(
                    str(row["np"]),
                    (row["dist"], row["gamma"]),
                    textcoords="offset points",
                    xytext=(0, 5),
                    fontsize=7,
                    ha="center",
                )
    if model is not None:
        max_dist = float(empirical.get_column("dist").max())  # type: ignore
        h = np.linspace(0, max_dist * 1.05, 200)
        ax.plot(
            h, model.fit(h), "-", color="black", label=type(model).__name__
        )
    ax.set_xlabel("distance")
    ax.set_ylabel("semivariance")
    ax.set_xlim(left=0)
    ax.set_ylim(bottom=0)
    ax.legend()
    if title is not None:
        ax.set_title(title)
    return None


def plot_scatter(
    ax: Axes,
    x: np.ndarray,
    y: np.ndarray,
    one_to_one: bool = False,
    fit_line: bool = False,
    xlabel: str | None = None,
    ylabel: str | None = None,
    title: str | None = None,
) -> tuple[float, float] | None:
    """
    Scatter plot of two variables, for example temperature against elevation
    or observed against predicted values.

    Parameters
    ----------
    ax : matplotlib.axes.Axes
        The axis on which to add the plot.
    x, y : numpy.ndarray
        The values to plot.
    one_to_one : bool
        Add the 1:1 line.
    fit_line : bool
        Add the least squares line.
    xlabel, ylabel, title : str | None
        Axis labels and title.

    Returns
    -------
    coef : tuple[float, float] | None
        The slope and intercept of the least squares line if `fit_line`.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    ax.scatter(x, y, s=12, alpha=0.8)
    coef = None
    if one_to_one:
        lims = [np.nanmin([x, y]), np.nanmax([x, y])]
        ax.plot(lims, lims, "--", color="grey", label="1:1")
    if fit_line:
        ok = np.isfinite(x) & np.isfinite(y)
        slope, intercept = np.polyfit(x[ok], y[ok], 1)
        xs = np.array([x[ok].min(), x[ok].max()])
        ax.plot(
            xs,
            slope * xs + intercept,
            color="red",
            label=f"y = {slope:.4g} x + {intercept:.4g}",
        )
        coef = (float(slope), float(intercept))
    if one_to_one or fit_line:
        ax.legend()
    if xlabel is not None:
        ax.set_xlabel(xlabel)
    if ylabel is not None:
        ax.set_ylabel(ylabel)
    if title is not None:
        ax.set_title(title)
    return coef


def save_figure(
    fig: Figure,
    path: str,
    dpi: int = 150,
) -> None:
    """Save a figure, creating the directory if required, and close it"""
    dirname = os.path.dirname(path)
    if dirname:
        os.makedirs(dirname, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logging.info(f"Saved figure to {path}")
    return None
