"""
Inverse Distance Weighting
--------------------------

Deterministic interpolation where the prediction at a location is the weighted
mean of the observations, with weights proportional to the inverse of the
distance to the observation raised to a power:

    z(s_0) = sum_i w_i z(s_i) / sum_i w_i,    w_i = d(s_0, s_i)^-p

Larger powers give more influence to the nearest observations; a power of 0
gives the unweighted mean of all (neighbouring) observations.
"""

import logging
import numpy as np
import polars as pl
import xarray as xr

from .distances import planar_distance
from .grid import assign_to_grid, grid_points
from .utils import check_cols, coords_array


def idw(
    obs_coords: np.ndarray,
    values: np.ndarray,
    target_coords: np.ndarray,
    power: float = 2.0,
    nmax: int | None = None,
    maxdist: float | None = None,
) -> np.ndarray:
    """
    Inverse distance weighted interpolation.

    Parameters
    ----------
    obs_coords : numpy.ndarray
        Array of shape (n, 2) of observation positions.
    values : numpy.ndarray
        Observed values, length n.
    target_coords : numpy.ndarray
        Array of shape (m, 2) of prediction positions.
    power : float
        The inverse distance power, must be non-negative.
    nmax : int | None
        Optionally only use the `nmax` nearest observations for each
        prediction.
    maxdist : float | None
        Optionally only use observations within `maxdist` of the prediction
        position.

    Returns
    -------
    pred : numpy.ndarray
        Predictions, length m. Predictions at a position coinciding with an
        observation take the observed value. Predictions with no observations
        in the neighbourhood are NaN.
    """
    values = np.asarray(values, dtype=float)
    if values.size == 0:
        raise ValueError("Cannot interpolate without observations")
    if power < 0:
        raise ValueError("power must be non-negative")
    if nmax is not None and nmax < 1:
        raise ValueError("nmax must be at least 1")

    dist = planar_distance(target_coords, obs_coords)
    if len(values) != dist.shape[1]:
        raise ValueError("Length of values must match number of observations")

    if maxdist is not None:
        dist[dist > maxdist] = np.inf
    if nmax is not None and nmax < dist.shape[1]:
        far = np.argpartition(dist, nmax, axis=1)[:, nmax:]
        np.put_along_axis(dist, far, np.inf, axis=1)

    with np.errstate(divide="ignore"):
        weights = np.where(np.isfinite(dist), np.power(dist, -power), 0.0)
    weight_sum = weights.sum(axis=1)
    with np.errstate(invalid="ignore", divide="ignore"):
        pred = (weights @ values) / weight_sum
    pred[weight_sum == 0] = np.nan

    # Exact hits
    exact = dist == 0
    hit = exact.any(axis=1)
    pred[hit] = values[np.argmax(exact[hit], axis=1)]
    return pred


def idw_grid(
    obs: pl.DataFrame,
    grid: xr.DataArray,
    value_col: str,
    power: float = 2.0,
    mask: xr.DataArray | None = None,
    coord_cols: list[str] = ["x", "y"],
    coord_names: list[str] = ["y", "x"],
    nmax: int | None = None,
    maxdist: float | None = None,
) -> xr.DataArray:
    """
    Inverse distance weighted interpolation of observations onto a grid.

    Parameters
    ----------
    obs : polars.DataFrame
        Observations, with position columns `coord_cols` in the reference
        system of the grid.
    grid : xarray.DataArray
        The prediction grid.
    value_col : str
        Name of the column of observed values.
    power : float
        The inverse distance power.
    mask : xarray.DataArray | None
        Optional mask, grid cells with value True are not predicted (NaN).
    coord_cols : list[str]
        Names of the easting and northing columns of the observations.
    coord_names : list[str]
        Names of the northing and easting coordinates of the grid.
    nmax, maxdist
        See `idw`.

    Returns
    -------
    pred : xarray.DataArray
        The interpolated grid, named `value_col`.
    """
    check_cols(obs, [value_col])
    points = grid_points(grid, mask, coord_names)
    pred = idw(
        coords_array(obs, coord_cols),
        obs.get_column(value_col).to_numpy(),
        points.select(coord_names[::-1]).to_numpy(),
        power=power,
        nmax=nmax,
        maxdist=maxdist,
    )
    out = assign_to_grid(pred, points["grid_idx"].to_numpy(), grid)
    out.name = value_col
    out.attrs["power"] = power
    return out


def idw_power_sweep(
    obs: pl.DataFrame,
    grid: xr.DataArray,
    value_col: str,
    powers: list[float],
    mask: xr.DataArray | None = None,
    coord_cols: list[str] = ["x", "y"],
    coord_names: list[str] = ["y", "x"],
    nmax: int | None = None,
    maxdist: float | None = None,
) -> xr.DataArray:
    """
    Inverse distance weighted interpolation for a range of powers.

    Parameters are as for `idw_grid`, with a list of powers.

    Returns
    -------
    sweep : xarray.DataArray
        With an additional leading "power" dimension.
    """
    if not powers:
        raise ValueError("At least one power is required")
    grids = []
    for power in powers:
        logging.info(f"IDW interpolation with power {power}")
        grids.append(
            idw_grid(
                obs,
                grid,
                value_col,
                power=power,
                mask=mask,
                coord_cols=coord_cols,
                coord_names=coord_names,
                nmax=nmax,
                maxdist=maxdist,
            )
        )
    sweep = xr.concat(grids, dim="power").assign_coords(power=list(powers))
    sweep.attrs.pop("power", None)
    sweep.name = value_col
    return sweep
