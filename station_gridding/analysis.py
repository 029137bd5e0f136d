"""
Analysis pipelines
------------------

The two station analyses, each driven by a configuration dictionary (loaded
from yaml by the runner scripts):

1. `precipitation_idw`: yearly precipitation for Germany from NOAA stations,
   interpolated with inverse distance weighting for a range of powers, with
   the power chosen by leave-one-out cross-validation.
2. `temperature_kriging`: temperature for Catalunya, interpolated with
   Ordinary Kriging and with Universal Kriging using elevation as an external
   drift, from fitted variogram models.

Both write figures and a netCDF file of the interpolated grids to the output
directory, and return a dictionary summarising the results.
"""

from dataclasses import asdict
import logging
import os
from typing import Any
import numpy as np
import polars as pl
import xarray as xr

from .constants import ETRS89_LAEA, ETRS89_UTM31N
from .grid import grid_from_boundary, mask_grid, sample_raster_to_grid
from .idw import idw_power_sweep
from .io import (
    get_recurse,
    read_boundary,
    read_observations,
    read_raster,
    save_grid,
    write_observations,
)
from .kriging import krige_grid
from .noaa import NOAAClient, get_token, yearly_precipitation
from .observations import (
    average_duplicates,
    clip_to_boundary,
    drop_missing,
    project_observations,
    sample_raster,
)
from .plotting import (
    map_axes,
    plot_grid,
    plot_power_sweep,
    plot_scatter,
    plot_stations,
    plot_variogram,
    save_figure,
)
from .validation import (
    best_power,
    cross_validate,
    cv_summary,
    idw_power_cv,
    kriging_predictor,
)
from .variogram import (
    Variogram,
    empirical_variogram,
    fit_variogram,
    initial_guess,
    variogram_model,
    weighted_sserr,
)


def _required(config: dict, *keys) -> Any:
    value = get_recurse(config, *keys)
    if value is None:
        raise KeyError(f"Missing required config value: {'.'.join(keys)}")
    return value


def _output_dir(config: dict, default: str) -> str:
    out_dir = get_recurse(config, "output", "directory", default=default)
    os.makedirs(out_dir, exist_ok=True)
    return out_dir


def load_precipitation(config: dict) -> pl.DataFrame:
    """
    Load yearly precipitation observations. Observations are read from the
    cache CSV file if it exists, otherwise they are downloaded from the NOAA
    API and written to the cache.
    """
    cache = get_recurse(config, "data", "cache")
    if cache is not None and os.path.isfile(cache):
        logging.info(f"Loading cached observations from {cache}")
        return read_observations(cache)

    year = get_recurse(config, "noaa", "year")
    if year is None:
        raise KeyError("noaa.year is required to download observations")
    client = NOAAClient(
        get_token(get_recurse(config, "noaa", "token")),
        request_interval=get_recurse(
            config, "noaa", "request_interval", default=0.2
        ),
    )
    df = yearly_precipitation(
        client,
        int(year),
        location_id=get_recurse(
            config, "noaa", "location_id", default="FIPS:GM"
        ),
    )
    if cache is not None:
        write_observations(df, cache)
    return df


def precipitation_idw(config: dict) -> dict:
    """
    Inverse distance weighting of yearly precipitation totals.

    Parameters
    ----------
    config : dict
        Configuration, with sections "data" (cache, boundary), "noaa" (year,
        token, location_id), "crs", "grid" (resolution), "idw" (powers, nmax,
        maxdist), "cv" (nfold, seed) and "output" (directory).

    Returns
    -------
    results : dict
        Number of stations, cross-validation RMSE per power, the best power,
        and the paths of the output files.
    """
    value_col = get_recurse(config, "data", "value_col", default="prcp")
    crs = get_recurse(config, "crs", default=ETRS89_LAEA)
    out_dir = _output_dir(config, "output/idw")
    powers = get_recurse(config, "idw", "powers", default=[1, 2, 3])
    nmax = get_recurse(config, "idw", "nmax")
    maxdist = get_recurse(config, "idw", "maxdist")

    obs = load_precipitation(config)
    obs = drop_missing(obs, value_col)
    obs = project_observations(obs, crs)
    boundary = read_boundary(_required(config, "data", "boundary"), crs)
    obs = clip_to_boundary(obs, boundary)
    obs = average_duplicates(obs, ["x", "y"], value_col)
    logging.info(f"{obs.height} stations in the analysis")

    grid = grid_from_boundary(
        boundary, get_recurse(config, "grid", "resolution", default=10_000)
    )
    mask = mask_grid(grid, boundary)

    sweep = idw_power_sweep(
        obs, grid, value_col, powers, mask=mask, nmax=nmax, maxdist=maxdist
    )
    cv = idw_power_cv(
        obs,
        value_col,
        powers,
        nmax=nmax,
        maxdist=maxdist,
        nfold=get_recurse(config, "cv", "nfold"),
        seed=get_recurse(config, "cv", "seed"),
    )
    power = best_power(cv)
    logging.info(f"Best IDW power by cross-validation: {power}")
    best = sweep.sel(power=power, drop=True)

    figures = {}
    fig, ax = map_axes(crs)
    plot_stations(ax, obs, value_col, boundary, title="Stations")
    figures["stations"] = os.path.join(out_dir, "stations.png")
    save_figure(fig, figures["stations"])

    fig = plot_power_sweep(sweep, crs, boundary, obs)
    figures["power_sweep"] = os.path.join(out_dir, "idw_power_sweep.png")
    save_figure(fig, figures["power_sweep"])

    fig, ax = map_axes()
    plot_scatter(
        ax,
        cv.get_column("power").to_numpy(),
        cv.get_column("rmse").to_numpy(),
        xlabel="power",
        ylabel="cross-validation RMSE",
    )
    figures["power_cv"] = os.path.join(out_dir, "idw_power_cv.png")
    save_figure(fig, figures["power_cv"])

    fig, ax = map_axes(crs)
    plot_grid(ax, best, boundary, obs, title=f"IDW, power = {power:g}")
    figures["idw"] = os.path.join(out_dir, "idw_best.png")
    save_figure(fig, figures["idw"])

    ds = xr.Dataset({value_col: best, f"{value_col}_sweep": sweep})
    ds.attrs["best_power"] = power
    grid_path = os.path.join(out_dir, "idw_precipitation.nc")
    save_grid(ds, grid_path)
    cv_path = os.path.join(out_dir, "idw_power_cv.csv")
    cv.write_csv(cv_path)

    return {
        "n_stations": obs.height,
        "cv": cv.to_dicts(),
        "best_power": power,
        "grid": grid_path,
        "cv_table": cv_path,
        "figures": figures,
    }


def _start_model(
    config: dict,
    empirical: pl.DataFrame,
) -> Variogram:
    """Variogram model with starting values from the config, or guessed"""
    name = get_recurse(config, "variogram", "model", default="Sph")
    psill = get_recurse(config, "variogram", "psill")
    vrange = get_recurse(config, "variogram", "range")
    kwargs = get_recurse(config, "variogram", "kwargs", default={})
    if psill is None or vrange is None:
        return initial_guess(empirical, name, **kwargs)
    return variogram_model(
        name,
        psill=psill,
        range=vrange,
        nugget=get_recurse(config, "variogram", "nugget") or 0.0,
        **kwargs,
    )


def _fit(
    config: dict,
    coords: np.ndarray,
    values: np.ndarray,
) -> tuple[pl.DataFrame, Variogram, float]:
    empirical = empirical_variogram(
        coords,
        values,
        cutoff=get_recurse(config, "variogram", "cutoff"),
        width=get_recurse(config, "variogram", "width"),
        cressie=get_recurse(config, "variogram", "cressie", default=False),
    )
    fit_method = get_recurse(config, "variogram", "fit_method", default=7)
    model = fit_variogram(
        empirical,
        _start_model(config, empirical),
        fit_method=fit_method,
        fit_sill=get_recurse(config, "variogram", "fit_sill", default=True),
        fit_range=get_recurse(
            config, "variogram", "fit_range", default=True
        ),
        fit_nugget=get_recurse(
            config, "variogram", "fit_nugget", default=True
        ),
    )
    return empirical, model, weighted_sserr(empirical, model, fit_method)


def temperature_kriging(config: dict) -> dict:
    """
    Kriging of station temperature, with elevation as an external drift.

    Parameters
    ----------
    config : dict
        Configuration, with sections "data" (stations, boundary, elevation,
        value_col, lon_col, lat_col, elevation_col), "crs", "grid"
        (resolution), "variogram" (model, psill, range, nugget, cutoff,
        width, fit_method, directions, tol_hor), "kriging" (nmax, maxdist),
        "cv" (nfold, seed) and "output" (directory).

    Returns
    -------
    results : dict
        Number of stations, the lapse rate, fitted variogram parameters,
        cross-validation summaries and the paths of the output files.
    """
    value_col = get_recurse(config, "data", "value_col", default="temp")
    elev_col = get_recurse(
        config, "data", "elevation_col", default="elevation"
    )
    lon_col = get_recurse(config, "data", "lon_col", default="lon")
    lat_col = get_recurse(config, "data", "lat_col", default="lat")
    crs = get_recurse(config, "crs", default=ETRS89_UTM31N)
    out_dir = _output_dir(config, "output/kriging")
    nmax = get_recurse(config, "kriging", "nmax")
    maxdist = get_recurse(config, "kriging", "maxdist")

    obs = read_observations(_required(config, "data", "stations"))
    obs = drop_missing(obs, value_col)
    obs = project_observations(obs, crs, lon_col=lon_col, lat_col=lat_col)
    boundary = read_boundary(_required(config, "data", "boundary"), crs)
    obs = clip_to_boundary(obs, boundary)
    obs = average_duplicates(obs, ["x", "y"], value_col)

    dem = read_raster(_required(config, "data", "elevation"), crs)
    if elev_col not in obs.columns:
        logging.info("Sampling station elevation from the elevation raster")
        obs = sample_raster(obs, dem, elev_col)
    obs = drop_missing(obs, elev_col)
    logging.info(f"{obs.height} stations in the analysis")

    figures = {}
    fig, ax = map_axes(crs)
    plot_stations(ax, obs, value_col, boundary, title="Stations")
    figures["stations"] = os.path.join(out_dir, "stations.png")
    save_figure(fig, figures["stations"])

    # Linear dependence of temperature on elevation (the lapse rate)
    fig, ax = map_axes()
    slope, intercept = plot_scatter(  # type: ignore
        ax,
        obs.get_column(elev_col).to_numpy(),
        obs.get_column(value_col).to_numpy(),
        fit_line=True,
        xlabel=elev_col,
        ylabel=value_col,
    )
    figures["elevation_scatter"] = os.path.join(out_dir, "elevation.png")
    save_figure(fig, figures["elevation_scatter"])
    logging.info(f"Lapse rate: {slope * 1000:.3g} per 1000 elevation units")
    obs = obs.with_columns(
        (pl.col(value_col) - (slope * pl.col(elev_col) + intercept)).alias(
            "trend_residual"
        )
    )

    coords = obs.select(["x", "y"]).to_numpy()
    ev_ok, model_ok, sserr_ok = _fit(
        config, coords, obs.get_column(value_col).to_numpy()
    )
    ev_uk, model_uk, sserr_uk = _fit(
        config, coords, obs.get_column("trend_residual").to_numpy()
    )

    fig, axes = map_axes(figsize=(12, 5), ncols=2)
    plot_variogram(axes[0], ev_ok, model_ok, title=value_col)
    plot_variogram(axes[1], ev_uk, model_uk, title="elevation residuals")
    figures["variogram"] = os.path.join(out_dir, "variogram.png")
    save_figure(fig, figures["variogram"])

    directions = get_recurse(config, "variogram", "directions")
    if directions:
        ev_dir = empirical_variogram(
            coords,
            obs.get_column("trend_residual").to_numpy(),
            cutoff=get_recurse(config, "variogram", "cutoff"),
            width=get_recurse(config, "variogram", "width"),
            alpha=directions,
            tol_hor=get_recurse(config, "variogram", "tol_hor", default=22.5),
        )
        fig, ax = map_axes()
        plot_variogram(ax, ev_dir, annotate=False, title="Directional")
        figures["directional"] = os.path.join(out_dir, "directional.png")
        save_figure(fig, figures["directional"])

    grid = grid_from_boundary(
        boundary, get_recurse(config, "grid", "resolution", default=5_000)
    )
    mask = mask_grid(grid, boundary)
    grid_elev = sample_raster_to_grid(dem, grid, name=elev_col)

    ok = krige_grid(
        obs,
        grid,
        value_col,
        model_ok,
        method="ordinary",
        mask=mask,
        nmax=nmax,
        maxdist=maxdist,
    )
    uk = krige_grid(
        obs,
        grid,
        value_col,
        model_uk,
        method="universal",
        mask=mask,
        drift_cols=[elev_col],
        grid_drift={elev_col: grid_elev},
        nmax=nmax,
        maxdist=maxdist,
    )

    for name, ds in (("ordinary", ok), ("universal", uk)):
        fig, axes = map_axes(crs, figsize=(14, 6), ncols=2)
        plot_grid(axes[0], ds["pred"], boundary, obs, title="prediction")
        plot_grid(
            axes[1],
            ds["var"],
            boundary,
            obs,
            title="variance",
            pkwargs={"cmap": "magma"},
        )
        figures[name] = os.path.join(out_dir, f"kriging_{name}.png")
        save_figure(fig, figures[name])

    nfold = get_recurse(config, "cv", "nfold")
    seed = get_recurse(config, "cv", "seed")
    cv_ok = cross_validate(
        obs,
        value_col,
        kriging_predictor(model_ok, "ordinary", nmax=nmax, maxdist=maxdist),
        nfold=nfold,
        seed=seed,
    )
    cv_uk = cross_validate(
        obs,
        value_col,
        kriging_predictor(
            model_uk,
            "universal",
            drift_cols=[elev_col],
            nmax=nmax,
            maxdist=maxdist,
        ),
        nfold=nfold,
        seed=seed,
    )
    summaries = {"ordinary": cv_summary(cv_ok), "universal": cv_summary(cv_uk)}
    for name, summary in summaries.items():
        logging.info(f"Cross-validation, {name} Kriging: {summary}")

    fig, axes = map_axes(figsize=(12, 5), ncols=2)
    cvs = {"ordinary": cv_ok, "universal": cv_uk}
    for ax, (name, cv) in zip(axes, cvs.items()):
        plot_scatter(
            ax,
            cv.get_column("observed").to_numpy(),
            cv.get_column("pred").to_numpy(),
            one_to_one=True,
            xlabel="observed",
            ylabel="predicted",
            title=f"{name} Kriging",
        )
    figures["cv"] = os.path.join(out_dir, "kriging_cv.png")
    save_figure(fig, figures["cv"])

    out = xr.Dataset(
        {
            "ok_pred": ok["pred"],
            "ok_var": ok["var"],
            "uk_pred": uk["pred"],
            "uk_var": uk["var"],
            elev_col: grid_elev,
        }
    )
    out.attrs["crs"] = crs
    grid_path = os.path.join(out_dir, "kriging_temperature.nc")
    save_grid(out, grid_path)

    return {
        "n_stations": obs.height,
        "lapse_rate": {"slope": slope, "intercept": intercept},
        "variogram": {
            "ordinary": {
                "model": type(model_ok).__name__,
                "params": asdict(model_ok),
                "sserr": sserr_ok,
            },
            "universal": {
                "model": type(model_uk).__name__,
                "params": asdict(model_uk),
                "sserr": sserr_uk,
            },
        },
        "cv": summaries,
        "grid": grid_path,
        "figures": figures,
    }
