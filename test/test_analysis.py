import pytest  # noqa: F401
import json
import os
import matplotlib
import numpy as np
import polars as pl
import rioxarray  # noqa: F401
import xarray as xr

matplotlib.use("Agg")

from station_gridding.analysis import (  # noqa: E402
    load_precipitation,
    precipitation_idw,
    temperature_kriging,
)


def _write_box(path, lon0, lat0, lon1, lat1) -> None:
    ring = [[lon0, lat0], [lon1, lat0], [lon1, lat1], [lon0, lat1]]
    feature = {
        "type": "Feature",
        "properties": {},
        "geometry": {"type": "Polygon", "coordinates": [ring + [ring[0]]]},
    }
    with open(path, "w") as io:
        json.dump({"type": "FeatureCollection", "features": [feature]}, io)
    return None


def _elevation(lon, lat):
    return 500.0 * (lat - 40.5) + 300.0 * (lon - 0.5)


def _write_dem(path) -> None:
    lon = np.arange(0.525, 3.5, 0.05)
    lat = np.arange(42.475, 40.5, -0.05)
    lon2, lat2 = np.meshgrid(lon, lat)
    dem = xr.DataArray(
        _elevation(lon2, lat2).astype("float32"),
        coords={"y": lat, "x": lon},
        dims=["y", "x"],
        name="elevation",
    )
    dem.rio.write_crs("EPSG:4326").rio.write_nodata(np.nan).rio.to_raster(
        path
    )
    return None


@pytest.fixture
def precipitation_config(tmp_path) -> dict:
    rng = np.random.default_rng(2022)
    n = 12
    lon = rng.uniform(7.0, 14.0, n)
    lat = rng.uniform(48.0, 54.0, n)
    pl.DataFrame(
        {
            "station": [f"GHCND:GM{i:03d}" for i in range(n)],
            "name": [f"Station {i}" for i in range(n)],
            "lat": lat,
            "lon": lon,
            "elevation": rng.uniform(0, 800, n),
            "prcp": 600 + 30 * (lon - 6) + rng.normal(0, 20, n),
        }
    ).write_csv(tmp_path / "prcp.csv")
    _write_box(tmp_path / "germany.geojson", 6.0, 47.0, 15.0, 55.0)
    return {
        "data": {
            "cache": str(tmp_path / "prcp.csv"),
            "boundary": str(tmp_path / "germany.geojson"),
            "value_col": "prcp",
        },
        "noaa": {"token": None, "year": 2022},
        "crs": "EPSG:3035",
        "grid": {"resolution": 50_000},
        "idw": {"powers": [1, 2, 3]},
        "cv": {"nfold": None, "seed": 2022},
        "output": {"directory": str(tmp_path / "output")},
    }


def test_load_precipitation_cached(precipitation_config) -> None:
    df = load_precipitation(precipitation_config)
    assert df.height == 12
    assert "prcp" in df.columns
    return None


def test_precipitation_idw(precipitation_config) -> None:
    results = precipitation_idw(precipitation_config)

    assert results["n_stations"] == 12
    assert results["best_power"] in [1.0, 2.0, 3.0]
    assert [row["power"] for row in results["cv"]] == [1.0, 2.0, 3.0]
    rmse = {row["power"]: row["rmse"] for row in results["cv"]}
    assert rmse[results["best_power"]] == min(rmse.values())
    for path in results["figures"].values():
        assert os.path.isfile(path)

    cv = pl.read_csv(results["cv_table"])
    assert cv.height == 3

    ds = xr.open_dataset(results["grid"])
    assert set(ds.data_vars) == {"prcp", "prcp_sweep"}
    assert ds.attrs["best_power"] == results["best_power"]
    assert ds["prcp_sweep"].sizes["power"] == 3
    assert int(ds["prcp"].notnull().sum()) > 0
    ds.close()
    return None


@pytest.fixture
def kriging_config(tmp_path) -> dict:
    lon, lat = np.meshgrid(np.linspace(1.0, 3.0, 6), np.linspace(41, 42, 5))
    lon = lon.ravel()
    lat = lat.ravel()
    temp = 15.0 - 0.0065 * _elevation(lon, lat) + np.sin(3 * lon)
    pl.DataFrame(
        {
            "station": [f"ST{i:02d}" for i in range(len(lon))],
            "lon": lon,
            "lat": lat,
            "temp": temp,
        }
    ).write_csv(tmp_path / "stations.csv")
    _write_box(tmp_path / "catalunya.geojson", 0.6, 40.6, 3.4, 42.4)
    _write_dem(str(tmp_path / "dem.tif"))
    return {
        "data": {
            "stations": str(tmp_path / "stations.csv"),
            "boundary": str(tmp_path / "catalunya.geojson"),
            "elevation": str(tmp_path / "dem.tif"),
            "value_col": "temp",
        },
        "crs": "EPSG:25831",
        "grid": {"resolution": 20_000},
        "variogram": {
            "model": "Exp",
            "psill": 1.0,
            "range": 30_000,
            "nugget": 0.1,
            "fit_method": 7,
            "fit_range": False,
            "fit_nugget": True,
            "directions": [0, 90],
            "tol_hor": 22.5,
        },
        "kriging": {"nmax": None, "maxdist": None},
        "output": {"directory": str(tmp_path / "output")},
    }


def test_temperature_kriging(kriging_config) -> None:
    results = temperature_kriging(kriging_config)

    assert results["n_stations"] == 30
    assert results["lapse_rate"]["slope"] < 0
    for method in ["ordinary", "universal"]:
        vgm = results["variogram"][method]
        assert vgm["model"] == "ExponentialVariogram"
        assert vgm["params"]["range"] > 0
        assert vgm["sserr"] >= 0
        assert results["cv"][method]["n"] == 30
    assert set(results["figures"]) == {
        "stations",
        "elevation_scatter",
        "variogram",
        "directional",
        "ordinary",
        "universal",
        "cv",
    }
    for path in results["figures"].values():
        assert os.path.isfile(path)

    ds = xr.open_dataset(results["grid"])
    assert set(ds.data_vars) == {
        "ok_pred",
        "ok_var",
        "uk_pred",
        "uk_var",
        "elevation",
    }
    assert ds.attrs["crs"] == "EPSG:25831"
    assert int(ds["uk_pred"].notnull().sum()) > 0
    ds.close()
    return None


def test_missing_config(kriging_config) -> None:
    del kriging_config["data"]["stations"]
    with pytest.raises(KeyError):
        temperature_kriging(kriging_config)
    return None
