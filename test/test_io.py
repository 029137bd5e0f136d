import pytest  # noqa: F401
import json
import numpy as np
import polars as pl
import xarray as xr

from station_gridding.grid import grid_from_resolution
from station_gridding.io import (
    load_array,
    load_config,
    load_dataset,
    read_boundary,
    read_observations,
    save_grid,
    write_observations,
)


def _write_geojson(path) -> None:
    # Two adjacent squares, dissolved into a single polygon when read
    features = [
        {
            "type": "Feature",
            "properties": {"name": name},
            "geometry": {
                "type": "Polygon",
                "coordinates": [
                    [[x0, 41.0], [x0 + 1, 41.0], [x0 + 1, 42.0], [x0, 42.0]]
                    + [[x0, 41.0]]
                ],
            },
        }
        for name, x0 in (("west", 1.0), ("east", 2.0))
    ]
    with open(path, "w") as io:
        json.dump({"type": "FeatureCollection", "features": features}, io)
    return None


def test_load_config(tmp_path) -> None:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "grid:\n  resolution: 5000\nidw:\n  powers: [1, 2]\n"
    )
    config = load_config(str(config_file))

    assert config["grid"]["resolution"] == 5000
    assert config["idw"]["powers"] == [1, 2]

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert load_config(str(empty)) == {}

    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))
    return None


def test_observations_round_trip(tmp_path) -> None:
    df = pl.DataFrame(
        {
            "station": ["A", "B"],
            "longitude": [1.5, 2.5],
            "latitude": [41.5, 41.7],
            "temp": [14.2, 12.9],
        }
    )
    path = str(tmp_path / "nested" / "obs.csv")
    write_observations(df, path)

    result = read_observations(
        path, rename={"longitude": "lon", "latitude": "lat"}
    )
    assert result.columns == ["station", "lon", "lat", "temp"]
    assert result["temp"].to_list() == [14.2, 12.9]

    subset = read_observations(path, columns=["station", "temp"])
    assert subset.columns == ["station", "temp"]

    with pytest.raises(FileNotFoundError):
        read_observations(str(tmp_path / "missing.csv"))
    return None


def test_read_boundary(tmp_path) -> None:
    path = tmp_path / "region.geojson"
    _write_geojson(path)

    boundary = read_boundary(str(path))
    assert len(boundary) == 1
    assert boundary.crs.to_epsg() == 4326
    assert list(boundary.total_bounds) == pytest.approx([1.0, 41.0, 3.0, 42.0])

    projected = read_boundary(str(path), crs="EPSG:25831")
    assert projected.crs.to_epsg() == 25831
    # UTM 31N: eastings in the hundreds of km, northings ~ 4500 km
    minx, miny, maxx, maxy = projected.total_bounds
    assert 300_000 < minx < maxx < 600_000
    assert 4_500_000 < miny < maxy < 4_700_000

    with pytest.raises(FileNotFoundError):
        read_boundary(str(tmp_path / "missing.geojson"))
    return None


def test_save_grid(tmp_path) -> None:
    grid = grid_from_resolution(
        1000, [(0, 5000), (0, 4000)], coord_names=["y", "x"]
    )
    pred = xr.DataArray(
        np.arange(20, dtype=float).reshape(5, 4),
        coords=grid.coords,
        name="pred",
    )
    ds = xr.Dataset({"pred": pred, "var": pred * 0.1})

    path = tmp_path / "out" / "grid_2022.nc"
    save_grid(ds, str(path))
    assert path.is_file()

    loaded = load_dataset(str(tmp_path / "out" / "grid_{year}.nc"), year=2022)
    assert np.allclose(loaded["var"].values, ds["var"].values)
    loaded.close()

    arr = load_array(str(path), var="pred")
    assert np.allclose(arr.values, pred.values)
    assert list(arr.dims) == ["y", "x"]

    # DataArrays are written using their name
    da_path = tmp_path / "da.nc"
    save_grid(pred, str(da_path))
    assert np.allclose(load_array(str(da_path), "pred").values, pred.values)

    with pytest.raises(FileNotFoundError):
        load_dataset(str(tmp_path / "out" / "grid_{year}.nc"), year=1999)
    return None
