import pytest  # noqa: F401
import logging
import numpy as np
import polars as pl
import xarray as xr

from station_gridding.variogram import (
    ExponentialVariogram,
    GaussianVariogram,
    LinearVariogram,
    MaternVariogram,
    NuggetVariogram,
    PowerVariogram,
    SphericalVariogram,
    empirical_variogram,
    fit_variogram,
    fit_weights,
    initial_guess,
    model_distance,
    variogram_model,
    weighted_sserr,
)

LINE_COORDS = np.array([[0.0, 0.0], [1.0, 0.0], [2.0, 0.0], [3.0, 0.0]])
LINE_VALUES = np.array([0.0, 1.0, 3.0, 6.0])


@pytest.mark.parametrize(
    "name, model",
    [
        ("nugget", NuggetVariogram(nugget=1.0)),
        ("linear", LinearVariogram(slope=0.1, nugget=0.5)),
        ("power", PowerVariogram(scale=1.0, exponent=1.5, nugget=0.5)),
        ("spherical", SphericalVariogram(psill=1.0, range=10.0, nugget=0.5)),
        ("exponential", ExponentialVariogram(psill=1.0, range=10.0)),
        ("gaussian", GaussianVariogram(psill=1.0, range=10.0, nugget=0.2)),
        ("matern", MaternVariogram(psill=1.0, range=10.0, nu=1.5)),
    ],
)
def test_zero_at_origin(name, model) -> None:
    dist = np.array([0.0, 1e-6, 1.0, 5.0, 50.0])
    gamma = model.fit(dist)
    assert gamma[0] == 0.0
    # Nugget is the limit approaching 0
    assert gamma[1] == pytest.approx(getattr(model, "nugget", 0.0), abs=1e-3)
    # Non-decreasing
    assert np.all(np.diff(gamma) >= 0)
    return None


def test_spherical() -> None:
    model = SphericalVariogram(psill=2.0, range=10.0, nugget=1.0)
    gamma = model.fit(np.array([0.0, 5.0, 10.0, 20.0]))
    assert list(gamma) == pytest.approx([0.0, 2.375, 3.0, 3.0])
    assert model.sill == 3.0
    assert model.effective_range == 10.0
    return None


def test_effective_range() -> None:
    exp = ExponentialVariogram(psill=1.0, effective_range=30.0)
    assert exp.range == pytest.approx(10.0)
    assert exp.fit(np.array([30.0]))[0] == pytest.approx(1 - np.exp(-3))

    gau = GaussianVariogram(psill=1.0, range=10.0)
    assert gau.effective_range == pytest.approx(10 * np.sqrt(3))
    assert gau.fit(np.array([gau.effective_range]))[0] == pytest.approx(
        1 - np.exp(-3)
    )

    sph = SphericalVariogram(psill=1.0, effective_range=30.0)
    assert sph.range == 30.0

    assert MaternVariogram(psill=1, range=10, nu=1.5).effective_range == 20
    assert MaternVariogram(psill=1, range=10, nu=20).effective_range == 30

    with pytest.raises(ValueError):
        SphericalVariogram(psill=1.0)
    return None


def test_matern_methods() -> None:
    dist = np.linspace(0.0, 50.0, 11)
    exp = ExponentialVariogram(psill=1.5, range=10.0, nugget=0.1).fit(dist)
    for method in ["sklearn", "gstat"]:
        mat = MaternVariogram(
            psill=1.5, range=10.0, nugget=0.1, nu=0.5, method=method
        )
        assert np.allclose(mat.fit(dist), exp)

    karspeck = MaternVariogram(psill=1.0, range=10.0, method="karspeck")
    expected = 1 - np.exp(-np.sqrt(2) * dist / 10)
    assert np.allclose(karspeck.fit(dist), expected)

    with pytest.raises(ValueError):
        MaternVariogram(psill=1.0, range=10.0, method="unknown")  # type: ignore
    return None


def test_invalid_parameters() -> None:
    with pytest.raises(ValueError):
        PowerVariogram(scale=1.0, exponent=2.0)
    with pytest.raises(ValueError):
        SphericalVariogram(psill=1.0, range=10.0, anis=(45, 0))
    return None


def test_covariance() -> None:
    model = SphericalVariogram(psill=2.0, range=10.0, nugget=1.0)
    cov = model.covariance(np.array([0.0, 5.0, 20.0]))
    assert list(cov) == pytest.approx([3.0, 0.625, 0.0])

    da = xr.DataArray(np.array([[0.0, 5.0], [5.0, 0.0]]), dims=["i", "j"])
    gamma = model.fit(da)
    assert isinstance(gamma, xr.DataArray)
    assert gamma.name == "variogram"
    assert float(gamma[0, 1]) == pytest.approx(2.375)
    assert model.covariance(da).name == "covariance"

    with pytest.raises(ValueError):
        LinearVariogram(slope=1.0).covariance(np.array([1.0]))
    return None


def test_variogram_model() -> None:
    assert variogram_model("Nug", psill=1.0, nugget=0.5) == NuggetVariogram(
        nugget=1.5
    )
    lin = variogram_model("Lin", psill=2.0, range=10.0)
    assert isinstance(lin, LinearVariogram)
    assert lin.slope == pytest.approx(0.2)
    power = variogram_model("Pow", psill=1.0, range=1.5)
    assert isinstance(power, PowerVariogram)
    assert power.exponent == 1.5

    mat = variogram_model("Mat", psill=1.0, range=5.0, nu=2.5)
    assert isinstance(mat, MaternVariogram)
    assert mat.nu == 2.5

    sph = variogram_model("Sph", psill=1.0, range=5.0, anis=(30, 0.5))
    assert sph.anisotropy == (30.0, 0.5)

    with pytest.raises(ValueError):
        variogram_model("Sph", psill=1.0)
    with pytest.raises(ValueError):
        variogram_model("Pow", psill=1.0)
    with pytest.raises(ValueError):
        variogram_model("Cir", psill=1.0, range=5.0)  # type: ignore
    return None


def test_model_distance() -> None:
    a = np.array([[0.0, 0.0]])
    b = np.array([[10.0, 0.0], [0.0, 10.0]])
    iso = SphericalVariogram(psill=1.0, range=10.0)
    assert list(model_distance(iso, a, b)[0]) == pytest.approx([10.0, 10.0])

    # Major axis east-west, shorter range north-south
    anis = SphericalVariogram(psill=1.0, range=10.0, anis=(90, 0.5))
    assert list(model_distance(anis, a, b)[0]) == pytest.approx([10.0, 20.0])
    return None


def test_empirical_variogram() -> None:
    emp = empirical_variogram(LINE_COORDS, LINE_VALUES, cutoff=3, width=1)

    assert emp.columns == ["np", "dist", "gamma", "dir_hor"]
    assert emp["np"].to_list() == [3, 2, 1]
    assert emp["dist"].to_list() == pytest.approx([1.0, 2.0, 3.0])
    # (1 + 4 + 9) / 6, (9 + 25) / 4, 36 / 2
    assert emp["gamma"].to_list() == pytest.approx([14 / 6, 8.5, 18.0])
    assert emp["dir_hor"].to_list() == [0.0, 0.0, 0.0]

    short = empirical_variogram(LINE_COORDS, LINE_VALUES, cutoff=2, width=1)
    assert short["np"].to_list() == [3, 2]

    # Default cutoff: a third of the bounding box diagonal
    default = empirical_variogram(LINE_COORDS, LINE_VALUES)
    assert default["np"].to_list() == [3]

    with pytest.raises(ValueError):
        empirical_variogram(LINE_COORDS[:1], LINE_VALUES[:1])
    with pytest.raises(ValueError):
        empirical_variogram(LINE_COORDS, LINE_VALUES[:3])
    return None


def test_empirical_variogram_cressie() -> None:
    emp = empirical_variogram(
        LINE_COORDS, LINE_VALUES, cutoff=1, width=1, cressie=True
    )
    mean_root = np.mean(np.sqrt([1.0, 2.0, 3.0]))
    expected = mean_root**4 / (0.457 + 0.494 / 3) / 2
    assert emp["gamma"][0] == pytest.approx(expected)
    return None


def test_empirical_variogram_directional() -> None:
    # All pairs are east-west, 90 degrees from north
    emp = empirical_variogram(
        LINE_COORDS, LINE_VALUES, cutoff=3, width=1, alpha=[0, 90]
    )
    assert emp["dir_hor"].to_list() == [90.0, 90.0, 90.0]
    assert emp["np"].to_list() == [3, 2, 1]

    emp = empirical_variogram(
        LINE_COORDS, LINE_VALUES, cutoff=3, width=1, alpha=45, tol_hor=22.5
    )
    assert emp.height == 0
    return None


def test_empirical_variogram_duplicates(caplog) -> None:
    coords = np.vstack([LINE_COORDS, [[0.0, 0.0]]])
    values = np.append(LINE_VALUES, 10.0)
    with caplog.at_level(logging.WARNING):
        emp = empirical_variogram(coords, values, cutoff=3, width=1)
    assert "distance 0" in caplog.text
    assert int(emp["np"].sum()) == 9
    return None


def _synthetic(model, n_pairs=10):
    dist = np.linspace(2.0, 100.0, 30)
    return pl.DataFrame(
        {
            "np": np.full(len(dist), n_pairs),
            "dist": dist,
            "gamma": model.fit(dist),
            "dir_hor": np.zeros(len(dist)),
        }
    )


def test_fit_weights() -> None:
    emp = pl.DataFrame(
        {
            "np": [10, 20],
            "dist": [1.0, 2.0],
            "gamma": [0.5, 2.0],
            "dir_hor": [0.0, 0.0],
        }
    )
    assert list(fit_weights(emp, 1)) == pytest.approx([10, 20])
    assert list(fit_weights(emp, 2)) == pytest.approx([40, 5])
    assert list(fit_weights(emp, 6)) == pytest.approx([1, 1])
    assert list(fit_weights(emp, 7)) == pytest.approx([10, 5])
    with pytest.raises(ValueError):
        fit_weights(emp, 3)  # type: ignore
    return None


@pytest.mark.parametrize("fit_method", [1, 2, 6, 7])
def test_fit_variogram(fit_method) -> None:
    truth = ExponentialVariogram(psill=2.0, range=20.0, nugget=0.5)
    emp = _synthetic(truth)
    start = initial_guess(emp, "Exp")

    fitted = fit_variogram(emp, start, fit_method=fit_method)
    assert isinstance(fitted, ExponentialVariogram)
    assert fitted.psill == pytest.approx(2.0, rel=1e-3)
    assert fitted.range == pytest.approx(20.0, rel=1e-3)
    assert fitted.nugget == pytest.approx(0.5, abs=1e-3)
    assert fitted.effective_range == pytest.approx(60.0, rel=1e-3)
    assert weighted_sserr(emp, fitted, fit_method) < 1e-6
    # Input is unchanged
    assert start.range == pytest.approx(100.0 / 3)
    return None


def test_fit_variogram_fixed() -> None:
    truth = SphericalVariogram(psill=1.0, range=40.0, nugget=0.0)
    emp = _synthetic(truth)

    start = SphericalVariogram(psill=0.5, range=40.0, nugget=0.0)
    fitted = fit_variogram(emp, start, fit_range=False, fit_nugget=False)
    assert fitted.range == 40.0
    assert fitted.nugget == 0.0
    assert fitted.psill == pytest.approx(1.0, rel=1e-4)

    unchanged = fit_variogram(
        emp, start, fit_sill=False, fit_range=False, fit_nugget=False
    )
    assert unchanged == start
    return None


def test_fit_variogram_invalid() -> None:
    emp = empirical_variogram(
        np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]),
        LINE_VALUES,
        cutoff=3,
        width=1,
        alpha=[0, 90],
        tol_hor=22.5,
    )
    assert emp.get_column("dir_hor").n_unique() == 2
    model = SphericalVariogram(psill=1.0, range=2.0)
    with pytest.raises(ValueError):
        fit_variogram(emp, model)
    with pytest.raises(ValueError):
        fit_variogram(emp.clear(), model)
    return None


def test_initial_guess() -> None:
    emp = pl.DataFrame(
        {
            "np": [5, 5, 5],
            "dist": [30.0, 10.0, 20.0],
            "gamma": [3.0, 1.0, 2.0],
            "dir_hor": [0.0, 0.0, 0.0],
        }
    )
    sph = initial_guess(emp, "Sph")
    assert sph == SphericalVariogram(psill=2.0, range=10.0, nugget=1.0)

    lin = initial_guess(emp, "Lin")
    assert lin.slope == pytest.approx(2.0 / 30.0)

    power = initial_guess(emp, "Pow")
    assert power.exponent == 1.0

    mat = initial_guess(emp, "Mat", nu=1.5)
    assert mat.nu == 1.5
    return None
