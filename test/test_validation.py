import pytest  # noqa: F401
import numpy as np
import polars as pl

from station_gridding.validation import (
    best_power,
    cross_validate,
    cv_summary,
    idw_power_cv,
    idw_predictor,
    kriging_predictor,
)
from station_gridding.variogram import ExponentialVariogram

LINE = pl.DataFrame(
    {"x": [0.0, 1.0, 2.0], "y": [0.0, 0.0, 0.0], "prcp": [0.0, 1.0, 2.0]}
)


def _random_obs(n=10, seed=42) -> pl.DataFrame:
    rng = np.random.default_rng(seed)
    x = rng.uniform(0, 100, n)
    y = rng.uniform(0, 100, n)
    return pl.DataFrame(
        {"x": x, "y": y, "temp": 10 + 0.05 * x + rng.normal(0, 0.5, n)}
    )


def test_leave_one_out() -> None:
    cv = cross_validate(LINE, "prcp", idw_predictor(power=2))

    assert cv.height == 3
    assert cv.columns == [
        "x",
        "y",
        "prcp",
        "observed",
        "pred",
        "var",
        "residual",
        "zscore",
        "fold",
    ]
    assert cv["fold"].to_list() == [0, 1, 2]
    assert cv["pred"].to_list() == pytest.approx([1.2, 1.0, 0.8])
    assert cv["residual"].to_list() == pytest.approx([-1.2, 0.0, 1.2])
    # No variance for inverse distance weighting
    assert cv["var"].null_count() == 3
    assert cv["zscore"].null_count() == 3
    return None


def test_cv_summary() -> None:
    cv = cross_validate(LINE, "prcp", idw_predictor(power=2))
    summary = cv_summary(cv)

    assert summary["n"] == 3
    assert summary["mean_error"] == pytest.approx(0.0)
    assert summary["rmse"] == pytest.approx(np.sqrt(0.96))
    assert summary["mae"] == pytest.approx(0.8)
    assert summary["msdr"] is None
    assert summary["cor_obs_pred"] == pytest.approx(-1.0)
    return None


def test_cv_summary_unpredicted() -> None:
    obs = LINE.with_columns(pl.Series("x", [0.0, 1.0, 100.0]))
    cv = cross_validate(obs, "prcp", idw_predictor(maxdist=5.0))
    assert np.isnan(cv["pred"][2])
    with pytest.warns(UserWarning):
        summary = cv_summary(cv)
    assert summary["n"] == 2

    cv = cross_validate(obs, "prcp", idw_predictor(maxdist=0.5))
    with pytest.warns(UserWarning):
        with pytest.raises(ValueError):
            cv_summary(cv)
    return None


def test_k_fold() -> None:
    obs = _random_obs()
    cv = cross_validate(obs, "temp", idw_predictor(), nfold=3, seed=2022)

    assert cv.height == obs.height
    assert sorted(cv["fold"].unique().to_list()) == [0, 1, 2]
    assert sorted(cv["fold"].value_counts()["count"].to_list()) == [3, 3, 4]
    assert cv["pred"].is_nan().sum() == 0

    again = cross_validate(obs, "temp", idw_predictor(), nfold=3, seed=2022)
    assert cv["fold"].to_list() == again["fold"].to_list()

    with pytest.raises(ValueError):
        cross_validate(obs, "temp", idw_predictor(), nfold=1)
    with pytest.raises(ValueError):
        cross_validate(obs, "temp", idw_predictor(), nfold=11)
    with pytest.raises(ValueError):
        cross_validate(obs.head(1), "temp", idw_predictor())
    return None


def test_kriging_cv() -> None:
    obs = _random_obs(n=15)
    model = ExponentialVariogram(psill=1.0, range=20.0, nugget=0.25)
    cv = cross_validate(obs, "temp", kriging_predictor(model))

    assert cv["var"].null_count() == 0
    assert (cv["var"] > 0).all()
    assert np.allclose(
        cv["zscore"].to_numpy(),
        (cv["residual"] / cv["var"].sqrt()).to_numpy(),
    )
    summary = cv_summary(cv)
    assert summary["msdr"] is not None
    assert summary["msdr"] > 0

    # Universal Kriging with the easting as drift
    uk = cross_validate(
        obs.with_columns(pl.col("x").alias("drift")),
        "temp",
        kriging_predictor(model, "universal", drift_cols=["drift"]),
    )
    assert uk["pred"].is_nan().sum() == 0
    return None


def test_idw_power_cv() -> None:
    obs = _random_obs()
    sweep = idw_power_cv(obs, "temp", [1, 2, 3])

    assert sweep.columns == ["power", "rmse", "mae", "mean_error"]
    assert sweep["power"].to_list() == [1.0, 2.0, 3.0]
    assert (sweep["rmse"] >= sweep["mae"]).all()
    assert best_power(sweep) in [1.0, 2.0, 3.0]
    return None


def test_best_power() -> None:
    sweep = pl.DataFrame(
        {"power": [1.0, 2.0, 3.0], "rmse": [4.0, 2.5, 3.0]}
    )
    assert best_power(sweep) == 2.0
    return None
