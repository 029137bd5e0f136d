"""
Cross-validation of interpolation methods.

Observations are split into folds, each fold is predicted from the remaining
observations and the prediction residuals are summarised. With one fold per
observation this is leave-one-out cross-validation.
"""

from collections.abc import Callable
import logging
import numpy as np
import polars as pl
from warnings import warn

from .idw import idw
from .kriging import krige
from .types import KrigMethod
from .utils import check_cols, coords_array
from .variogram import Variogram

# predictor(train, test, value_col) -> (pred, var). var may be None.
Predictor = Callable[
    [pl.DataFrame, pl.DataFrame, str],
    tuple[np.ndarray, np.ndarray | None],
]


def idw_predictor(
    power: float = 2.0,
    coord_cols: list[str] = ["x", "y"],
    nmax: int | None = None,
    maxdist: float | None = None,
) -> Predictor:
    """Build a cross-validation predictor using inverse distance weighting"""

    def _predict(train, test, value_col):
        pred = idw(
            coords_array(train, coord_cols),
            train.get_column(value_col).to_numpy(),
            coords_array(test, coord_cols),
            power=power,
            nmax=nmax,
            maxdist=maxdist,
        )
        return pred, None

    return _predict


def kriging_predictor(
    variogram: Variogram,
    method: KrigMethod = "ordinary",
    coord_cols: list[str] = ["x", "y"],
    drift_cols: list[str] | None = None,
    mean: float | None = None,
    nmax: int | None = None,
    maxdist: float | None = None,
) -> Predictor:
    """
    Build a cross-validation predictor using Kriging with a fixed variogram
    model. See `station_gridding.kriging.krige` for the parameters.
    """

    def _predict(train, test, value_col):
        result = krige(
            train,
            test,
            value_col,
            variogram,
            method=method,
            coord_cols=coord_cols,
            drift_cols=drift_cols,
            mean=mean,
            nmax=nmax,
            maxdist=maxdist,
        )
        return (
            result.get_column("pred").to_numpy(),
            result.get_column("var").to_numpy(),
        )

    return _predict


def cross_validate(
    obs: pl.DataFrame,
    value_col: str,
    predictor: Predictor,
    nfold: int | None = None,
    seed: int | None = None,
) -> pl.DataFrame:
    """
    Cross-validate an interpolation method.

    Parameters
    ----------
    obs : polars.DataFrame
        The observations.
    value_col : str
        Name of the column of observed values.
    predictor : Callable
        Function of (train, test, value_col) returning the predictions at the
        test observations and optionally their variance. See `idw_predictor`
        and `kriging_predictor`.
    nfold : int | None
        Number of folds. Leave-one-out cross-validation if not set, otherwise
        observations are randomly assigned to `nfold` folds of (nearly) equal
        size.
    seed : int | None
        Seed for the random fold assignment.

    Returns
    -------
    cv : polars.DataFrame
        The observations with additional columns "observed", "pred", "var",
        "residual" (observed - pred), "zscore" (residual / sqrt(var), null
        without a variance) and "fold".
    """
    check_cols(obs, [value_col])
    n = obs.height
    if n < 2:
        raise ValueError("At least 2 observations are required")
    if nfold is None:
        folds = np.arange(n)
    else:
        if not 2 <= nfold <= n:
            raise ValueError("nfold must be between 2 and the number of obs")
        rng = np.random.default_rng(seed)
        folds = rng.permutation(np.arange(n) % nfold)

    pred = np.full(n, np.nan)
    var = np.full(n, np.nan)
    for fold in np.unique(folds):
        in_fold = folds == fold
        fold_pred, fold_var = predictor(
            obs.filter(pl.Series(~in_fold)),
            obs.filter(pl.Series(in_fold)),
            value_col,
        )
        pred[in_fold] = fold_pred
        if fold_var is not None:
            var[in_fold] = fold_var
    logging.info(f"Cross-validation with {len(np.unique(folds))} folds")

    observed = obs.get_column(value_col).to_numpy().astype(float)
    residual = observed - pred
    with np.errstate(invalid="ignore", divide="ignore"):
        zscore = np.where(var > 0, residual / np.sqrt(var), np.nan)
    return obs.with_columns(
        pl.Series("observed", observed),
        pl.Series("pred", pred),
        pl.Series("var", var).fill_nan(None),
        pl.Series("residual", residual),
        pl.Series("zscore", zscore).fill_nan(None),
        pl.Series("fold", folds.astype(np.int64)),
    )


def cv_summary(cv: pl.DataFrame) -> dict[str, float | None]:
    """
    Summary statistics of cross-validation residuals.

    Parameters
    ----------
    cv : polars.DataFrame
        Output of `cross_validate`.

    Returns
    -------
    summary : dict
        "n", "mean_error", "rmse", "mae", "msdr" (mean squared z-score, close
        to 1 if the Kriging variance is well calibrated, None without a
        variance), "cor_obs_pred" and "cor_pred_residual" (ideally close to
        0).
    """
    check_cols(cv, ["observed", "pred", "residual", "zscore"])
    valid = cv.filter(pl.col("pred").is_not_nan())
    if valid.height < cv.height:
        warn(f"{cv.height - valid.height} observations could not be predicted")
    if valid.height == 0:
        raise ValueError("No valid cross-validation predictions")

    observed = valid.get_column("observed").to_numpy()
    pred = valid.get_column("pred").to_numpy()
    residual = valid.get_column("residual").to_numpy()
    zscore = valid.get_column("zscore").drop_nulls().to_numpy()

    def _cor(a, b):
        if len(a) < 2 or np.std(a) == 0 or np.std(b) == 0:
            return None
        return float(np.corrcoef(a, b)[0, 1])

    return {
        "n": valid.height,
        "mean_error": float(np.mean(residual)),
        "rmse": float(np.sqrt(np.mean(residual**2))),
        "mae": float(np.mean(np.abs(residual))),
        "msdr": float(np.mean(zscore**2)) if len(zscore) else None,
        "cor_obs_pred": _cor(observed, pred),
        "cor_pred_residual": _cor(pred, residual),
    }


def idw_power_cv(
    obs: pl.DataFrame,
    value_col: str,
    powers: list[float],
    coord_cols: list[str] = ["x", "y"],
    nmax: int | None = None,
    maxdist: float | None = None,
    nfold: int | None = None,
    seed: int | None = None,
) -> pl.DataFrame:
    """
    Cross-validation error of inverse distance weighting for a range of
    powers.

    Returns
    -------
    sweep : polars.DataFrame
        With columns "power", "rmse", "mae", "mean_error".
    """
    rows = []
    for power in powers:
        cv = cross_validate(
            obs,
            value_col,
            idw_predictor(power, coord_cols, nmax, maxdist),
            nfold=nfold,
            seed=seed,
        )
        summary = cv_summary(cv)
        logging.info(f"IDW power {power}: RMSE {summary['rmse']:.4g}")
        rows.append(
            {
                "power": float(power),
                "rmse": summary["rmse"],
                "mae": summary["mae"],
                "mean_error": summary["mean_error"],
            }
        )
    return pl.DataFrame(rows)


def best_power(sweep: pl.DataFrame) -> float:
    """The power with the smallest cross-validation RMSE"""
    check_cols(sweep, ["power", "rmse"])
    return float(
        sweep.sort("rmse", maintain_order=True).get_column("power")[0]
    )
