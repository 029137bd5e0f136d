"""
Functions for performing Kriging.

Interpolation using a fitted variogram model. Available methods are Simple,
Ordinary and Universal Kriging (with external drift).

The Kriging systems are written in covariance form, C(h) = c - gamma(h). For
bounded variogram models c is the sill. Ordinary and Universal Kriging weights
are unchanged by adding a constant to the covariance (the weights sum to 1), so
for unbounded models (Linear, Power) any constant can be used.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
import logging
import numpy as np
import polars as pl
import xarray as xr
from scipy.spatial import cKDTree

from .grid import grid_points
from .types import KrigMethod
from .utils import adjust_small_negative, check_cols, coords_array
from .variogram import Variogram, model_distance


class Kriging(ABC):
    """
    Class for Kriging.

    Do not use this class, use SimpleKriging, OrdinaryKriging or
    UniversalKriging classes.

    Parameters
    ----------
    variogram : Variogram
        The fitted variogram model.
    coords : numpy.ndarray
        Array of shape (n, 2) of observation positions. Positions must be
        unique, duplicated positions make the Kriging system singular.
    """

    method: str

    def __init__(
        self,
        variogram: Variogram,
        coords: np.ndarray,
    ) -> None:
        if not hasattr(self, "method"):
            raise TypeError(
                "Do not use the generic class directly, "
                + "use SimpleKriging, OrdinaryKriging or UniversalKriging"
            )
        self.variogram = variogram
        self.coords = np.atleast_2d(np.asarray(coords, dtype=float))
        if len(self.coords) == 0:
            raise ValueError("Cannot Krige without observations")
        self.c0 = self._covariance_constant()
        return None

    def _covariance_constant(self) -> float:
        if self.variogram.sill is not None:
            return float(self.variogram.sill)
        dist = model_distance(self.variogram, self.coords)
        c = float(np.max(self.variogram.fit(dist)))
        return c if c > 0 else 1.0

    def covariance(
        self,
        a: np.ndarray,
        b: np.ndarray | None = None,
    ) -> np.ndarray:
        """Covariance matrix between two sets of positions"""
        dist = model_distance(self.variogram, a, b)
        return self.c0 - self.variogram.fit(dist)

    def set_kriging_weights(self, kriging_weights: np.ndarray) -> None:
        """
        Set Kriging Weights.

        Sets the `kriging_weights` attribute.

        Parameters
        ----------
        kriging_weights : numpy.ndarray
            The pre-computed kriging_weights to use.
        """
        self.kriging_weights = kriging_weights
        return None

    @abstractmethod
    def get_kriging_weights(
        self,
        targets: np.ndarray,
        target_drift: np.ndarray | None = None,
    ) -> None:
        r"""
        Compute the Kriging weights for a set of prediction positions.

        The Kriging weights are calculated as:

        .. math::
            K_{obs}^{-1} \\times K_{cross}

        Where :math:`K_{obs}` is the covariance between observations and
        :math:`K_{cross}` is the covariance between observations and the
        prediction positions, each possibly extended with constraint terms.

        Sets the `kriging_weights` attribute, and the right-hand side of the
        system used to compute the Kriging variance.

        Parameters
        ----------
        targets : numpy.ndarray
            Array of shape (m, 2) of prediction positions.
        target_drift : numpy.ndarray | None
            Drift values at the prediction positions, Universal Kriging only.
        """
        raise NotImplementedError(
            "`get_kriging_weights` not implemented for default class"
        )

    @abstractmethod
    def solve(
        self,
        values: np.ndarray,
        targets: np.ndarray | None = None,
        target_drift: np.ndarray | None = None,
    ) -> np.ndarray:
        """
        Solves the Kriging problem. Computes the Kriging weights if the
        `kriging_weights` attribute is not already set.

        Parameters
        ----------
        values : numpy.ndarray
            The observed values, one per observation position.
        targets : numpy.ndarray | None
            Prediction positions, used to compute the Kriging weights.
        target_drift : numpy.ndarray | None
            Drift values at the prediction positions, Universal Kriging only.

        Returns
        -------
        pred : numpy.ndarray
            The Kriging prediction at each target position.
        """
        raise NotImplementedError("`solve` not implemented for default class")

    def _check_weights(self, targets, target_drift) -> None:
        if not hasattr(self, "kriging_weights"):
            if targets is None:
                raise ValueError(
                    "targets are required to compute the Kriging weights"
                )
            self.get_kriging_weights(targets, target_drift)
        return None

    def get_variance(self) -> np.ndarray:
        """
        Compute the Kriging variance. This requires the attribute
        `kriging_weights` to be computed.

            sigma^2 = C(0) - w^T c_cross

        Where w and c_cross include the Lagrange multiplier terms for Ordinary
        and Universal Kriging.

        Returns
        -------
        var : numpy.ndarray
            The Kriging variance at each target position.
        """
        if not hasattr(self, "kriging_weights"):
            raise KeyError("Please compute Kriging Weights first")
        dz_squared = self.c0 - np.sum(
            self.kriging_weights * self._rhs.T, axis=1
        )
        return adjust_small_negative(dz_squared)

    def get_uncertainty(self) -> np.ndarray:
        """
        Compute the kriging uncertainty (standard deviation). This requires the
        attribute `kriging_weights` to be computed.

        Returns
        -------
        uncert : numpy.ndarray
            The Kriging uncertainty.
        """
        uncert = np.sqrt(self.get_variance())
        uncert[np.isnan(uncert)] = 0.0
        return uncert


class SimpleKriging(Kriging):
    r"""
    Class for SimpleKriging.

    The equation for simple Kriging is:
    .. math::
        K_{obs}^{-1} \\times K_{cross} \\times (y - \\mu) + \\mu

    Where :math:`\\mu` is a constant known mean.

    Requires a bounded variogram model.

    Parameters
    ----------
    variogram : Variogram
        The fitted variogram model.
    coords : numpy.ndarray
        Array of shape (n, 2) of observation positions.
    mean : float
        The known mean.
    """

    method: str = "simple"

    def __init__(
        self,
        variogram: Variogram,
        coords: np.ndarray,
        mean: float = 0.0,
    ) -> None:
        if variogram.sill is None:
            raise ValueError(
                "Simple Kriging requires a bounded variogram model, "
                + f"got {type(variogram).__name__}"
            )
        self.mean = mean
        super().__init__(variogram, coords)
        return None

    def get_kriging_weights(
        self,
        targets: np.ndarray,
        target_drift: np.ndarray | None = None,
    ) -> None:
        """
        Compute the simple Kriging weights for a set of prediction positions.
        Sets the `kriging_weights` attribute.
        """
        obs_obs_cov = self.covariance(self.coords)
        obs_grid_cov = self.covariance(self.coords, targets)
        self._rhs = obs_grid_cov
        self.kriging_weights = np.linalg.solve(obs_obs_cov, obs_grid_cov).T
        return None

    def solve(
        self,
        values: np.ndarray,
        targets: np.ndarray | None = None,
        target_drift: np.ndarray | None = None,
    ) -> np.ndarray:
        """
        Solves the simple Kriging problem. Computes the Kriging weights if the
        `kriging_weights` attribute is not already set.
        """
        self._check_weights(targets, target_drift)
        values = np.asarray(values, dtype=float)
        return self.kriging_weights @ (values - self.mean) + self.mean


class OrdinaryKriging(Kriging):
    r"""
    Class for OrdinaryKriging.

    The mean is constant but unknown. The :math:`K_{obs}`, :math:`K_{cross}`
    and :math:`y` values are extended with a Lagrange multiplier term, ensuring
    that the Kriging weights are constrained to sum to 1.

    The matrix :math:`K_{obs}` is extended by one row and one column, each
    containing the value 1, except at the diagonal point, which is 0. The
    :math:`K_{cross}` matrix is extended by an extra row containing values of 1.
    Finally, the observations :math:`y` are extended by a single value of 0
    at the end of the vector.

    Parameters
    ----------
    variogram : Variogram
        The fitted variogram model.
    coords : numpy.ndarray
        Array of shape (n, 2) of observation positions.
    """

    method: str = "ordinary"

    def get_kriging_weights(
        self,
        targets: np.ndarray,
        target_drift: np.ndarray | None = None,
    ) -> None:
        """
        Compute the ordinary Kriging weights for a set of prediction
        positions, including the Lagrange multiplier. Sets the
        `kriging_weights` attribute.
        """
        N = len(self.coords)
        obs_obs_cov = self.covariance(self.coords)
        obs_grid_cov = self.covariance(self.coords, targets)
        M = obs_grid_cov.shape[1]

        # Add Lagrange multiplier
        obs_obs_cov = np.block(
            [[obs_obs_cov, np.ones((N, 1))], [np.ones((1, N)), 0]]
        )
        obs_grid_cov = np.concatenate((obs_grid_cov, np.ones((1, M))), axis=0)
        self._rhs = obs_grid_cov
        self.kriging_weights = np.linalg.solve(obs_obs_cov, obs_grid_cov).T
        return None

    def solve(
        self,
        values: np.ndarray,
        targets: np.ndarray | None = None,
        target_drift: np.ndarray | None = None,
    ) -> np.ndarray:
        """
        Solves the ordinary Kriging problem. Computes the Kriging weights if
        the `kriging_weights` attribute is not already set.
        """
        self._check_weights(targets, target_drift)
        # Add Lagrange multiplier
        values = np.append(np.asarray(values, dtype=float), 0)
        return self.kriging_weights @ values


class UniversalKriging(Kriging):
    r"""
    Class for UniversalKriging (Kriging with external drift).

    The mean is a linear function of drift variables, for example elevation,
    with unknown coefficients:

    .. math::
        \\mu(s) = \\beta_0 + \\sum_k \\beta_k f_k(s)

    The Kriging system is extended with the drift matrix :math:`F`
    (a column of ones and one column per drift variable):

    .. math::
        \\begin{bmatrix} K_{obs} & F \\\\ F^T & 0 \\end{bmatrix}

    and :math:`K_{cross}` is extended with the drift values at the
    prediction positions.

    Parameters
    ----------
    variogram : Variogram
        The variogram model, fitted to the residuals from the drift.
    coords : numpy.ndarray
        Array of shape (n, 2) of observation positions.
    drift : numpy.ndarray
        Array of shape (n, k) of drift values at the observation positions.
    """

    method: str = "universal"

    def __init__(
        self,
        variogram: Variogram,
        coords: np.ndarray,
        drift: np.ndarray,
    ) -> None:
        super().__init__(variogram, coords)
        drift = np.asarray(drift, dtype=float)
        if drift.ndim == 1:
            drift = drift[:, None]
        if drift.shape[0] != len(self.coords):
            raise ValueError("drift must have one row per observation")
        self.drift = np.column_stack([np.ones(len(drift)), drift])
        return None

    def get_kriging_weights(
        self,
        targets: np.ndarray,
        target_drift: np.ndarray | None = None,
    ) -> None:
        """
        Compute the universal Kriging weights for a set of prediction
        positions, including the drift constraints. Sets the
        `kriging_weights` attribute.
        """
        if target_drift is None:
            raise ValueError("target_drift is required for Universal Kriging")
        target_drift = np.asarray(target_drift, dtype=float)
        if target_drift.ndim == 1:
            target_drift = target_drift[:, None]
        F = self.drift
        K = F.shape[1]
        obs_obs_cov = self.covariance(self.coords)
        obs_grid_cov = self.covariance(self.coords, targets)
        f0 = np.column_stack([np.ones(len(target_drift)), target_drift]).T
        if f0.shape[0] != K:
            raise ValueError("target_drift must have the same columns as drift")

        obs_obs_cov = np.block([[obs_obs_cov, F], [F.T, np.zeros((K, K))]])
        obs_grid_cov = np.concatenate((obs_grid_cov, f0), axis=0)
        self._rhs = obs_grid_cov
        self.kriging_weights = np.linalg.solve(obs_obs_cov, obs_grid_cov).T
        return None

    def solve(
        self,
        values: np.ndarray,
        targets: np.ndarray | None = None,
        target_drift: np.ndarray | None = None,
    ) -> np.ndarray:
        """
        Solves the universal Kriging problem. Computes the Kriging weights if
        the `kriging_weights` attribute is not already set.
        """
        self._check_weights(targets, target_drift)
        values = np.append(
            np.asarray(values, dtype=float), np.zeros(self.drift.shape[1])
        )
        return self.kriging_weights @ values


def kriging_class(
    method: KrigMethod,
    variogram: Variogram,
    coords: np.ndarray,
    drift: np.ndarray | None = None,
    mean: float | None = None,
) -> Kriging:
    """Construct the Kriging class for a method"""
    match method.lower():
        case "simple":
            if mean is None:
                raise ValueError("Simple Kriging requires a known mean")
            return SimpleKriging(variogram, coords, mean)
        case "ordinary":
            return OrdinaryKriging(variogram, coords)
        case "universal":
            if drift is None:
                raise ValueError("Universal Kriging requires drift columns")
            return UniversalKriging(variogram, coords, drift)
        case _:
            raise ValueError(f"Unknown Kriging method: {method}")


def _neighbourhoods(
    obs_coords: np.ndarray,
    targets: np.ndarray,
    nmax: int | None,
    maxdist: float | None,
) -> dict[tuple[int, ...], list[int]]:
    """Group target indices by their set of neighbouring observations"""
    tree = cKDTree(obs_coords)
    n = len(obs_coords)
    groups: dict[tuple[int, ...], list[int]] = defaultdict(list)
    if nmax is None:
        for i, idx in enumerate(tree.query_ball_point(targets, r=maxdist)):
            groups[tuple(sorted(idx))].append(i)
        return groups
    k = min(nmax, n)
    dist, idx = tree.query(
        targets,
        k=k,
        distance_upper_bound=np.inf if maxdist is None else maxdist,
    )
    idx = idx.reshape(len(targets), k)
    for i, row in enumerate(idx):
        groups[tuple(sorted(int(j) for j in row if j < n))].append(i)
    return groups


def krige(
    obs: pl.DataFrame,
    targets: pl.DataFrame,
    value_col: str,
    variogram: Variogram,
    method: KrigMethod = "ordinary",
    coord_cols: list[str] = ["x", "y"],
    drift_cols: list[str] | None = None,
    mean: float | None = None,
    nmax: int | None = None,
    maxdist: float | None = None,
) -> pl.DataFrame:
    """
    Kriging prediction of observed values at a set of target positions.

    Parameters
    ----------
    obs : polars.DataFrame
        Observations, with unique positions.
    targets : polars.DataFrame
        Prediction positions, with the same position (and drift) columns as
        the observations.
    value_col : str
        Name of the column of observed values.
    variogram : Variogram
        The fitted variogram model.
    method : str
        One of "simple", "ordinary", "universal".
    coord_cols : list[str]
        Names of the easting and northing columns.
    drift_cols : list[str] | None
        Names of the drift columns, required for Universal Kriging.
    mean : float | None
        Known mean for Simple Kriging. Defaults to the mean of the observed
        values.
    nmax : int | None
        Optionally use only the `nmax` nearest observations for each target.
    maxdist : float | None
        Optionally use only observations within `maxdist` of each target.

    Returns
    -------
    targets : polars.DataFrame
        The input targets with additional "pred" and "var" columns. Targets
        with too few observations in their neighbourhood are NaN.
    """
    method = method.lower()  # type: ignore
    check_cols(obs, [value_col] + coord_cols + (drift_cols or []))
    check_cols(targets, coord_cols + (drift_cols or []))
    if method == "universal" and not drift_cols:
        raise ValueError("Universal Kriging requires drift columns")
    if nmax is not None and nmax < 1:
        raise ValueError("nmax must be at least 1")

    obs_xy = coords_array(obs, coord_cols)
    target_xy = coords_array(targets, coord_cols)
    values = obs.get_column(value_col).to_numpy().astype(float)
    drift = obs.select(drift_cols).to_numpy() if drift_cols else None
    target_drift = targets.select(drift_cols).to_numpy() if drift_cols else None
    if method == "simple" and mean is None:
        mean = float(values.mean())
        logging.info(f"Simple Kriging with the sample mean {mean:.4g}")

    pred = np.full(len(target_xy), np.nan)
    var = np.full(len(target_xy), np.nan)
    if nmax is None and maxdist is None:
        groups = {tuple(range(len(obs_xy))): list(range(len(target_xy)))}
    else:
        groups = _neighbourhoods(obs_xy, target_xy, nmax, maxdist)
    # Number of constraints: unbiasedness plus one per drift variable
    min_obs = 1
    if method == "universal" and drift_cols:
        min_obs += len(drift_cols)

    logging.info(
        f"{method.capitalize()} Kriging of {len(target_xy)} targets from "
        + f"{len(obs_xy)} observations"
    )
    for obs_idx, target_idx in groups.items():
        if len(obs_idx) < min_obs:
            continue
        o = np.array(obs_idx, dtype=int)
        t = np.array(target_idx, dtype=int)
        kriger = kriging_class(
            method,
            variogram,
            obs_xy[o],
            drift=None if drift is None else drift[o],
            mean=mean,
        )
        pred[t] = kriger.solve(
            values[o],
            target_xy[t],
            None if target_drift is None else target_drift[t],
        )
        var[t] = kriger.get_variance()

    return targets.with_columns(pl.Series("pred", pred), pl.Series("var", var))


def krige_grid(
    obs: pl.DataFrame,
    grid: xr.DataArray,
    value_col: str,
    variogram: Variogram,
    method: KrigMethod = "ordinary",
    mask: xr.DataArray | None = None,
    coord_cols: list[str] = ["x", "y"],
    coord_names: list[str] = ["y", "x"],
    drift_cols: list[str] | None = None,
    grid_drift: dict[str, xr.DataArray] | None = None,
    mean: float | None = None,
    nmax: int | None = None,
    maxdist: float | None = None,
) -> xr.Dataset:
    """
    Kriging of observations onto a grid.

    Parameters
    ----------
    obs : polars.DataFrame
        Observations, with position columns `coord_cols` in the reference
        system of the grid.
    grid : xarray.DataArray
        The prediction grid.
    value_col : str
        Name of the column of observed values.
    variogram : Variogram
        The fitted variogram model.
    method : str
        One of "simple", "ordinary", "universal".
    mask : xarray.DataArray | None
        Optional mask, grid cells with value True are not predicted (NaN).
    coord_cols : list[str]
        Names of the easting and northing columns of the observations.
    coord_names : list[str]
        Names of the northing and easting coordinates of the grid.
    drift_cols : list[str] | None
        Names of the drift columns of the observations.
    grid_drift : dict[str, xarray.DataArray] | None
        Drift values on the grid for each of the drift columns. Grid cells
        with missing drift values are not predicted.
    mean, nmax, maxdist
        See `krige`.

    Returns
    -------
    ds : xarray.Dataset
        With "pred" and "var" variables on the grid.
    """
    drift_cols = drift_cols or []
    points = grid_points(grid, mask, coord_names)
    points = points.rename(
        {name: col for name, col in zip(coord_names[::-1], coord_cols)}
    )
    if drift_cols:
        if grid_drift is None or any(c not in grid_drift for c in drift_cols):
            raise KeyError("grid_drift must contain all drift columns")
        idx = points.get_column("grid_idx").to_numpy()
        points = points.with_columns(
            [
                pl.Series(
                    c,
                    grid_drift[c].transpose(*coord_names).values.ravel()[idx],
                )
                for c in drift_cols
            ]
        )
        points = points.filter(
            pl.all_horizontal([pl.col(c).is_not_nan() for c in drift_cols])
        )

    result = krige(
        obs,
        points,
        value_col,
        variogram,
        method=method,
        coord_cols=coord_cols,
        drift_cols=drift_cols or None,
        mean=mean,
        nmax=nmax,
        maxdist=maxdist,
    )

    shape = tuple(grid.sizes[c] for c in coord_names)
    grid_idx = result.get_column("grid_idx").to_numpy()
    data_vars = {}
    for var_name in ("pred", "var"):
        out = np.full(shape, np.nan)
        np.put(out, grid_idx, result.get_column(var_name).to_numpy())
        data_vars[var_name] = (coord_names, out)
    ds = xr.Dataset(
        data_vars,
        coords={c: grid.coords[c].values for c in coord_names},
        attrs=dict(grid.attrs),
    )
    ds.attrs["method"] = method
    ds.attrs["variogram"] = repr(variogram)
    return ds
