"""
Variograms
----------

Variogram model classes, the empirical (sample) variogram, and fitting of
model parameters to a sample variogram.

All models evaluate to 0 at distance 0, the nugget is the limit of the
semivariance as the distance approaches 0. Consequently Kriging with a nugget
still honours the observed values at the observation positions.
"""

from dataclasses import dataclass, replace
from abc import ABC, abstractmethod
import logging
from typing import ClassVar
import numpy as np
import polars as pl
import xarray as xr

from scipy.optimize import curve_fit
from scipy.special import gamma, kv

from .distances import anisotropic_coords, pair_angles, planar_distance
from .types import FitMethod, MaternModel, ModelName


@dataclass()
class Variogram(ABC):
    """Generic Variogram Class - defines the abstract class"""

    # Names of the parameters that can be fitted, mapped to the name of the
    # flag in `fit_variogram` controlling whether the parameter is fitted.
    fit_params: ClassVar[dict[str, str]] = {}
    short_name: ClassVar[str] = ""
    bounded: ClassVar[bool] = False

    @abstractmethod
    def _evaluate(
        self, distance_matrix: np.ndarray | xr.DataArray
    ) -> np.ndarray | xr.DataArray:
        """Evaluate the model, without setting distance 0 to 0"""
        raise NotImplementedError("Not implemented for base Variogram class")

    @property
    def sill(self) -> float | None:
        """The total sill (psill + nugget), None for unbounded models"""
        return None

    @property
    def anisotropy(self) -> tuple[float, float] | None:
        """Geometric anisotropy (angle, ratio) if the model has any"""
        return getattr(self, "anis", None)

    def fit(
        self, distance_matrix: np.ndarray | xr.DataArray
    ) -> np.ndarray | xr.DataArray:
        """Fit the Variogram model to a distance matrix"""
        with np.errstate(invalid="ignore", divide="ignore"):
            out = self._evaluate(distance_matrix)
        if isinstance(out, xr.DataArray):
            out = out.where(distance_matrix != 0, 0.0)
            out.name = "variogram"
            return out
        return np.where(np.asarray(distance_matrix) == 0, 0.0, out)

    def covariance(
        self, distance_matrix: np.ndarray | xr.DataArray
    ) -> np.ndarray | xr.DataArray:
        """
        Covariance function of the model, sill - variogram. Only defined for
        bounded models.
        """
        if self.sill is None:
            raise ValueError(
                f"{type(self).__name__} is unbounded, covariance is undefined"
            )
        return variogram_to_covariance(self.fit(distance_matrix), self.sill)


@dataclass()
class NuggetVariogram(Variogram):
    """
    Pure nugget model, no spatial correlation.

    Parameters
    ----------
    nugget : float
    """

    nugget: float

    fit_params: ClassVar[dict[str, str]] = {"nugget": "fit_nugget"}
    short_name: ClassVar[str] = "Nug"
    bounded: ClassVar[bool] = True

    @property
    def sill(self) -> float:  # noqa: D102
        return self.nugget

    def _evaluate(self, distance_matrix):
        return distance_matrix * 0.0 + self.nugget


@dataclass()
class LinearVariogram(Variogram):
    """
    Linear model

    Parameters
    ----------
    slope : float | np.ndarray
    nugget : float | np.ndarray
    """

    slope: float
    nugget: float = 0.0

    fit_params: ClassVar[dict[str, str]] = {
        "slope": "fit_sill",
        "nugget": "fit_nugget",
    }
    short_name: ClassVar[str] = "Lin"

    def _evaluate(self, distance_matrix):
        return self.slope * distance_matrix + self.nugget


@dataclass()
class PowerVariogram(Variogram):
    """
    Power model

    Parameters
    ----------
    scale : float
    exponent : float
        Must be in the interval (0, 2).
    nugget : float
    """

    scale: float
    exponent: float
    nugget: float = 0.0

    fit_params: ClassVar[dict[str, str]] = {
        "scale": "fit_sill",
        "exponent": "fit_range",
        "nugget": "fit_nugget",
    }
    short_name: ClassVar[str] = "Pow"

    def __post_init__(self) -> None:
        if not 0 < self.exponent < 2:
            raise ValueError("Power model exponent must be in (0, 2)")
        return None

    def _evaluate(self, distance_matrix):
        return (
            self.scale * np.power(distance_matrix, self.exponent) + self.nugget
        )


@dataclass()
class _BoundedVariogram(Variogram):
    """
    Shared parameters of the models that reach a sill.

    Parameters
    ----------
    psill : float
        The partial sill, the variance of the spatially correlated component.
    nugget : float
        Limit of the semivariance at distance approaching 0.
    range : float | None
        The range parameter. One of range and effective_range must be set.
    effective_range : float | None
        The distance at which the model reaches (approximately 95% of) the
        sill. Computed from the range if not set.
    anis : tuple[float, float] | None
        Geometric anisotropy, (angle, ratio). The angle of the major axis in
        degrees clockwise from north and the ratio minor range / major range.
    """

    psill: float
    nugget: float = 0.0
    range: float | None = None
    effective_range: float | None = None
    anis: tuple[float, float] | None = None

    fit_params: ClassVar[dict[str, str]] = {
        "psill": "fit_sill",
        "range": "fit_range",
        "nugget": "fit_nugget",
    }
    bounded: ClassVar[bool] = True
    # effective_range = range * _range_factor
    _range_factor: ClassVar[float] = 1.0

    def __post_init__(self) -> None:
        if self.range is None and self.effective_range is None:
            raise ValueError(
                "One of range and effective_range must be specified"
            )
        if self.range is None and self.effective_range is not None:
            self.range = self.effective_range / self._range_factor
        self.effective_range = self.range * self._range_factor
        if self.anis is not None:
            self.anis = (float(self.anis[0]), float(self.anis[1]))
            if not 0 < self.anis[1] <= 1:
                raise ValueError("Anisotropy ratio must be in (0, 1]")
        return None

    @property
    def sill(self) -> float:  # noqa: D102
        return self.psill + self.nugget


@dataclass()
class SphericalVariogram(_BoundedVariogram):
    """
    Spherical Model, reaches the sill exactly at the range.

    Parameters are as for the other bounded models, the effective range is
    equal to the range.
    """

    short_name: ClassVar[str] = "Sph"

    def _evaluate(self, distance_matrix):
        h = np.minimum(distance_matrix / self.range, 1.0)
        return self.psill * (1.5 * h - 0.5 * np.power(h, 3)) + self.nugget


@dataclass()
class ExponentialVariogram(_BoundedVariogram):
    """
    Exponential Model

    The effective range is 3 times the range parameter.
    """

    short_name: ClassVar[str] = "Exp"
    _range_factor: ClassVar[float] = 3.0

    def _evaluate(self, distance_matrix):
        return (
            self.psill * (1.0 - np.exp(-(distance_matrix / self.range)))
            + self.nugget
        )


@dataclass()
class GaussianVariogram(_BoundedVariogram):
    """
    Gaussian Model

    The effective range is sqrt(3) times the range parameter.
    """

    short_name: ClassVar[str] = "Gau"
    _range_factor: ClassVar[float] = float(np.sqrt(3.0))

    def _evaluate(self, distance_matrix):
        return (
            self.psill
            * (
                1.0
                - np.exp(
                    -(
                        np.power(distance_matrix, 2.0)
                        / np.power(self.range, 2.0)
                    )
                )
            )
            + self.nugget
        )


@dataclass()
class MaternVariogram(_BoundedVariogram):
    """
    Matern Models

    Same args as the bounded Variogram classes with additional nu, method
    parameters.

    Sklearn:

    1) This is called "sklearn" because if d/range = 1.0 and nu=0.5, it gives
       1/e correlation...
    2) It is used in sklearn GP and in gridded temperature products.
    3) The "2" is inside the square root for middle and right.

    Reference; see chapter 4.2 of:
    Rasmussen, C. E., & Williams, C. K. I. (2005).
    Gaussian Processes for Machine Learning. The MIT Press.
    https://doi.org/10.7551/mitpress/3206.001.0001

    GeoStatic:

    Uses the range scaling in gstat, there are no square root 2 or nu in
    middle and right. Yields the same answer to sklearn if nu==0.5 but they
    are otherwise different.

    Karspeck:

    Uses the form in Karspeck et al. (2012), the 2 is outside the square root
    for middle and right.

    The effective range is 2 times the range parameter if 0.5 <= nu <= 10,
    otherwise 3 times.

    Parameters
    ----------
    nu : float
        Smoothing parameter, shapes to a smooth or rough variogram function
        (called kappa in gstat).
    method : MaternModel
        One of "sklearn", "gstat", or "karspeck"
    """

    nu: float = 0.5
    method: MaternModel = "sklearn"

    short_name: ClassVar[str] = "Mat"

    def __post_init__(self) -> None:
        if self.method.lower() not in ("sklearn", "gstat", "karspeck"):
            raise ValueError("Unexpected 'method' value")
        return super().__post_init__()

    @property
    def _range_factor(self) -> float:  # type: ignore[override]
        return 2.0 if 0.5 <= self.nu <= 10 else 3.0

    @property
    def _left(self):
        return 1.0 / (gamma(self.nu) * np.power(2.0, self.nu - 1.0))

    def _scaled(self, dist_over_range):
        match self.method.lower():
            case "sklearn":
                return np.sqrt(2.0 * self.nu) * dist_over_range
            case "gstat":
                return dist_over_range
            case "karspeck":
                return 2.0 * np.sqrt(self.nu) * dist_over_range
            case _:
                raise ValueError("Unexpected 'method' value")

    def _evaluate(self, distance_matrix):
        scaled = self._scaled(distance_matrix / self.range)
        correlation = (
            self._left * np.power(scaled, self.nu) * kv(self.nu, scaled)
        )
        return self.psill * (1 - correlation) + self.nugget


MODELS: dict[str, type[Variogram]] = {
    cls.short_name: cls
    for cls in (
        NuggetVariogram,
        LinearVariogram,
        PowerVariogram,
        SphericalVariogram,
        ExponentialVariogram,
        GaussianVariogram,
        MaternVariogram,
    )
}


def variogram_model(
    name: ModelName,
    psill: float = 0.0,
    range: float | None = None,
    nugget: float = 0.0,
    **kwargs,
) -> Variogram:
    """
    Construct a variogram model from its short name, similar to gstat's vgm.

    Parameters
    ----------
    name : str
        One of "Nug", "Lin", "Pow", "Sph", "Exp", "Gau", "Mat".
    psill : float
        The partial sill. For "Nug" this is added to the nugget, for "Lin" it is
        the semivariance increase over the range (or the slope if range is not
        set), for "Pow" it is the scale.
    range : float | None
        The range parameter. For "Pow" this is the exponent.
    nugget : float
        The nugget.
    **kwargs
        Additional model parameters, for example nu and method for "Mat", or
        anis for bounded models.

    Returns
    -------
    model : Variogram
    """
    match name:
        case "Nug":
            return NuggetVariogram(nugget=nugget + psill)
        case "Lin":
            slope = psill / range if range else psill
            return LinearVariogram(slope=slope, nugget=nugget)
        case "Pow":
            if range is None:
                raise ValueError("Power model requires range (the exponent)")
            return PowerVariogram(scale=psill, exponent=range, nugget=nugget)
        case "Sph" | "Exp" | "Gau" | "Mat":
            if range is None:
                raise ValueError(f"{name} model requires a range")
            return MODELS[name](
                psill=psill, nugget=nugget, range=range, **kwargs
            )
        case _:
            raise ValueError(f"Unknown variogram model: {name}")


def variogram_to_covariance(
    variogram: np.ndarray | xr.DataArray,
    variance: np.ndarray | float,
) -> np.ndarray | xr.DataArray:
    """
    Convert a variogram matrix to a covariance matrix.

    This is given by:
        covariance = variance - variogram

    Parameters
    ----------
    variogram : numpy.ndarray | xarray.DataArray
        The variogram matrix, output of Variogram.fit.
    variance : numpy.ndarray | float
        The variance

    Returns
    -------
    cov : numpy.ndarray | xarray.DataArray
        The covariance matrix
    """
    cov = variance - variogram
    if isinstance(cov, xr.DataArray):
        cov.name = "covariance"
    return cov


def model_distance(
    model: Variogram,
    a: np.ndarray,
    b: np.ndarray | None = None,
) -> np.ndarray:
    """
    Distances between positions as seen by a variogram model: positions are
    transformed by the model's geometric anisotropy, if any, before computing
    planar distances.
    """
    anis = model.anisotropy
    if anis is not None:
        a = anisotropic_coords(a, *anis)
        b = None if b is None else anisotropic_coords(b, *anis)
    return planar_distance(a, b)


def empirical_variogram(
    coords: np.ndarray,
    values: np.ndarray,
    cutoff: float | None = None,
    width: float | None = None,
    alpha: float | list[float] | None = None,
    tol_hor: float = 22.5,
    cressie: bool = False,
    anis: tuple[float, float] | None = None,
) -> pl.DataFrame:
    """
    Compute the empirical (sample) semivariogram of observations.

    Pairs of observations are grouped into distance bins of size `width` up to
    the `cutoff` distance, (0, width], (width, 2 * width], .... For each bin
    the semivariance is computed with Matheron's estimator

        gamma(h) = 1 / (2 N(h)) sum (z(s_i) - z(s_j))^2

    or the robust estimator of Cressie and Hawkins (1980).

    Parameters
    ----------
    coords : numpy.ndarray
        Array of shape (n, 2) of projected positions (x, y).
    values : numpy.ndarray
        Observed values, or residuals from a trend.
    cutoff : float | None
        Maximum pair distance. Defaults to one third of the diagonal of the
        bounding box of the positions.
    width : float | None
        Width of the distance bins. Defaults to cutoff / 15.
    alpha : float | list[float] | None
        Direction(s), in degrees clockwise from north, for directional
        variograms. Pairs are included in a direction if the angle between the
        pair vector and the direction is within `tol_hor`. All pairs are used
        if not set (omnidirectional).
    tol_hor : float
        Angular tolerance (degrees) for directional variograms.
    cressie : bool
        Use the Cressie-Hawkins robust estimator.
    anis : tuple[float, float] | None
        Compute distances on coordinates transformed by a geometric anisotropy
        (angle, ratio).

    Returns
    -------
    empirical : polars.DataFrame
        With columns "np" (number of pairs), "dist" (mean pair distance),
        "gamma" (semivariance), "dir_hor" (direction, 0 if omnidirectional).
        Bins without pairs are omitted.
    """
    coords = np.atleast_2d(np.asarray(coords, dtype=float))
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n < 2:
        raise ValueError("At least 2 observations are required")
    if coords.shape[0] != n:
        raise ValueError("Length of values must match number of positions")

    if cutoff is None:
        cutoff = float(np.hypot(*np.ptp(coords, axis=0))) / 3
    if width is None:
        width = cutoff / 15
    if cutoff <= 0 or width <= 0:
        raise ValueError("cutoff and width must be positive")
    n_bins = int(np.ceil(cutoff / width))

    iu = np.triu_indices(n, k=1)
    angles = pair_angles(coords)[iu]
    if anis is not None:
        coords = anisotropic_coords(coords, *anis)
    dist = planar_distance(coords)[iu]
    diff = (values[:, None] - values[None, :])[iu]

    n_zero = int(np.sum(dist == 0))
    if n_zero:
        logging.warning(
            f"{n_zero} pairs of observations at distance 0 are ignored"
        )

    directions = [None] if alpha is None else np.atleast_1d(alpha).tolist()
    frames: list[pl.DataFrame] = []
    for direction in directions:
        keep = (dist > 0) & (dist <= cutoff)
        if direction is not None:
            delta = np.abs(angles - direction % 180.0)
            delta = np.minimum(delta, 180.0 - delta)
            keep &= delta <= tol_hor
        d = dist[keep]
        dz = diff[keep]
        bins = np.minimum(np.ceil(d / width).astype(int) - 1, n_bins - 1)

        n_pairs = np.bincount(bins, minlength=n_bins)
        dist_sum = np.bincount(bins, weights=d, minlength=n_bins)
        if cressie:
            root_sum = np.bincount(
                bins, weights=np.sqrt(np.abs(dz)), minlength=n_bins
            )
        else:
            sq_sum = np.bincount(bins, weights=dz * dz, minlength=n_bins)

        has_pairs = n_pairs > 0
        n_pairs = n_pairs[has_pairs]
        mean_dist = dist_sum[has_pairs] / n_pairs
        if cressie:
            mean_root = root_sum[has_pairs] / n_pairs
            semivar = (
                np.power(mean_root, 4) / (0.457 + 0.494 / n_pairs) / 2.0
            )
        else:
            semivar = sq_sum[has_pairs] / (2.0 * n_pairs)

        frames.append(
            pl.DataFrame(
                {
                    "np": n_pairs.astype(np.int64),
                    "dist": mean_dist,
                    "gamma": semivar,
                    "dir_hor": np.full(
                        len(n_pairs), 0.0 if direction is None else direction
                    ),
                }
            )
        )
    return pl.concat(frames)


def fit_weights(
    empirical: pl.DataFrame,
    fit_method: FitMethod = 7,
) -> np.ndarray:
    """
    Weights for each bin of an empirical variogram used in weighted least
    squares fitting.

    Parameters
    ----------
    empirical : polars.DataFrame
        Output of `empirical_variogram`.
    fit_method : int
        1: number of pairs N_j; 2: N_j / gamma_j^2; 6: unweighted (ordinary
        least squares); 7: N_j / h_j^2 (default, as gstat).

    Returns
    -------
    weights : numpy.ndarray
    """
    n_pairs = empirical.get_column("np").to_numpy().astype(float)
    match fit_method:
        case 1:
            return n_pairs
        case 2:
            semivar = empirical.get_column("gamma").to_numpy()
            semivar = np.maximum(semivar, np.finfo(float).eps)
            return n_pairs / np.power(semivar, 2)
        case 6:
            return np.ones_like(n_pairs)
        case 7:
            dist = empirical.get_column("dist").to_numpy()
            return n_pairs / np.power(dist, 2)
        case _:
            raise ValueError(f"Unknown fit_method: {fit_method}")


def weighted_sserr(
    empirical: pl.DataFrame,
    model: Variogram,
    fit_method: FitMethod = 7,
) -> float:
    """Weighted sum of squared errors of a model against a sample variogram"""
    weights = fit_weights(empirical, fit_method)
    resid = empirical.get_column("gamma").to_numpy() - model.fit(
        empirical.get_column("dist").to_numpy()
    )
    return float(np.sum(weights * resid * resid))


def _param_bounds(
    name: str,
    max_dist: float,
) -> tuple[float, float]:
    match name:
        case "range":
            return max_dist * 1e-9, np.inf
        case "exponent":
            return 1e-6, 2.0 - 1e-6
        case _:
            return 0.0, np.inf


def fit_variogram(
    empirical: pl.DataFrame,
    model: Variogram,
    fit_method: FitMethod = 7,
    fit_sill: bool = True,
    fit_range: bool = True,
    fit_nugget: bool = True,
) -> Variogram:
    """
    Fit the parameters of a variogram model to an empirical variogram by
    weighted non-linear least squares (scipy.optimize.curve_fit). The input
    model provides the initial parameter values, and the values of any
    parameters that are not fitted.

    Parameters
    ----------
    empirical : polars.DataFrame
        Output of `empirical_variogram`, with a single direction.
    model : Variogram
        Model with initial parameter values.
    fit_method : int
        Weighting of the bins, see `fit_weights`.
    fit_sill : bool
        Fit the partial sill (or slope / scale for unbounded models).
    fit_range : bool
        Fit the range (or exponent for the power model).
    fit_nugget : bool
        Fit the nugget.

    Returns
    -------
    fitted : Variogram
        A new model instance with fitted parameters. Parameters are bounded
        to be non-negative.

    Raises
    ------
    RuntimeError
        If the least squares minimisation does not converge.
    """
    if empirical.get_column("dir_hor").n_unique() > 1:
        raise ValueError(
            "Cannot fit to a directional variogram with multiple directions, "
            + "filter to a single direction or use anis"
        )
    if empirical.height == 0:
        raise ValueError("Empirical variogram is empty")
    flags = {
        "fit_sill": fit_sill,
        "fit_range": fit_range,
        "fit_nugget": fit_nugget,
    }
    free = [p for p, flag in model.fit_params.items() if flags[flag]]

    dist = empirical.get_column("dist").to_numpy()
    semivar = empirical.get_column("gamma").to_numpy()
    sigma = 1.0 / np.sqrt(fit_weights(empirical, fit_method))

    if not free:
        return model

    max_dist = float(dist.max())
    bounds = [_param_bounds(p, max_dist) for p in free]
    lower, upper = (np.array(b) for b in zip(*bounds))
    p0 = np.clip([float(getattr(model, p)) for p in free], lower, upper)

    def _func(h, *params):
        trial = replace(model, **dict(zip(free, params)))
        with np.errstate(invalid="ignore", divide="ignore"):
            return trial._evaluate(h)

    popt, _ = curve_fit(
        _func,
        dist,
        semivar,
        p0=p0,
        sigma=sigma,
        bounds=(lower, upper),
    )
    fitted = replace(model, **{p: float(v) for p, v in zip(free, popt)})
    logging.info(
        f"Fitted {type(fitted).__name__}: "
        + ", ".join(f"{p}={getattr(fitted, p):.4g}" for p in free)
        + f", SSErr={weighted_sserr(empirical, fitted, fit_method):.4g}"
    )
    return fitted


def initial_guess(
    empirical: pl.DataFrame,
    name: ModelName,
    **kwargs,
) -> Variogram:
    """
    Initial parameter values for fitting a model to an empirical variogram:
    the nugget is the semivariance of the first bin, the partial sill is the
    maximum semivariance minus the nugget, and the range is one third of the
    maximum distance.

    Parameters
    ----------
    empirical : polars.DataFrame
        Output of `empirical_variogram`.
    name : str
        Short name of the model, see `variogram_model`.
    **kwargs
        Additional model parameters.
    """
    empirical = empirical.sort("dist")
    semivar = empirical.get_column("gamma").to_numpy()
    max_dist = float(empirical.get_column("dist").max())  # type: ignore
    nugget = float(semivar[0])
    psill = max(float(semivar.max()) - nugget, float(semivar.max()) * 0.1)
    if name == "Pow":
        return variogram_model(name, psill=psill, range=1.0, nugget=nugget)
    if name == "Lin":
        return variogram_model(
            name, psill=psill, range=max_dist, nugget=nugget
        )
    return variogram_model(
        name, psill=psill, range=max_dist / 3, nugget=nugget, **kwargs
    )
