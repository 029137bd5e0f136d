r"""Utility functions for `station_gridding`"""

from collections.abc import Iterable
import inspect
import logging
import numpy as np
import polars as pl
from warnings import warn

# Accepted names for logging levels, "warn" as shorthand for "warning"
_LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class ColumnNotFoundError(Exception):
    """Error raised when a DataFrame is missing a required column"""

    pass


def adjust_small_negative(
    var: np.ndarray,
    atol: float = 1e-8,
) -> np.ndarray:
    """
    Set small negative values of a variance to 0.

    Kriging variances at (or very close to) observation positions can be
    slightly negative due to rounding in the solution of the Kriging system.
    Values in (-atol, 0) are set to 0 with a warning, larger negative values
    are left unchanged.

    Parameters
    ----------
    var : numpy.ndarray
        The variance.
    atol : float
        Tolerance for a negative value to be considered small.

    Returns
    -------
    var : numpy.ndarray
        A copy of the input with small negative values set to 0.
    """
    small_negative = (var < 0.0) & (var > -atol)
    out = var.copy()
    if small_negative.any():
        warn("Small negative variance values are detected. Setting to 0.")
        logging.debug(f"Small negative values: {var[small_negative]}")
        out[small_negative] = 0.0
    return out


def find_nearest(
    array: Iterable,
    values: Iterable,
) -> tuple[list[int], np.ndarray]:
    """
    Find the elements of a 1d array (for example a grid or raster coordinate)
    nearest to each of a set of values.

    Parameters
    ----------
    array : Iterable
        The array to search, for example the values of a coordinate.
    values : Iterable
        The values to look up, for example observation positions.

    Returns
    -------
    idx : list[int]
        Index of the nearest element of `array` for each value.
    nearest : numpy.ndarray
        The nearest elements of `array`.
    """
    array = np.asarray(array)
    values = np.asarray(values)
    idx = np.abs(values[:, None] - array[None, :]).argmin(axis=1)
    return idx.tolist(), array[idx]


def check_cols(
    df: pl.DataFrame,
    cols: list[str],
) -> None:
    """
    Check that a DataFrame has all of a list of columns. The error message
    names the calling function.
    """
    missing_cols = [c for c in cols if c not in df.columns]
    if missing_cols:
        caller = inspect.stack()[1].function
        raise ColumnNotFoundError(
            f"{caller}: DataFrame is missing required columns: "
            + ", ".join(missing_cols)
        )
    return None


def coords_array(
    df: pl.DataFrame,
    coord_cols: list[str] = ["x", "y"],
) -> np.ndarray:
    """Get an (n, 2) array of coordinates from columns of a DataFrame"""
    check_cols(df, coord_cols)
    return df.select(coord_cols).to_numpy().astype(float)


def init_logging(
    file: str | None = None,
    level: str = "info",
) -> None:
    """
    Initialise the root logger, replacing any existing configuration.
    Warnings raised with `warnings.warn` are sent to the log.

    Parameters
    ----------
    file : str | None
        File to append log messages to. Log messages are printed to stderr
        if not set.
    level : str
        Level of logging, one of: "debug", "info", "warn", "error",
        "critical" (case insensitive).
    """
    if level.lower() not in _LOG_LEVELS:
        raise ValueError(f"Unknown logging level: {level}")

    logging.basicConfig(
        filename=file,
        filemode="a",
        encoding="utf-8",
        format="%(levelname)s at %(asctime)s : %(message)s",
        level=_LOG_LEVELS[level.lower()],
        force=True,
    )
    logging.captureWarnings(True)
    return None
