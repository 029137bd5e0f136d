"""
Functions for calculating distances between observation positions and
prediction positions.

Analyses are performed in a projected coordinate reference system, so planar
(Euclidean) distances are used for interpolation. Great-circle distances are
available for data in decimal degrees.
"""

import numpy as np
import polars as pl
from sklearn.metrics.pairwise import euclidean_distances, haversine_distances

from .constants import RADIUS_OF_EARTH_KM
from .utils import check_cols


def planar_distance(
    a: np.ndarray,
    b: np.ndarray | None = None,
) -> np.ndarray:
    """
    Euclidean distance matrix between two sets of projected coordinates.

    Parameters
    ----------
    a : numpy.ndarray
        Array of shape (n, 2) of coordinates (x, y).
    b : numpy.ndarray | None
        Array of shape (m, 2) of coordinates (x, y). If not set then the
        pairwise distances between the positions in `a` are computed.

    Returns
    -------
    dist : numpy.ndarray
        Array of shape (n, m) (or (n, n)) of distances in the units of the
        coordinate reference system.
    """
    a = np.atleast_2d(np.asarray(a, dtype=float))
    if b is None:
        dist = euclidean_distances(a)
        # Exact zeros on the diagonal, sklearn can return tiny values
        np.fill_diagonal(dist, 0.0)
        return dist
    b = np.atleast_2d(np.asarray(b, dtype=float))
    return euclidean_distances(a, b)


def haversine_distance(
    df: pl.DataFrame,
    radius: float = RADIUS_OF_EARTH_KM,
    lat_col: str = "lat",
    lon_col: str = "lon",
) -> np.ndarray:
    """
    Calculate the great circle distance matrix between all positions in a
    DataFrame (specified in decimal degrees)

    Parameters
    ----------
    df : polars.DataFrame
        DataFrame containing latitude and longitude columns.
    radius : float
        The radius of the sphere used for the calculation. Defaults to the
        radius of the earth in km (6371.0 km).
    lat_col : str
        Name of the latitude column.
    lon_col : str
        Name of the longitude column.

    Returns
    -------
    dist : numpy.ndarray
        The haversine distances between all pairs of positions.
    """
    check_cols(df, [lat_col, lon_col])
    pos = np.radians(df.select([lat_col, lon_col]).to_numpy())
    return haversine_distances(pos) * radius


def euclidean_distance(
    df: pl.DataFrame,
    radius: float = RADIUS_OF_EARTH_KM,
    lat_col: str = "lat",
    lon_col: str = "lon",
) -> np.ndarray:
    """
    Calculate the Euclidean (chord) distance matrix between all positions on
    the earth (specified in decimal degrees).

    d = SQRT((x_2-x_1)**2 + (y_2-y_1)**2 + (z_2-z_1)**2)

    where

    (x_n y_n z_n) = ( Rcos(lat)cos(lon) Rcos(lat)sin(lon) Rsin(lat) )

    Parameters
    ----------
    df : polars.DataFrame
        DataFrame containing latitude and longitude columns.
    radius : float
        The radius of the sphere used for the calculation. Defaults to the
        radius of the earth in km (6371.0 km).
    lat_col : str
        Name of the latitude column.
    lon_col : str
        Name of the longitude column.

    Returns
    -------
    dist : numpy.ndarray
        The direct distance between all pairs of positions through the sphere
        defined by the radius parameter.
    """
    check_cols(df, [lat_col, lon_col])
    lat = np.radians(df.get_column(lat_col).to_numpy())
    lon = np.radians(df.get_column(lon_col).to_numpy())
    xyz = radius * np.column_stack(
        [np.cos(lat) * np.cos(lon), np.cos(lat) * np.sin(lon), np.sin(lat)]
    )
    dist = euclidean_distances(xyz)
    np.fill_diagonal(dist, 0.0)
    return dist


def anisotropic_coords(
    coords: np.ndarray,
    angle: float,
    ratio: float,
) -> np.ndarray:
    """
    Transform coordinates such that geometric anisotropy becomes isotropy.

    The anisotropy is described as in gstat: the direction of the major axis
    (the direction of greatest continuity) is `angle` degrees clockwise from
    north, and the range in the minor direction is `ratio` times the range in
    the major direction. Distances along the minor axis are stretched by
    1 / ratio, so that Euclidean distances computed on the transformed
    coordinates can be used with an isotropic variogram model.

    Parameters
    ----------
    coords : numpy.ndarray
        Array of shape (n, 2) of projected coordinates (x = east, y = north).
    angle : float
        Direction of the major axis in degrees clockwise from north.
    ratio : float
        Anisotropy ratio, minor range / major range. 0 < ratio <= 1.

    Returns
    -------
    coords : numpy.ndarray
        Transformed coordinates of shape (n, 2): the first column is the
        position along the major axis, the second the (scaled) position along
        the minor axis.
    """
    if not 0 < ratio <= 1:
        raise ValueError("Anisotropy ratio must be in (0, 1]")
    coords = np.atleast_2d(np.asarray(coords, dtype=float))
    theta = np.radians(angle)
    major = np.array([np.sin(theta), np.cos(theta)])
    minor = np.array([np.cos(theta), -np.sin(theta)])
    return np.column_stack([coords @ major, (coords @ minor) / ratio])


def pair_angles(coords: np.ndarray) -> np.ndarray:
    """
    Direction of the vector between each pair of positions, in degrees
    clockwise from north, folded into [0, 180) as direction and its opposite
    are equivalent for a variogram.

    Parameters
    ----------
    coords : numpy.ndarray
        Array of shape (n, 2) of projected coordinates (x = east, y = north).

    Returns
    -------
    angles : numpy.ndarray
        Array of shape (n, n). The diagonal is meaningless (set to 0).
    """
    coords = np.atleast_2d(np.asarray(coords, dtype=float))
    dx = coords[None, :, 0] - coords[:, None, 0]
    dy = coords[None, :, 1] - coords[:, None, 1]
    angles = np.degrees(np.arctan2(dx, dy)) % 180.0
    return angles
