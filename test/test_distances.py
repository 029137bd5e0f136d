import pytest  # noqa: F401
import numpy as np
import polars as pl

from station_gridding.distances import (
    anisotropic_coords,
    euclidean_distance,
    haversine_distance,
    pair_angles,
    planar_distance,
)


def test_planar_distance() -> None:
    a = np.array([[0.0, 0.0], [3.0, 4.0], [6.0, 8.0]])
    dist = planar_distance(a)

    assert dist.shape == (3, 3)
    assert np.all(np.diag(dist) == 0.0)
    assert np.allclose(dist, dist.T)
    assert dist[0, 1] == pytest.approx(5.0)
    assert dist[0, 2] == pytest.approx(10.0)

    b = np.array([[0.0, 4.0]])
    cross = planar_distance(a, b)
    assert cross.shape == (3, 1)
    assert np.allclose(cross[:, 0], [4.0, 3.0, np.hypot(6, 4)])
    return None


def test_haversine_distance() -> None:
    df = pl.DataFrame({"lat": [0.0, 1.0, 0.0], "lon": [0.0, 0.0, 180.0]})
    dist = haversine_distance(df)

    one_degree = 6371.0 * np.pi / 180
    assert dist[0, 1] == pytest.approx(one_degree)
    # Antipodal points
    assert dist[0, 2] == pytest.approx(6371.0 * np.pi)
    assert np.allclose(dist, dist.T)
    return None


def test_euclidean_distance() -> None:
    df = pl.DataFrame({"lat": [0.0, 0.0, 90.0], "lon": [0.0, 180.0, 0.0]})
    dist = euclidean_distance(df, radius=1.0)

    # Chord through the centre of the sphere is the diameter
    assert dist[0, 1] == pytest.approx(2.0)
    assert dist[0, 2] == pytest.approx(np.sqrt(2.0))
    assert np.all(np.diag(dist) == 0.0)

    # Chord is never longer than the great circle distance
    great_circle = haversine_distance(df, radius=1.0)
    assert np.all(dist <= great_circle + 1e-12)
    return None


@pytest.mark.parametrize(
    "name, angle, along, across",
    [
        ("north", 0.0, [0.0, 1.0], [1.0, 0.0]),
        ("east", 90.0, [1.0, 0.0], [0.0, 1.0]),
        ("north-east", 45.0, [1.0, 1.0], [1.0, -1.0]),
    ],
)
def test_anisotropic_coords(name, angle, along, across) -> None:
    ratio = 0.5
    points = np.array([[0.0, 0.0], along, across])
    transformed = anisotropic_coords(points, angle, ratio)
    dist = planar_distance(transformed)
    length = np.hypot(*along)

    # Distances along the major axis are unchanged
    assert dist[0, 1] == pytest.approx(length)
    # Distances along the minor axis are stretched by 1 / ratio
    assert dist[0, 2] == pytest.approx(length / ratio)
    return None


def test_anisotropic_coords_isotropic() -> None:
    rng = np.random.default_rng(7)
    points = rng.random((10, 2)) * 1000

    transformed = anisotropic_coords(points, 30.0, 1.0)
    assert np.allclose(planar_distance(transformed), planar_distance(points))

    with pytest.raises(ValueError):
        anisotropic_coords(points, 30.0, 0.0)
    with pytest.raises(ValueError):
        anisotropic_coords(points, 30.0, 1.5)
    return None


def test_pair_angles() -> None:
    points = np.array([[0.0, 0.0], [1.0, 1.0], [1.0, -1.0], [-1.0, 0.0]])
    angles = pair_angles(points)

    assert angles[0, 1] == pytest.approx(45.0)
    assert angles[0, 2] == pytest.approx(135.0)
    assert angles[0, 3] == pytest.approx(90.0)
    # Direction and its opposite are equivalent
    assert np.allclose(angles, angles.T)
    assert np.all((angles >= 0) & (angles < 180))
    return None
