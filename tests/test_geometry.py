from __future__ import annotations

import numpy as np
import pytest

from crossview.core.distortion import RationalDistortion
from crossview.core.geometry import (
    apply_homography,
    clamp_galvo_coordinate,
    homogeneous_transform,
    invert_homography,
    normalize_homography,
    pixel_grid,
    project_points,
    rotation_matrix,
    rotation_vector,
)


def test_apply_homography_matches_matrix_product() -> None:
    H = np.array([[1.1, 0.02, 5.0], [-0.01, 0.95, -3.0], [1e-4, 2e-4, 1.0]])
    pts = np.array([[10.0, 20.0], [300.0, 100.0]])
    out = apply_homography(H, pts)
    for p, q in zip(pts, out):
        X, Y, Z = H @ np.array([p[0], p[1], 1.0])
        np.testing.assert_allclose(q, [X / Z, Y / Z], rtol=1e-12)


def test_apply_homography_zero_denominator_uses_epsilon() -> None:
    H = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 0.0]])
    out = apply_homography(H, np.array([[2.0, 3.0]]), eps=1e-6)
    assert np.all(np.isfinite(out))
    np.testing.assert_allclose(out[0], [2.0e6, 3.0e6])


def test_homogeneous_transform_is_undivided() -> None:
    H = np.array([[2.0, 0.0, 1.0], [0.0, 3.0, 0.0], [0.0, 0.0, 4.0]])
    np.testing.assert_allclose(homogeneous_transform(H, 1.0, 2.0), [3.0, 6.0, 4.0])


def test_invert_homography_and_singular_fallback() -> None:
    H = normalize_homography(np.array([[1.2, 0.1, 4.0], [0.05, 0.9, -2.0], [1e-4, 0.0, 1.0]]))
    Hi = invert_homography(H)
    np.testing.assert_allclose(normalize_homography(Hi @ H), np.eye(3), atol=1e-12)
    np.testing.assert_array_equal(invert_homography(np.zeros((3, 3))), np.eye(3))


def test_pixel_grid_raster_order() -> None:
    g = pixel_grid(3, 2)
    assert g.shape == (6, 2)
    assert g.dtype == np.float32
    np.testing.assert_array_equal(g[:4], [[0, 0], [1, 0], [2, 0], [0, 1]])


def test_rotation_roundtrip() -> None:
    rvec = np.array([0.1, -0.2, 0.3])
    np.testing.assert_allclose(rotation_vector(rotation_matrix(rvec)), rvec, atol=1e-12)


def test_project_points_pinhole_and_behind_camera() -> None:
    K = np.array([[800.0, 0.0, 320.0], [0.0, 800.0, 240.0], [0.0, 0.0, 1.0]])
    XYZ = np.array([[0.0, 0.0, 0.0], [1.0, 0.5, 0.0]])
    uv = project_points(K, RationalDistortion(), XYZ, np.zeros(3), np.array([0.0, 0.0, 10.0]))
    np.testing.assert_allclose(uv[0], [320.0, 240.0])
    np.testing.assert_allclose(uv[1], [400.0, 280.0])

    behind = project_points(K, RationalDistortion(), XYZ, np.zeros(3), np.array([0.0, 0.0, -5.0]))
    assert np.all(np.isnan(behind))


@pytest.mark.parametrize(
    "xy,expected",
    [
        ((12.7, 40.2), (12, 40)),
        ((-3.0, 5.0), (0, 5)),
        ((70000.0, 65534.9), (65534, 65534)),
    ],
)
def test_clamp_galvo_coordinate(xy: tuple[float, float], expected: tuple[int, int]) -> None:
    assert clamp_galvo_coordinate(*xy) == expected
