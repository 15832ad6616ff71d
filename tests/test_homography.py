from __future__ import annotations

import numpy as np
import pytest

pytest.importorskip("cv2")

from crossview.api.camera import CameraIntrinsics
from crossview.api.homography import (
    estimate_homography,
    estimate_homography_undistorted,
    homography_quality,
    map_point,
    transform_point_homogeneous,
)
from crossview.config import CalibrationConfig
from crossview.core.geometry import apply_homography, normalize_homography
from crossview.result import FailureReason, InvalidInputError

H0 = np.array(
    [
        [1.05, 0.04, 12.0],
        [-0.03, 0.97, -8.0],
        [2.0e-5, -1.5e-5, 1.0],
    ],
    dtype=np.float64,
)


def _points(n: int, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.stack([rng.uniform(0, 640, size=n), rng.uniform(0, 480, size=n)], axis=1)


def _distort_pixels(camera: CameraIntrinsics, uv: np.ndarray) -> np.ndarray:
    K = camera.K
    x = (uv[:, 0] - K[0, 2]) / K[0, 0]
    y = (uv[:, 1] - K[1, 2]) / K[1, 1]
    xd, yd = camera.distortion().distort(x, y)
    return np.stack([xd * K[0, 0] + K[0, 2], yd * K[1, 1] + K[1, 2]], axis=1)


def _assert_same_homography(H: np.ndarray, H_ref: np.ndarray, atol: float = 1e-6) -> None:
    np.testing.assert_allclose(normalize_homography(H), normalize_homography(H_ref), atol=atol, rtol=1e-6)


def test_direct_mode_recovers_known_homography() -> None:
    src = _points(70)
    dst = apply_homography(H0, src)
    res = estimate_homography(src, dst, seed=0)
    assert res
    fit = res.value
    _assert_same_homography(fit.homography, H0)
    assert fit.inlier_count == 70
    assert fit.rmse < 1e-6


def test_direct_mode_scale_invariance() -> None:
    src = _points(40)
    dst = apply_homography(3.7 * H0, src)
    fit = estimate_homography(src, dst, seed=1).unwrap()
    assert fit.homography[2, 2] == pytest.approx(1.0)
    _assert_same_homography(fit.homography, H0)


def test_direct_mode_tolerates_outliers() -> None:
    src = _points(70, seed=2)
    dst = apply_homography(H0, src)
    rng = np.random.default_rng(5)
    bad = rng.choice(70, size=15, replace=False)
    dst[bad] += rng.uniform(40, 120, size=(15, 2))
    fit = estimate_homography(src, dst, seed=3).unwrap()
    _assert_same_homography(fit.homography, H0, atol=1e-5)
    assert not np.any(fit.inlier_mask[bad])
    assert fit.inlier_count == 55


def test_undistorted_quality_on_ideal_cameras(ideal_camera: CameraIntrinsics) -> None:
    a = _points(70, seed=4)
    b = apply_homography(H0, a)
    res = estimate_homography_undistorted(a, b, ideal_camera, ideal_camera, seed=0)
    assert res.ok
    fit = res.value
    _assert_same_homography(fit.homography, H0, atol=1e-5)
    assert fit.inlier_count == 70
    assert fit.rmse == pytest.approx(0.0, abs=1e-4)


def test_undistorted_mode_removes_lens_distortion(distorted_camera: CameraIntrinsics) -> None:
    a_ideal = _points(70, seed=6) * 0.8 + np.array([64.0, 48.0])
    b_ideal = apply_homography(H0, a_ideal)
    a_raw = _distort_pixels(distorted_camera, a_ideal)
    b_raw = _distort_pixels(distorted_camera, b_ideal)

    raw_fit = estimate_homography(a_raw, b_raw, seed=0).unwrap()
    fit = estimate_homography_undistorted(a_raw, b_raw, distorted_camera, distorted_camera, seed=0).unwrap()
    _assert_same_homography(fit.homography, H0, atol=1e-4)
    assert fit.inlier_count == 70
    assert fit.rmse < 1e-3
    assert raw_fit.rmse > fit.rmse


def test_ransac_result_is_invariant_to_point_order(ideal_camera: CameraIntrinsics) -> None:
    a = _points(60, seed=7)
    b = apply_homography(H0, a)
    rng = np.random.default_rng(8)
    bad = rng.choice(60, size=10, replace=False)
    b[bad] += rng.uniform(30, 90, size=(10, 2))

    perm = rng.permutation(60)
    fit1 = estimate_homography_undistorted(a, b, ideal_camera, ideal_camera, seed=42).unwrap()
    fit2 = estimate_homography_undistorted(a[perm], b[perm], ideal_camera, ideal_camera, seed=42).unwrap()
    _assert_same_homography(fit1.homography, fit2.homography, atol=1e-6)
    assert fit1.inlier_count == fit2.inlier_count == 50
    np.testing.assert_array_equal(fit1.inlier_mask[perm], fit2.inlier_mask)


def test_same_seed_is_deterministic() -> None:
    src = _points(50, seed=9)
    dst = apply_homography(H0, src) + np.random.default_rng(10).normal(0.0, 0.3, size=(50, 2))
    cfg = CalibrationConfig(seed=123)
    f1 = estimate_homography(src, dst, cfg).unwrap()
    f2 = estimate_homography(src, dst, cfg).unwrap()
    np.testing.assert_array_equal(f1.homography, f2.homography)
    np.testing.assert_array_equal(f1.inlier_mask, f2.inlier_mask)


def test_collinear_points_fail_with_identity_fallback() -> None:
    t = np.linspace(0, 100, 20)
    src = np.stack([t, 2 * t + 1], axis=1)
    dst = src + 5.0
    res = estimate_homography(src, dst, seed=0)
    assert not res
    assert res.reason is FailureReason.NUMERICAL_FAILURE
    np.testing.assert_array_equal(res.value.homography, np.eye(3))
    assert res.value.rmse == 1e9
    assert res.value.inlier_count == 0


def test_too_few_points_is_insufficient_data(ideal_camera: CameraIntrinsics) -> None:
    a = _points(3)
    res = estimate_homography_undistorted(a, a, ideal_camera, ideal_camera)
    assert res.reason is FailureReason.INSUFFICIENT_DATA
    np.testing.assert_array_equal(res.value.homography, np.eye(3))


def test_mismatched_lengths_raise() -> None:
    with pytest.raises(InvalidInputError):
        estimate_homography(_points(10), _points(9))


def test_quality_sentinel_without_inliers() -> None:
    src = _points(5)
    rmse, count = homography_quality(np.eye(3), src, src, np.zeros(5, dtype=bool))
    assert (rmse, count) == (1e9, 0)


def test_transform_point_homogeneous_on_ideal_camera(ideal_camera: CameraIntrinsics) -> None:
    p = transform_point_homogeneous(100, 50, H0, ideal_camera)
    assert p.shape == (3,)
    np.testing.assert_allclose(p, H0 @ np.array([100.0, 50.0, 1.0]), rtol=1e-9)
    x, y = map_point(100, 50, H0, ideal_camera)
    np.testing.assert_allclose([x, y], apply_homography(H0, np.array([[100.0, 50.0]]))[0], rtol=1e-9)


def test_unrefined_fit_still_recovers_homography() -> None:
    src = _points(30, seed=11)
    dst = apply_homography(H0, src)
    cfg = CalibrationConfig(refine_homography=False)
    fit = estimate_homography(src, dst, cfg, seed=0).unwrap()
    _assert_same_homography(fit.homography, H0, atol=1e-5)
    assert fit.inlier_count == 30


def test_quality_rejects_mask_of_wrong_length() -> None:
    src = _points(6)
    with pytest.raises(InvalidInputError):
        homography_quality(np.eye(3), src, src, np.ones(5, dtype=bool))
