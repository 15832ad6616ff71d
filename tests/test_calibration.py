from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

pytest.importorskip("cv2")

from conftest import make_camera

from crossview.api.calibration import (
    _initial_intrinsics,
    _resolve_flags,
    calibrate,
    calibrate_intrinsics,
    calibrate_intrinsics_fisheye,
)
from crossview.api.camera import CameraIntrinsics, LensModel
from crossview.config import CalibrationConfig, ConfigValidationError
from crossview.result import FailureReason, InvalidInputError
from crossview.sim.views import generate_views


def _corner_sets(camera: CameraIntrinsics, n: int, seed: int) -> list[np.ndarray]:
    views = generate_views(camera, n, seed=seed, render=False)
    return [v.corners.astype(np.float32) for v in views]


def test_zero_views_is_insufficient_data() -> None:
    res = calibrate_intrinsics([], (640, 480))
    assert not res
    assert res.reason is FailureReason.INSUFFICIENT_DATA
    assert res.value is None
    assert calibrate_intrinsics_fisheye([], (640, 480)).reason is FailureReason.INSUFFICIENT_DATA


def test_wrong_corner_count_raises() -> None:
    with pytest.raises(InvalidInputError):
        calibrate_intrinsics([np.zeros((69, 2), dtype=np.float32)], (640, 480))
    with pytest.raises(InvalidInputError):
        calibrate_intrinsics([np.zeros((70, 2), dtype=np.float32)], (0, 480))


def test_pinhole_recovers_known_intrinsics(ideal_camera: CameraIntrinsics) -> None:
    sets = _corner_sets(ideal_camera, 5, seed=0)
    res = calibrate_intrinsics(sets, (640, 480))
    assert res.ok, res.message
    calib = res.value

    assert calib.camera.model is LensModel.PINHOLE
    assert calib.camera.dist.shape == (8,)
    assert calib.camera.image_size == (640, 480)
    assert calib.camera.fx == pytest.approx(800.0, rel=0.01)
    assert calib.camera.fy == pytest.approx(800.0, rel=0.01)
    assert calib.camera.cx == pytest.approx(320.0, rel=0.01)
    assert calib.camera.cy == pytest.approx(240.0, rel=0.01)
    np.testing.assert_allclose(calib.camera.dist, 0.0, atol=0.05)
    assert calib.rms < 0.01

    assert calib.num_views == 5
    assert calib.rvecs.shape == (5, 3)
    assert calib.tvecs.shape == (5, 3)
    assert calib.per_view_rms.shape == (5,)
    assert np.all(calib.per_view_rms < 0.01)


def test_pinhole_poses_are_index_aligned(ideal_camera: CameraIntrinsics) -> None:
    views = generate_views(ideal_camera, 5, seed=3, render=False)
    calib = calibrate_intrinsics([v.corners for v in views], (640, 480)).unwrap()
    truth = np.stack([v.tvec for v in views])
    np.testing.assert_allclose(calib.tvecs, truth, rtol=0.02, atol=0.05)


def test_pinhole_recovers_radial_distortion(distorted_camera: CameraIntrinsics) -> None:
    sets = _corner_sets(distorted_camera, 8, seed=1)
    calib = calibrate_intrinsics(sets, (640, 480)).unwrap()
    assert calib.camera.fx == pytest.approx(800.0, rel=0.01)
    assert calib.camera.dist[0] == pytest.approx(-0.12, abs=0.03)
    assert calib.rms < 0.01


def test_unknown_solver_flag_is_rejected(ideal_camera: CameraIntrinsics) -> None:
    cfg = CalibrationConfig(pinhole_flags=("CALIB_DOES_NOT_EXIST",))
    with pytest.raises(ConfigValidationError):
        calibrate_intrinsics(_corner_sets(ideal_camera, 2, seed=0), (640, 480), cfg)


def test_fisheye_calibration_recovers_focal_length() -> None:
    cam = make_camera(fx=220.0, fy=220.0, dist=[0.02, -0.005, 0.0, 0.0], model=LensModel.FISHEYE)
    sets = _corner_sets(cam, 8, seed=2)
    res = calibrate_intrinsics_fisheye(sets, (640, 480))
    assert res.ok, res.message
    calib = res.value
    assert calib.camera.model is LensModel.FISHEYE
    assert calib.camera.dist.shape == (4,)
    assert calib.camera.fx == pytest.approx(220.0, rel=0.05)
    assert calib.camera.cx == pytest.approx(320.0, rel=0.05)
    assert calib.rvecs.shape == (8, 3)


def test_calibrate_dispatches_on_model(ideal_camera: CameraIntrinsics) -> None:
    sets = _corner_sets(ideal_camera, 5, seed=4)
    assert calibrate(sets, (640, 480), "pinhole").value.camera.model is LensModel.PINHOLE
    assert calibrate([], (640, 480), LensModel.FISHEYE).reason is FailureReason.INSUFFICIENT_DATA


def test_default_fisheye_flags_resolve() -> None:
    import cv2  # type: ignore

    flags = _resolve_flags((cv2.fisheye, cv2), CalibrationConfig().fisheye_flags)
    assert flags > 0
    with pytest.raises(ConfigValidationError):
        _resolve_flags((cv2.fisheye, cv2), ("CALIB_DOES_NOT_EXIST",))


def test_flags_fall_back_to_later_namespace() -> None:
    first = SimpleNamespace(CALIB_A=1)
    second = SimpleNamespace(CALIB_A=8, CALIB_B=2)
    assert _resolve_flags((first, second), ("CALIB_A", "CALIB_B")) == 3


def test_fisheye_calibration_with_default_config() -> None:
    cam = make_camera(fx=220.0, fy=220.0, dist=[0.01, 0.0, 0.0, 0.0], model=LensModel.FISHEYE)
    res = calibrate_intrinsics_fisheye(_corner_sets(cam, 6, seed=7), (640, 480), CalibrationConfig())
    assert res.ok, res.message
    assert res.value.camera.fy == pytest.approx(220.0, rel=0.05)


def test_pinhole_with_intrinsic_guess(ideal_camera: CameraIntrinsics) -> None:
    K0 = _initial_intrinsics(640, 480)
    assert K0[0, 0] == K0[1, 1] == 640.0
    assert (K0[0, 2], K0[1, 2]) == (320.0, 240.0)

    cfg = CalibrationConfig(pinhole_flags=("CALIB_USE_INTRINSIC_GUESS",))
    res = calibrate_intrinsics(_corner_sets(ideal_camera, 5, seed=0), (640, 480), cfg)
    assert res.ok, res.message
    assert res.value.camera.fx == pytest.approx(800.0, rel=0.01)
    assert res.value.camera.fy == pytest.approx(800.0, rel=0.01)
