from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np

from crossview.api.camera import CalibrationResult, CameraIntrinsics, LensModel
from crossview.config import CalibrationConfig, ConfigValidationError
from crossview.result import FailureReason, InvalidInputError, Outcome

logger = logging.getLogger(__name__)


def _resolve_flags(namespaces: Sequence[Any], names: Sequence[str]) -> int:
    """OR together named flags, taking each from the first namespace that defines it."""
    flags = 0
    for name in names:
        value = next((getattr(ns, str(name)) for ns in namespaces if hasattr(ns, str(name))), None)
        if value is None:
            raise ConfigValidationError(f"unknown calibration flag: {name}")
        flags |= int(value)
    return flags


def _initial_intrinsics(w: int, h: int) -> np.ndarray:
    """Guess used with CALIB_USE_INTRINSIC_GUESS: f ~ the larger image side, center at the image center."""
    f = float(max(w, h))
    return np.array([[f, 0.0, w / 2.0], [0.0, f, h / 2.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def _image_size(image_size: tuple[int, int]) -> tuple[int, int]:
    if len(tuple(image_size)) != 2:
        raise InvalidInputError(f"image_size must be (width, height), got {image_size}")
    w, h = (int(v) for v in image_size)
    if w <= 0 or h <= 0:
        raise InvalidInputError(f"image size must be > 0, got {image_size}")
    return w, h


def _prepare_views(corner_sets: Sequence[np.ndarray], config: CalibrationConfig) -> list[np.ndarray]:
    views: list[np.ndarray] = []
    for i, pts in enumerate(corner_sets):
        pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
        if pts.shape[0] != config.corner_count:
            raise InvalidInputError(f"view {i}: expected {config.corner_count} corners, got {pts.shape[0]}")
        if not np.all(np.isfinite(pts)):
            raise InvalidInputError(f"view {i}: non-finite corner coordinates")
        views.append(pts)
    return views


def _finite(*arrays: np.ndarray) -> bool:
    return all(np.all(np.isfinite(np.asarray(a, dtype=np.float64))) for a in arrays)


def _stack_vecs(vecs: Sequence[np.ndarray]) -> np.ndarray:
    return np.asarray([np.asarray(v, dtype=np.float64).reshape(3) for v in vecs], dtype=np.float64).reshape(-1, 3)


def _rms(projected: np.ndarray, observed: np.ndarray) -> float:
    d = np.asarray(projected, dtype=np.float64).reshape(-1, 2) - np.asarray(observed, dtype=np.float64).reshape(-1, 2)
    return float(np.sqrt(np.mean(np.sum(d * d, axis=1))))


def calibrate_intrinsics(
    corner_sets: Sequence[np.ndarray],
    image_size: tuple[int, int],
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    """
    Pinhole calibration from N chessboard views.

    Homography-based initialization (principal point at the image center, free aspect),
    then joint Levenberg-Marquardt refinement of intrinsics, distortion and per-view poses.
    Distortion is reported as 8 coefficients (k1,k2,p1,p2,k3,k4,k5,k6); coefficients the
    configured flags do not estimate stay zero.
    """
    import cv2  # type: ignore

    config = config or CalibrationConfig()
    w, h = _image_size(image_size)
    views = _prepare_views(list(corner_sets), config)
    logger.info("the number of used images is %d", len(views))
    if not views:
        return Outcome.failure(FailureReason.INSUFFICIENT_DATA, "no calibration views supplied")

    obj = config.object_points()
    obj_pts = [obj.copy() for _ in views]
    img_pts = [v.astype(np.float32).reshape(-1, 1, 2) for v in views]

    K0 = _initial_intrinsics(w, h)
    dist0 = np.zeros((8, 1), dtype=np.float64)
    flags = _resolve_flags((cv2,), config.pinhole_flags)
    criteria = (
        cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS,
        int(config.pinhole_max_iterations),
        float(config.pinhole_epsilon),
    )

    try:
        rms, K, dist, rvecs, tvecs = cv2.calibrateCamera(
            obj_pts, img_pts, (w, h), K0, dist0, flags=flags, criteria=criteria
        )
    except cv2.error as e:
        logger.warning("pinhole calibration failed: %s", e)
        return Outcome.failure(FailureReason.NUMERICAL_FAILURE, str(e))

    if not _finite(K, dist, rms) or K[0, 0] <= 0 or K[1, 1] <= 0:
        return Outcome.failure(FailureReason.NUMERICAL_FAILURE, "calibration produced invalid intrinsics")

    per_view = np.asarray(
        [
            _rms(cv2.projectPoints(obj, rv, tv, K, dist)[0], v)
            for rv, tv, v in zip(rvecs, tvecs, views, strict=True)
        ],
        dtype=np.float64,
    )
    camera = CameraIntrinsics(
        K=np.asarray(K, dtype=np.float64),
        dist=np.asarray(dist, dtype=np.float64).reshape(-1)[:8],
        model=LensModel.PINHOLE,
        image_size=(w, h),
    )
    logger.info("pinhole calibration rms is %.6f px over %d views", float(rms), len(views))
    return Outcome.success(
        CalibrationResult(
            camera=camera,
            rvecs=_stack_vecs(rvecs),
            tvecs=_stack_vecs(tvecs),
            rms=float(rms),
            per_view_rms=per_view,
        )
    )


def calibrate_intrinsics_fisheye(
    corner_sets: Sequence[np.ndarray],
    image_size: tuple[int, int],
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    """
    Fisheye (equidistant, k1..k4) calibration. Stops after `fisheye_max_iterations`
    or when the parameter update falls below `fisheye_epsilon`.
    """
    import cv2  # type: ignore

    config = config or CalibrationConfig()
    w, h = _image_size(image_size)
    views = _prepare_views(list(corner_sets), config)
    logger.info("the number of used images is %d (fisheye)", len(views))
    if not views:
        return Outcome.failure(FailureReason.INSUFFICIENT_DATA, "no calibration views supplied")

    obj = config.object_points().astype(np.float64).reshape(-1, 1, 3)
    obj_pts = [obj.copy() for _ in views]
    img_pts = [v.reshape(-1, 1, 2) for v in views]

    K0 = _initial_intrinsics(w, h)
    D0 = np.zeros((4, 1), dtype=np.float64)
    flags = _resolve_flags((cv2.fisheye, cv2), config.fisheye_flags)
    criteria = (
        cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS,
        int(config.fisheye_max_iterations),
        float(config.fisheye_epsilon),
    )

    try:
        rms, K, D, rvecs, tvecs = cv2.fisheye.calibrate(
            obj_pts, img_pts, (w, h), K0, D0, flags=flags, criteria=criteria
        )
    except cv2.error as e:
        logger.warning("fisheye calibration failed: %s", e)
        return Outcome.failure(FailureReason.NUMERICAL_FAILURE, str(e))

    if not _finite(K, D, rms) or K[0, 0] <= 0 or K[1, 1] <= 0:
        return Outcome.failure(FailureReason.NUMERICAL_FAILURE, "fisheye calibration produced invalid intrinsics")

    per_view = np.asarray(
        [
            _rms(cv2.fisheye.projectPoints(obj, rv, tv, K, D)[0], v)
            for rv, tv, v in zip(rvecs, tvecs, views, strict=True)
        ],
        dtype=np.float64,
    )
    camera = CameraIntrinsics(
        K=np.asarray(K, dtype=np.float64),
        dist=np.asarray(D, dtype=np.float64).reshape(-1),
        model=LensModel.FISHEYE,
        image_size=(w, h),
    )
    logger.info("fisheye calibration rms is %.6f px over %d views", float(rms), len(views))
    return Outcome.success(
        CalibrationResult(
            camera=camera,
            rvecs=_stack_vecs(rvecs),
            tvecs=_stack_vecs(tvecs),
            rms=float(rms),
            per_view_rms=per_view,
        )
    )


def calibrate(
    corner_sets: Sequence[np.ndarray],
    image_size: tuple[int, int],
    model: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    if LensModel(model) is LensModel.FISHEYE:
        return calibrate_intrinsics_fisheye(corner_sets, image_size, config)
    return calibrate_intrinsics(corner_sets, image_size, config)
