from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from crossview.api.camera import CameraIntrinsics, LensModel
from crossview.config import CalibrationConfig
from crossview.result import InvalidInputError

logger = logging.getLogger(__name__)

# Stopping rule for the iterative inverse of the pinhole model.
UNDISTORT_ITERATIONS = 100
UNDISTORT_EPSILON = 1e-12


@dataclass(frozen=True)
class UndistortionMap:
    """
    Dense sampling grids for full-image undistortion.

    `map_x[v, u]`, `map_y[v, u]` hold the raw-image coordinate sampled for the
    undistorted pixel (u, v) expressed through `new_K`.
    """

    map_x: np.ndarray  # (H,W) float32
    map_y: np.ndarray  # (H,W) float32
    new_K: np.ndarray  # (3,3) float64

    @property
    def width(self) -> int:
        return int(self.map_x.shape[1])

    @property
    def height(self) -> int:
        return int(self.map_x.shape[0])


def _as_points(points: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64)
    if pts.size % 2 != 0:
        raise InvalidInputError(f"points must be (N,2), got shape {pts.shape}")
    return pts.reshape(-1, 2)


def _undistort_pinhole(cv2: Any, src: np.ndarray, K: np.ndarray, D: np.ndarray, R: np.ndarray, P: np.ndarray) -> Any:
    criteria = (cv2.TERM_CRITERIA_COUNT + cv2.TERM_CRITERIA_EPS, UNDISTORT_ITERATIONS, UNDISTORT_EPSILON)
    # OpenCV 4.x exposes the criteria overload as undistortPointsIter; 5.x folds it into undistortPoints.
    undistort_iter = getattr(cv2, "undistortPointsIter", None)
    if undistort_iter is not None:
        return undistort_iter(src, K, D, R, P, criteria)
    return cv2.undistortPoints(src, K, D, R=R, P=P, criteria=criteria)


def undistort_points(camera: CameraIntrinsics, points: np.ndarray, P: np.ndarray | None = None) -> np.ndarray:
    """
    Raw pixels (N,2) -> undistorted pixels (N,2) float64.

    The distortion model is inverted and the ideal normalized coordinates are
    re-projected through `P` (defaults to the camera's own intrinsics).
    """
    import cv2  # type: ignore

    pts = _as_points(points)
    if pts.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.float64)
    P = camera.K if P is None else np.asarray(P, dtype=np.float64).reshape(3, 3)
    src = pts.reshape(-1, 1, 2)
    R = np.eye(3, dtype=np.float64)

    if camera.model is LensModel.FISHEYE:
        out = cv2.fisheye.undistortPoints(src, camera.K, camera.dist.reshape(-1, 1), R=R, P=P)
    else:
        out = _undistort_pinhole(cv2, src, camera.K, camera.dist.reshape(-1, 1), R, P)
    return np.asarray(out, dtype=np.float64).reshape(-1, 2)


def undistort_point(camera: CameraIntrinsics, x: float, y: float) -> tuple[float, float]:
    uv = undistort_points(camera, np.array([[float(x), float(y)]], dtype=np.float64))
    return float(uv[0, 0]), float(uv[0, 1])


def optimal_intrinsics(
    camera: CameraIntrinsics,
    image_size: tuple[int, int] | None = None,
    alpha: float | None = None,
    config: CalibrationConfig | None = None,
) -> np.ndarray:
    """
    Adjusted intrinsics for undistorted output.

    Pinhole: free scaling `alpha` (0 keeps only valid pixels, 1 keeps every source pixel).
    Fisheye: `fisheye_balance` plays the same role.
    """
    import cv2  # type: ignore

    config = config or CalibrationConfig()
    w, h = camera.resolve_size(image_size)
    if camera.model is LensModel.FISHEYE:
        balance = float(config.fisheye_balance if alpha is None else alpha)
        new_K = cv2.fisheye.estimateNewCameraMatrixForUndistortRectify(
            camera.K, camera.dist.reshape(-1, 1), (w, h), np.eye(3, dtype=np.float64), balance=balance
        )
    else:
        a = float(config.undistort_alpha if alpha is None else alpha)
        new_K, _roi = cv2.getOptimalNewCameraMatrix(camera.K, camera.dist, (w, h), a, (w, h))
    return np.asarray(new_K, dtype=np.float64).reshape(3, 3)


def build_undistortion_map(
    camera: CameraIntrinsics,
    image_size: tuple[int, int] | None = None,
    config: CalibrationConfig | None = None,
) -> UndistortionMap:
    import cv2  # type: ignore

    config = config or CalibrationConfig()
    w, h = camera.resolve_size(image_size)
    new_K = optimal_intrinsics(camera, (w, h), config=config)
    R = np.eye(3, dtype=np.float64)
    if camera.model is LensModel.FISHEYE:
        map_x, map_y = cv2.fisheye.initUndistortRectifyMap(
            camera.K, camera.dist.reshape(-1, 1), R, new_K, (w, h), cv2.CV_32FC1
        )
    else:
        map_x, map_y = cv2.initUndistortRectifyMap(camera.K, camera.dist, R, new_K, (w, h), cv2.CV_32FC1)
    logger.debug("built %s undistortion map %dx%d", camera.model.value, w, h)
    return UndistortionMap(
        map_x=np.asarray(map_x, dtype=np.float32),
        map_y=np.asarray(map_y, dtype=np.float32),
        new_K=new_K,
    )


def remap_image(image: np.ndarray, map_x: np.ndarray, map_y: np.ndarray) -> np.ndarray:
    """
    Bilinear resampling: out[v, u] = image[map_y[v, u], map_x[v, u]]. Outside samples are 0.
    """
    import cv2  # type: ignore

    img = np.asarray(image)
    mx = np.asarray(map_x, dtype=np.float32)
    my = np.asarray(map_y, dtype=np.float32)
    if mx.ndim != 2 or mx.shape != my.shape:
        raise InvalidInputError(f"map_x/map_y must be matching (H,W) grids, got {mx.shape} and {my.shape}")
    if img.ndim not in (2, 3):
        raise InvalidInputError(f"image must be (H,W[,C]), got {img.shape}")
    return cv2.remap(img, mx, my, interpolation=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=0)
