"""
Operations over flat caller-owned buffers.

Points are interleaved (x, y) float32, matrices row-major, images interleaved
RGBA uint8. Every operation validates buffer sizes before computing, returns an
`Outcome`, and writes its destinations only when it has a result to publish.
Homography operations publish the identity fallback together with a failure
outcome for degenerate inputs.
"""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from crossview.api.calibration import calibrate_intrinsics, calibrate_intrinsics_fisheye
from crossview.api.camera import PINHOLE_DIST_SIZE, FISHEYE_DIST_SIZE, CalibrationResult, CameraIntrinsics, LensModel
from crossview.api.chessboard import detect_chessboard_corners
from crossview.api.cross_view import RemapTable, build_cross_view_map
from crossview.api.homography import (
    HomographyFit,
    estimate_homography,
    estimate_homography_undistorted,
    transform_point_homogeneous,
)
from crossview.api.undistort import UndistortionMap, build_undistortion_map, remap_image, undistort_point
from crossview.config import CalibrationConfig
from crossview.core.codec import read_matrix, read_points, read_rgba_image, read_vector, staged_writes
from crossview.result import Outcome

__all__ = [
    "build_cross_view_map_into",
    "build_undistortion_map_into",
    "calibrate_intrinsics_extended_into",
    "calibrate_intrinsics_fisheye_into",
    "calibrate_intrinsics_into",
    "detect_chessboard_corners_into",
    "estimate_homography_into",
    "estimate_homography_undistorted_into",
    "estimate_homography_undistorted_with_quality_into",
    "remap_image_into",
    "transform_pixel_homogeneous_into",
    "undistort_pixel_into",
]


def _camera(
    intrinsics: Any,
    dist: Any,
    model: LensModel | str = LensModel.PINHOLE,
    image_size: tuple[int, int] | None = None,
    name: str = "camera",
) -> CameraIntrinsics:
    model = LensModel(model)
    n = FISHEYE_DIST_SIZE if model is LensModel.FISHEYE else PINHOLE_DIST_SIZE
    return CameraIntrinsics(
        K=read_matrix(intrinsics, 3, 3, name=f"{name}.intrinsics"),
        dist=read_vector(dist, n, name=f"{name}.dist"),
        model=model,
        image_size=image_size,
    )


def _corner_sets(corner_sets: Sequence[Any], config: CalibrationConfig) -> list[np.ndarray]:
    return [read_points(buf, config.corner_count, name=f"corners[{i}]") for i, buf in enumerate(corner_sets)]


def detect_chessboard_corners_into(
    image: Any,
    width: int,
    height: int,
    corners_out: np.ndarray,
    config: CalibrationConfig | None = None,
) -> Outcome[np.ndarray]:
    img = read_rgba_image(image, width, height)
    res = detect_chessboard_corners(img, config)
    with staged_writes() as out:
        if res.ok:
            out.stage(corners_out, res.value, "corners_out")
    return res


def calibrate_intrinsics_into(
    corner_sets: Sequence[Any],
    image_width: int,
    image_height: int,
    intrinsics_out: np.ndarray,
    dist_out: np.ndarray,
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    """Pinhole calibration; writes 3x3 intrinsics and 8 distortion coefficients."""
    config = config or CalibrationConfig()
    views = _corner_sets(corner_sets, config)
    res = calibrate_intrinsics(views, (image_width, image_height), config)
    with staged_writes() as out:
        if res.ok:
            out.stage(intrinsics_out, res.value.camera.K, "intrinsics_out")
            out.stage(dist_out, res.value.camera.dist, "dist_out")
    return res


def calibrate_intrinsics_extended_into(
    corner_sets: Sequence[Any],
    image_width: int,
    image_height: int,
    intrinsics_out: np.ndarray,
    dist_out: np.ndarray,
    rvecs_out: np.ndarray,
    tvecs_out: np.ndarray,
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    """Pinhole calibration plus per-view rotation and translation vectors (N x 3 each)."""
    config = config or CalibrationConfig()
    views = _corner_sets(corner_sets, config)
    res = calibrate_intrinsics(views, (image_width, image_height), config)
    with staged_writes() as out:
        if res.ok:
            out.stage(intrinsics_out, res.value.camera.K, "intrinsics_out")
            out.stage(dist_out, res.value.camera.dist, "dist_out")
            out.stage(rvecs_out, res.value.rvecs, "rvecs_out")
            out.stage(tvecs_out, res.value.tvecs, "tvecs_out")
    return res


def calibrate_intrinsics_fisheye_into(
    corner_sets: Sequence[Any],
    image_width: int,
    image_height: int,
    intrinsics_out: np.ndarray,
    dist_out: np.ndarray,
    rvecs_out: np.ndarray | None = None,
    tvecs_out: np.ndarray | None = None,
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    """Fisheye calibration; `dist_out` receives 4 coefficients."""
    config = config or CalibrationConfig()
    views = _corner_sets(corner_sets, config)
    res = calibrate_intrinsics_fisheye(views, (image_width, image_height), config)
    with staged_writes() as out:
        if res.ok:
            out.stage(intrinsics_out, res.value.camera.K, "intrinsics_out")
            out.stage(dist_out, res.value.camera.dist, "dist_out")
            if rvecs_out is not None:
                out.stage(rvecs_out, res.value.rvecs, "rvecs_out")
            if tvecs_out is not None:
                out.stage(tvecs_out, res.value.tvecs, "tvecs_out")
    return res


def build_undistortion_map_into(
    intrinsics: Any,
    dist: Any,
    width: int,
    height: int,
    map_x_out: np.ndarray,
    map_y_out: np.ndarray,
    model: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
) -> Outcome[UndistortionMap]:
    camera = _camera(intrinsics, dist, model, (width, height))
    umap = build_undistortion_map(camera, config=config)
    with staged_writes() as out:
        out.stage(map_x_out, umap.map_x, "map_x_out")
        out.stage(map_y_out, umap.map_y, "map_y_out")
    return Outcome.success(umap)


def undistort_pixel_into(
    x: int,
    y: int,
    intrinsics: Any,
    dist: Any,
    point_out: np.ndarray,
    model: LensModel | str = LensModel.PINHOLE,
) -> Outcome[tuple[float, float]]:
    """Integer pixel (x, y) -> undistorted (x, y) float32 pair in `point_out`."""
    camera = _camera(intrinsics, dist, model)
    uv = undistort_point(camera, int(x), int(y))
    with staged_writes() as out:
        out.stage(point_out, uv, "point_out")
    return Outcome.success(uv)


def remap_image_into(
    image: Any,
    width: int,
    height: int,
    map_x: Any,
    map_y: Any,
    image_out: np.ndarray,
) -> Outcome[np.ndarray]:
    img = read_rgba_image(image, width, height)
    mx = read_matrix(map_x, height, width, name="map_x")
    my = read_matrix(map_y, height, width, name="map_y")
    warped = remap_image(img, mx, my)
    with staged_writes() as out:
        out.stage(image_out, warped, "image_out")
    return Outcome.success(warped)


def estimate_homography_into(
    src: Any,
    dst: Any,
    length: int,
    homography_out: np.ndarray,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> Outcome[HomographyFit]:
    """LMedS fit of dst ~ H @ src on raw pixels."""
    a = read_points(src, length, name="src")
    b = read_points(dst, length, name="dst")
    res = estimate_homography(a, b, config, seed)
    with staged_writes() as out:
        out.stage(homography_out, res.value.homography, "homography_out")
    return res


def _undistorted_fit(
    points_a: Any,
    points_b: Any,
    length: int,
    intrinsics_a: Any,
    dist_a: Any,
    intrinsics_b: Any,
    dist_b: Any,
    model_a: LensModel | str,
    model_b: LensModel | str,
    config: CalibrationConfig | None,
    seed: int | None,
) -> Outcome[HomographyFit]:
    a = read_points(points_a, length, name="points_a")
    b = read_points(points_b, length, name="points_b")
    cam_a = _camera(intrinsics_a, dist_a, model_a, name="camera_a")
    cam_b = _camera(intrinsics_b, dist_b, model_b, name="camera_b")
    return estimate_homography_undistorted(a, b, cam_a, cam_b, config, seed)


def estimate_homography_undistorted_into(
    points_a: Any,
    points_b: Any,
    length: int,
    intrinsics_a: Any,
    dist_a: Any,
    intrinsics_b: Any,
    dist_b: Any,
    homography_out: np.ndarray,
    model_a: LensModel | str = LensModel.PINHOLE,
    model_b: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> Outcome[HomographyFit]:
    res = _undistorted_fit(
        points_a, points_b, length, intrinsics_a, dist_a, intrinsics_b, dist_b, model_a, model_b, config, seed
    )
    with staged_writes() as out:
        out.stage(homography_out, res.value.homography, "homography_out")
    return res


def estimate_homography_undistorted_with_quality_into(
    points_a: Any,
    points_b: Any,
    length: int,
    intrinsics_a: Any,
    dist_a: Any,
    intrinsics_b: Any,
    dist_b: Any,
    homography_out: np.ndarray,
    metrics_out: np.ndarray,
    model_a: LensModel | str = LensModel.PINHOLE,
    model_b: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> Outcome[HomographyFit]:
    """As `estimate_homography_undistorted_into`, plus `metrics_out = [rmse, inlier_count]`."""
    res = _undistorted_fit(
        points_a, points_b, length, intrinsics_a, dist_a, intrinsics_b, dist_b, model_a, model_b, config, seed
    )
    fit = res.value
    with staged_writes() as out:
        out.stage(homography_out, fit.homography, "homography_out")
        out.stage(metrics_out, [fit.rmse, float(fit.inlier_count)], "metrics_out")
    return res


def transform_pixel_homogeneous_into(
    x: int,
    y: int,
    homography: Any,
    intrinsics: Any,
    dist: Any,
    point_out: np.ndarray,
    model: LensModel | str = LensModel.PINHOLE,
) -> Outcome[np.ndarray]:
    """Undistort the pixel, apply H, and write the undivided homogeneous (X, Y, Z)."""
    H = read_matrix(homography, 3, 3, name="homography")
    camera = _camera(intrinsics, dist, model)
    p = transform_point_homogeneous(int(x), int(y), H, camera)
    with staged_writes() as out:
        out.stage(point_out, p, "point_out")
    return Outcome.success(p)


def build_cross_view_map_into(
    intrinsics_a: Any,
    dist_a: Any,
    width_a: int,
    height_a: int,
    intrinsics_b: Any,
    dist_b: Any,
    width_b: int,
    height_b: int,
    homography_a_to_b: Any,
    map_x_out: np.ndarray,
    map_y_out: np.ndarray,
    model_a: LensModel | str = LensModel.PINHOLE,
    model_b: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
) -> Outcome[RemapTable]:
    """Dense map sized to A (width_a x height_a) into B's undistorted pixel grid."""
    cam_a = _camera(intrinsics_a, dist_a, model_a, (width_a, height_a), name="camera_a")
    cam_b = _camera(intrinsics_b, dist_b, model_b, (width_b, height_b), name="camera_b")
    H = read_matrix(homography_a_to_b, 3, 3, name="homography")
    table = build_cross_view_map(cam_a, cam_b, H, config=config)
    with staged_writes() as out:
        out.stage(map_x_out, table.map_x, "map_x_out")
        out.stage(map_y_out, table.map_y, "map_y_out")
    return Outcome.success(table)
