from crossview.api import (
    CalibrationResult,
    CameraIntrinsics,
    HomographyFit,
    LensModel,
    RemapTable,
    UndistortionMap,
    buffers,
    build_cross_view_map,
    build_undistortion_map,
    calibrate_intrinsics,
    calibrate_intrinsics_fisheye,
    detect_chessboard_corners,
    estimate_homography,
    estimate_homography_undistorted,
    transform_point_homogeneous,
    undistort_point,
)
from crossview.config import CalibrationConfig, load_config
from crossview.result import CalibrationError, FailureReason, InvalidInputError, Outcome

__all__ = [
    "buffers",
    "CalibrationConfig",
    "CalibrationError",
    "CalibrationResult",
    "CameraIntrinsics",
    "FailureReason",
    "HomographyFit",
    "InvalidInputError",
    "LensModel",
    "Outcome",
    "RemapTable",
    "UndistortionMap",
    "build_cross_view_map",
    "build_undistortion_map",
    "calibrate_intrinsics",
    "calibrate_intrinsics_fisheye",
    "detect_chessboard_corners",
    "estimate_homography",
    "estimate_homography_undistorted",
    "load_config",
    "transform_point_homogeneous",
    "undistort_point",
]
