from crossview.api.calibration import calibrate, calibrate_intrinsics, calibrate_intrinsics_fisheye
from crossview.api.camera import CalibrationResult, CameraIntrinsics, LensModel
from crossview.api.chessboard import detect_chessboard_corners, object_points
from crossview.api.cross_view import RemapTable, build_cross_view_map, identity_map, interleave_map
from crossview.api.homography import (
    HomographyFit,
    estimate_homography,
    estimate_homography_undistorted,
    map_point,
    transform_point_homogeneous,
)
from crossview.api.model_io import (
    load_calibration,
    load_homography,
    load_remap,
    save_calibration,
    save_homography,
    save_remap,
)
from crossview.api.undistort import (
    UndistortionMap,
    build_undistortion_map,
    optimal_intrinsics,
    remap_image,
    undistort_point,
    undistort_points,
)

__all__ = [
    "CalibrationResult",
    "CameraIntrinsics",
    "HomographyFit",
    "LensModel",
    "RemapTable",
    "UndistortionMap",
    "build_cross_view_map",
    "build_undistortion_map",
    "calibrate",
    "calibrate_intrinsics",
    "calibrate_intrinsics_fisheye",
    "detect_chessboard_corners",
    "estimate_homography",
    "estimate_homography_undistorted",
    "identity_map",
    "interleave_map",
    "load_calibration",
    "load_homography",
    "load_remap",
    "map_point",
    "object_points",
    "optimal_intrinsics",
    "remap_image",
    "save_calibration",
    "save_homography",
    "save_remap",
    "transform_point_homogeneous",
    "undistort_point",
    "undistort_points",
]
