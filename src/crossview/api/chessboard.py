from __future__ import annotations

import logging

import numpy as np

from crossview.config import CalibrationConfig
from crossview.core.enhance import apply_ops_gray, rgba_to_gray
from crossview.result import FailureReason, InvalidInputError, Outcome

logger = logging.getLogger(__name__)


def object_points(config: CalibrationConfig | None = None) -> np.ndarray:
    """(cols*rows, 3) float32 board corners, z=0, raster order."""
    return (config or CalibrationConfig()).object_points()


def _detection_flags(cv2, config: CalibrationConfig) -> int:
    flags = 0
    if config.adaptive_threshold:
        flags |= cv2.CALIB_CB_ADAPTIVE_THRESH
    if config.normalize_image:
        flags |= cv2.CALIB_CB_NORMALIZE_IMAGE
    if config.fast_check:
        flags |= cv2.CALIB_CB_FAST_CHECK
    return flags


def detect_chessboard_corners(image: np.ndarray, config: CalibrationConfig | None = None) -> Outcome[np.ndarray]:
    """
    Locate the interior-corner grid of a chessboard.

    Input: RGBA (H,W,4) uint8; RGB and single-channel images are accepted too.
    Output on success: (cols*rows, 2) float32 corners in row-major raster order.
    "Not found" is an expected outcome and is reported as DETECTION_FAILURE.
    """
    import cv2  # type: ignore

    config = config or CalibrationConfig()
    img = np.asarray(image)
    if img.ndim not in (2, 3) or img.shape[0] <= 0 or img.shape[1] <= 0:
        raise InvalidInputError(f"image must be (H,W[,C]) with H,W > 0, got {img.shape}")

    gray = rgba_to_gray(img)
    gray = apply_ops_gray(gray, config.enhance_ops)

    logger.debug("searching %dx%d chessboard corners in %dx%d image", config.grid_cols, config.grid_rows, gray.shape[1], gray.shape[0])
    found, corners = cv2.findChessboardCorners(gray, config.grid_size, flags=_detection_flags(cv2, config))
    if not found or corners is None:
        logger.debug("chessboard corners not found")
        return Outcome.failure(FailureReason.DETECTION_FAILURE, "chessboard not found")

    corners = np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2)
    if corners.shape[0] != config.corner_count:
        logger.debug("chessboard detector returned %d corners, expected %d", corners.shape[0], config.corner_count)
        return Outcome.failure(
            FailureReason.DETECTION_FAILURE, f"expected {config.corner_count} corners, got {corners.shape[0]}"
        )

    if config.subpixel_refine:
        win = int(config.subpixel_window)
        term = (
            cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER,
            int(config.subpixel_iterations),
            float(config.subpixel_epsilon),
        )
        corners = cv2.cornerSubPix(gray, corners, (win, win), (-1, -1), term)

    pts = np.asarray(corners, dtype=np.float32).reshape(-1, 2)
    if not np.all(np.isfinite(pts)):
        return Outcome.failure(FailureReason.DETECTION_FAILURE, "non-finite corner positions")
    logger.debug("chessboard corners found")
    return Outcome.success(pts)
