from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from crossview.api.camera import CameraIntrinsics
from crossview.api.undistort import undistort_points
from crossview.config import CalibrationConfig
from crossview.core.geometry import apply_homography, invert_homography, pixel_grid
from crossview.result import InvalidInputError

logger = logging.getLogger(__name__)

__all__ = ["RemapTable", "build_cross_view_map", "identity_map", "interleave_map", "invert_homography"]


@dataclass(frozen=True)
class RemapTable:
    """
    Per-pixel sampling coordinates for one view, stored as two (H,W) float32 grids.
    """

    map_x: np.ndarray
    map_y: np.ndarray

    def __post_init__(self) -> None:
        mx = np.asarray(self.map_x, dtype=np.float32)
        my = np.asarray(self.map_y, dtype=np.float32)
        if mx.ndim != 2 or mx.shape != my.shape:
            raise InvalidInputError(f"map_x/map_y must be matching (H,W) grids, got {mx.shape} and {my.shape}")
        object.__setattr__(self, "map_x", mx)
        object.__setattr__(self, "map_y", my)

    @property
    def width(self) -> int:
        return int(self.map_x.shape[1])

    @property
    def height(self) -> int:
        return int(self.map_x.shape[0])

    def lookup(self, x: int, y: int) -> tuple[float, float]:
        return float(self.map_x[int(y), int(x)]), float(self.map_y[int(y), int(x)])

    def interleaved(self) -> np.ndarray:
        return interleave_map(self.map_x, self.map_y)


def interleave_map(map_x: np.ndarray, map_y: np.ndarray) -> np.ndarray:
    """(H,W) x2 -> (H,W,2) float32 with XY per cell."""
    mx = np.asarray(map_x, dtype=np.float32)
    my = np.asarray(map_y, dtype=np.float32)
    if mx.shape != my.shape:
        raise InvalidInputError(f"map shapes differ: {mx.shape} != {my.shape}")
    return np.stack([mx, my], axis=-1)


def identity_map(width: int, height: int) -> RemapTable:
    if int(width) <= 0 or int(height) <= 0:
        raise InvalidInputError(f"map size must be > 0, got {width}x{height}")
    uu, vv = np.meshgrid(np.arange(int(width), dtype=np.float32), np.arange(int(height), dtype=np.float32))
    return RemapTable(map_x=uu, map_y=vv)


def _as_homography(H: np.ndarray) -> np.ndarray:
    H = np.asarray(H, dtype=np.float64)
    if H.size != 9:
        raise InvalidInputError(f"homography must be 3x3, got shape {H.shape}")
    H = H.reshape(3, 3)
    if not np.all(np.isfinite(H)):
        raise InvalidInputError("homography contains non-finite values")
    return H


def build_cross_view_map(
    camera_a: CameraIntrinsics,
    camera_b: CameraIntrinsics,
    homography_a_to_b: np.ndarray,
    image_size_a: tuple[int, int] | None = None,
    config: CalibrationConfig | None = None,
) -> RemapTable:
    """
    For every raw pixel (x, y) of view A: undistort with A's model, then apply
    `homography_a_to_b`. The result is a sampling position in B's undistorted
    pixel grid, stored at map_x[y, x], map_y[y, x].

    `camera_b` only defines the target domain; its distortion is not applied.
    """
    config = config or CalibrationConfig()
    if not isinstance(camera_b, CameraIntrinsics):
        raise InvalidInputError(f"camera_b must be CameraIntrinsics, got {type(camera_b).__name__}")
    H = _as_homography(homography_a_to_b)
    w, h = camera_a.resolve_size(image_size_a)

    grid = pixel_grid(w, h)
    undist = undistort_points(camera_a, grid)
    mapped = apply_homography(H, undist, eps=config.zero_denominator_eps)
    logger.debug("built cross-view map %dx%d", w, h)
    return RemapTable(
        map_x=mapped[:, 0].reshape(h, w).astype(np.float32),
        map_y=mapped[:, 1].reshape(h, w).astype(np.float32),
    )
