from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from crossview.core.distortion import FisheyeDistortion, RationalDistortion, distortion_model
from crossview.result import InvalidInputError

PINHOLE_DIST_LENGTHS = (4, 5, 8)
PINHOLE_DIST_SIZE = 8
FISHEYE_DIST_SIZE = 4


class LensModel(str, Enum):
    PINHOLE = "pinhole"
    FISHEYE = "fisheye"


def _as_intrinsics(K: np.ndarray) -> np.ndarray:
    K = np.asarray(K, dtype=np.float64)
    if K.size != 9:
        raise InvalidInputError(f"intrinsics must be 3x3, got shape {K.shape}")
    K = K.reshape(3, 3)
    if not np.all(np.isfinite(K)):
        raise InvalidInputError("intrinsics contain non-finite values")
    return K


def _as_distortion(dist: np.ndarray, model: LensModel) -> np.ndarray:
    dist = np.asarray(dist, dtype=np.float64).reshape(-1)
    if model is LensModel.FISHEYE:
        if dist.size != FISHEYE_DIST_SIZE:
            raise InvalidInputError(f"fisheye distortion needs {FISHEYE_DIST_SIZE} coefficients, got {dist.size}")
        return dist
    if dist.size not in PINHOLE_DIST_LENGTHS:
        raise InvalidInputError(f"pinhole distortion needs 4, 5 or 8 coefficients, got {dist.size}")
    padded = np.zeros((PINHOLE_DIST_SIZE,), dtype=np.float64)
    padded[: dist.size] = dist
    return padded


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Intrinsics + distortion for one camera.

    Pinhole distortion is always stored as 8 coefficients (k1,k2,p1,p2,k3,k4,k5,k6),
    fisheye as 4 (k1..k4).
    """

    K: np.ndarray
    dist: np.ndarray
    model: LensModel = LensModel.PINHOLE
    image_size: tuple[int, int] | None = None  # (width, height)

    def __post_init__(self) -> None:
        model = LensModel(self.model)
        object.__setattr__(self, "model", model)
        object.__setattr__(self, "K", _as_intrinsics(self.K))
        object.__setattr__(self, "dist", _as_distortion(self.dist, model))
        if self.image_size is not None:
            w, h = (int(v) for v in self.image_size)
            if w <= 0 or h <= 0:
                raise InvalidInputError(f"image size must be > 0, got {self.image_size}")
            object.__setattr__(self, "image_size", (w, h))

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @property
    def cx(self) -> float:
        return float(self.K[0, 2])

    @property
    def cy(self) -> float:
        return float(self.K[1, 2])

    def distortion(self) -> RationalDistortion | FisheyeDistortion:
        return distortion_model(self.model.value, self.dist)

    def resolve_size(self, image_size: tuple[int, int] | None) -> tuple[int, int]:
        size = image_size if image_size is not None else self.image_size
        if size is None:
            raise InvalidInputError("image size is required (not stored on the camera)")
        w, h = (int(v) for v in size)
        if w <= 0 or h <= 0:
            raise InvalidInputError(f"image size must be > 0, got {size}")
        return w, h


@dataclass(frozen=True)
class CalibrationResult:
    camera: CameraIntrinsics
    rvecs: np.ndarray  # (N,3)
    tvecs: np.ndarray  # (N,3)
    rms: float
    per_view_rms: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64))  # (N,)

    @property
    def num_views(self) -> int:
        return int(self.rvecs.shape[0])
