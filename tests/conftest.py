from __future__ import annotations

import numpy as np
import pytest

from crossview.api.camera import CameraIntrinsics, LensModel


def make_camera(
    fx: float = 800.0,
    fy: float = 800.0,
    cx: float = 320.0,
    cy: float = 240.0,
    dist: list[float] | None = None,
    model: LensModel = LensModel.PINHOLE,
    size: tuple[int, int] = (640, 480),
) -> CameraIntrinsics:
    K = np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)
    if dist is None:
        dist = [0.0] * (4 if model is LensModel.FISHEYE else 8)
    return CameraIntrinsics(K=K, dist=np.asarray(dist, dtype=np.float64), model=model, image_size=size)


@pytest.fixture
def ideal_camera() -> CameraIntrinsics:
    return make_camera()


@pytest.fixture
def distorted_camera() -> CameraIntrinsics:
    return make_camera(dist=[-0.12, 0.03, 0.0008, -0.0005, 0.0, 0.0, 0.0, 0.0])
