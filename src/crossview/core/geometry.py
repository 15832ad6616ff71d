from __future__ import annotations

import numpy as np

from crossview.core.distortion import FisheyeDistortion, RationalDistortion

GALVO_MAX_X = 65534
GALVO_MAX_Y = 65534


def apply_homography(H: np.ndarray, pts: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """
    Apply a 3x3 homography to (N,2) points with homogeneous divide.

    An exactly-zero denominator is replaced by `eps` instead of producing inf.
    """
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    pts = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    x = pts[:, 0]
    y = pts[:, 1]
    X = H[0, 0] * x + H[0, 1] * y + H[0, 2]
    Y = H[1, 0] * x + H[1, 1] * y + H[1, 2]
    Z = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    Z = np.where(Z == 0.0, float(eps), Z)
    return np.stack([X / Z, Y / Z], axis=1)


def homogeneous_transform(H: np.ndarray, x: float, y: float) -> np.ndarray:
    """H @ [x, y, 1] without the divide."""
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    return H @ np.array([float(x), float(y), 1.0], dtype=np.float64)


def normalize_homography(H: np.ndarray) -> np.ndarray:
    """Fix the scale ambiguity: H[2,2] = 1 when possible, unit Frobenius norm otherwise."""
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    if abs(H[2, 2]) > 1e-12:
        return H / H[2, 2]
    n = np.linalg.norm(H)
    return H / n if n > 0 else H


def is_well_conditioned(H: np.ndarray, min_abs_det: float = 1e-12) -> bool:
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    if not np.all(np.isfinite(H)):
        return False
    Hn = H / max(np.linalg.norm(H), 1e-300)
    return abs(float(np.linalg.det(Hn))) > min_abs_det


def invert_homography(H: np.ndarray) -> np.ndarray:
    """Inverse of H, or the identity when H is singular."""
    H = np.asarray(H, dtype=np.float64).reshape(3, 3)
    det = float(np.linalg.det(H))
    if not np.isfinite(det) or abs(det) < 1e-12:
        return np.eye(3, dtype=np.float64)
    return normalize_homography(np.linalg.inv(H))


def pixel_grid(width: int, height: int) -> np.ndarray:
    """(H*W, 2) float32 raw pixel coordinates in raster order (x fastest)."""
    uu, vv = np.meshgrid(np.arange(int(width), dtype=np.float32), np.arange(int(height), dtype=np.float32))
    return np.stack([uu.reshape(-1), vv.reshape(-1)], axis=1)


def rotation_matrix(rvec: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    return Rot.from_rotvec(np.asarray(rvec, dtype=np.float64).reshape(3)).as_matrix()


def rotation_vector(R: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    return Rot.from_matrix(np.asarray(R, dtype=np.float64).reshape(3, 3)).as_rotvec()


def project_points(
    K: np.ndarray,
    distortion: RationalDistortion | FisheyeDistortion,
    XYZ_obj: np.ndarray,
    rvec: np.ndarray,
    tvec: np.ndarray,
) -> np.ndarray:
    """
    Object-frame points -> distorted pixels. Points behind the camera come back as NaN.
    """
    K = np.asarray(K, dtype=np.float64).reshape(3, 3)
    XYZ_obj = np.asarray(XYZ_obj, dtype=np.float64).reshape(-1, 3)
    Xc = (rotation_matrix(rvec) @ XYZ_obj.T).T + np.asarray(tvec, dtype=np.float64).reshape(1, 3)
    uv = np.full((Xc.shape[0], 2), np.nan, dtype=np.float64)
    good = np.isfinite(Xc[:, 2]) & (Xc[:, 2] > 1e-12)
    if not np.any(good):
        return uv
    x = Xc[good, 0] / Xc[good, 2]
    y = Xc[good, 1] / Xc[good, 2]
    xd, yd = distortion.distort(x, y)
    uv[good, 0] = K[0, 0] * xd + K[0, 1] * yd + K[0, 2]
    uv[good, 1] = K[1, 1] * yd + K[1, 2]
    return uv


def clamp_galvo_coordinate(x: float, y: float) -> tuple[int, int]:
    """Floor and clamp a mapped point into the 16-bit galvo range."""
    gx = int(max(0, min(GALVO_MAX_X, int(np.floor(x)))))
    gy = int(max(0, min(GALVO_MAX_Y, int(np.floor(y)))))
    return gx, gy
