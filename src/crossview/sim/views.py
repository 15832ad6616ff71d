from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from crossview.api.camera import CameraIntrinsics
from crossview.config import CalibrationConfig
from crossview.core.enhance import gray_to_rgba
from crossview.core.geometry import project_points, rotation_matrix, rotation_vector
from crossview.sim.board import sample_board, square_counts


@dataclass(frozen=True)
class SyntheticView:
    image: np.ndarray  # (H,W,4) uint8
    corners: np.ndarray  # (cols*rows, 2) float64, ground-truth projections
    rvec: np.ndarray  # (3,)
    tvec: np.ndarray  # (3,)


@dataclass(frozen=True)
class SyntheticPair:
    key: str
    view_a: SyntheticView
    view_b: SyntheticView


def _rot_x(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[1, 0, 0], [0, ca, -sa], [0, sa, ca]], dtype=np.float64)


def _rot_y(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[ca, 0, sa], [0, 1, 0], [-sa, 0, ca]], dtype=np.float64)


def _rot_z(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[ca, -sa, 0], [sa, ca, 0], [0, 0, 1]], dtype=np.float64)


def _board_center(config: CalibrationConfig) -> np.ndarray:
    sq = float(config.square_size)
    return np.array([0.5 * sq * (config.grid_cols - 1), 0.5 * sq * (config.grid_rows - 1), 0.0], dtype=np.float64)


def default_distance(camera: CameraIntrinsics, config: CalibrationConfig, fill: float = 0.6) -> float:
    """Camera-to-board distance at which the printed squares span `fill` of the image width."""
    w, _ = camera.resolve_size(None)
    sx, _ = square_counts(config)
    return float(camera.fx * sx * float(config.square_size) / (float(fill) * w))


def sample_board_poses(
    n: int,
    camera: CameraIntrinsics,
    config: CalibrationConfig | None = None,
    rng: np.random.Generator | None = None,
    max_tilt_rad: float = 0.35,
    max_roll_rad: float = 0.15,
    distance: float | None = None,
) -> list[tuple[np.ndarray, np.ndarray]]:
    """
    Random board poses (rvec, tvec) with the board centered in front of the camera.

    Tilts are drawn in [-max_tilt, max_tilt] about x and y; varied tilt is what makes
    the focal length observable from a planar target.
    """
    config = config or CalibrationConfig()
    rng = rng if rng is not None else np.random.default_rng()
    z0 = float(distance) if distance is not None else default_distance(camera, config)
    c = _board_center(config)
    poses: list[tuple[np.ndarray, np.ndarray]] = []
    for _ in range(int(n)):
        R = (
            _rot_z(rng.uniform(-max_roll_rad, max_roll_rad))
            @ _rot_y(rng.uniform(-max_tilt_rad, max_tilt_rad))
            @ _rot_x(rng.uniform(-max_tilt_rad, max_tilt_rad))
        )
        shift = np.array(
            [rng.uniform(-0.08, 0.08) * z0, rng.uniform(-0.06, 0.06) * z0, z0 * rng.uniform(0.9, 1.15)],
            dtype=np.float64,
        )
        t = shift - R @ c
        poses.append((rotation_vector(R), t))
    return poses


def project_board_corners(
    camera: CameraIntrinsics,
    rvec: np.ndarray,
    tvec: np.ndarray,
    config: CalibrationConfig | None = None,
) -> np.ndarray:
    config = config or CalibrationConfig()
    return project_points(camera.K, camera.distortion(), config.object_points(), rvec, tvec)


def render_chessboard_view(
    camera: CameraIntrinsics,
    rvec: np.ndarray,
    tvec: np.ndarray,
    config: CalibrationConfig | None = None,
    image_size: tuple[int, int] | None = None,
    supersample: int = 3,
    background: int = 110,
    noise_std: float = 0.0,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """
    Vectorized ray-plane render of the chessboard seen through `camera`.

    Each output pixel averages `supersample`^2 sub-pixel rays. Rays are built by
    undistorting sub-pixel positions with the camera's own model, so corners land
    where `project_board_corners` puts them.
    """
    config = config or CalibrationConfig()
    w, h = camera.resolve_size(image_size)
    ss = max(1, int(supersample))

    offs = (np.arange(ss, dtype=np.float64) + 0.5) / ss - 0.5
    u = (np.arange(w, dtype=np.float64)[:, None] + offs[None, :]).reshape(-1)
    v = (np.arange(h, dtype=np.float64)[:, None] + offs[None, :]).reshape(-1)
    uu, vv = np.meshgrid(u, v)  # (h*ss, w*ss)

    K = camera.K
    yd = (vv - K[1, 2]) / K[1, 1]
    xd = (uu - K[0, 2] - K[0, 1] * yd) / K[0, 0]
    xn, yn = camera.distortion().undistort(xd, yd)

    # Plane through t with normal R[:,2]; ray X = s * [xn, yn, 1].
    R = rotation_matrix(rvec)
    t = np.asarray(tvec, dtype=np.float64).reshape(3)
    n = R[:, 2]
    denom = xn * n[0] + yn * n[1] + n[2]
    denom = np.where(np.abs(denom) < 1e-12, np.nan, denom)
    s = float(t @ n) / denom
    X = np.stack([s * xn, s * yn, s], axis=-1)
    Xp = (X.reshape(-1, 3) - t[None, :]) @ R  # R^T (X - t), row-wise
    xp = Xp[:, 0].reshape(uu.shape)
    yp = Xp[:, 1].reshape(uu.shape)
    valid = np.isfinite(s) & (s > 0)
    xp = np.where(valid, xp, np.nan)
    yp = np.where(valid, yp, np.nan)

    tex, on_sheet = sample_board(config, xp, yp)
    img = np.where(on_sheet, tex.astype(np.float64), float(background))
    img = img.reshape(h, ss, w, ss).mean(axis=(1, 3))

    if noise_std > 0:
        rng = rng if rng is not None else np.random.default_rng()
        img = img + rng.normal(0.0, float(noise_std), size=img.shape)
    gray = np.clip(img + 0.5, 0.0, 255.0).astype(np.uint8)
    return gray_to_rgba(gray)


def generate_views(
    camera: CameraIntrinsics,
    n_views: int,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
    render: bool = True,
    noise_std: float = 0.0,
) -> list[SyntheticView]:
    """
    Synthetic calibration views of one camera. With `render=False` only the
    ground-truth corners are produced and `image` is an empty array.
    """
    config = config or CalibrationConfig()
    rng = np.random.default_rng(seed)
    views: list[SyntheticView] = []
    for rvec, tvec in sample_board_poses(n_views, camera, config, rng):
        corners = project_board_corners(camera, rvec, tvec, config)
        image = (
            render_chessboard_view(camera, rvec, tvec, config, noise_std=noise_std, rng=rng)
            if render
            else np.zeros((0, 0, 4), dtype=np.uint8)
        )
        views.append(SyntheticView(image=image, corners=corners, rvec=rvec, tvec=tvec))
    return views


def generate_pair_dataset(
    camera_a: CameraIntrinsics,
    camera_b: CameraIntrinsics,
    n_views: int,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
    R_ab: np.ndarray | None = None,
    t_ab: np.ndarray | None = None,
    render: bool = True,
) -> list[SyntheticPair]:
    """
    The same board poses seen by two rigidly mounted cameras: X_b = R_ab @ X_a + t_ab.

    The default rig is a short horizontal baseline with a slight yaw.
    """
    config = config or CalibrationConfig()
    rng = np.random.default_rng(seed)
    R_ab = _rot_y(-0.05) if R_ab is None else np.asarray(R_ab, dtype=np.float64).reshape(3, 3)
    if t_ab is None:
        t_ab = np.array([-0.08 * default_distance(camera_a, config), 0.0, 0.0], dtype=np.float64)
    t_ab = np.asarray(t_ab, dtype=np.float64).reshape(3)

    pairs: list[SyntheticPair] = []
    for i, (rvec_a, tvec_a) in enumerate(sample_board_poses(n_views, camera_a, config, rng, max_tilt_rad=0.3)):
        R_b = R_ab @ rotation_matrix(rvec_a)
        rvec_b = rotation_vector(R_b)
        tvec_b = R_ab @ tvec_a + t_ab
        views = []
        for cam, rv, tv in ((camera_a, rvec_a, tvec_a), (camera_b, rvec_b, tvec_b)):
            corners = project_board_corners(cam, rv, tv, config)
            image = render_chessboard_view(cam, rv, tv, config) if render else np.zeros((0, 0, 4), dtype=np.uint8)
            views.append(SyntheticView(image=image, corners=corners, rvec=rv, tvec=tv))
        pairs.append(SyntheticPair(key=f"{i:06d}", view_a=views[0], view_b=views[1]))
    return pairs
