from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import numpy as np

from crossview.api.camera import CameraIntrinsics
from crossview.api.undistort import undistort_point, undistort_points
from crossview.config import CalibrationConfig
from crossview.core.geometry import (
    apply_homography,
    clamp_galvo_coordinate,
    homogeneous_transform,
    is_well_conditioned,
    normalize_homography,
)
from crossview.result import FailureReason, InvalidInputError, Outcome

logger = logging.getLogger(__name__)

RobustMethod = Literal["lmeds", "ransac"]

MIN_POINTS = 4
MAX_GENERATOR_STATE = 2**31 - 1

__all__ = [
    "HomographyFit",
    "clamp_galvo_coordinate",
    "estimate_homography",
    "estimate_homography_undistorted",
    "homography_quality",
    "map_point",
    "transform_point_homogeneous",
]


@dataclass(frozen=True)
class HomographyFit:
    homography: np.ndarray  # (3,3) float64, H[2,2] == 1 when possible
    inlier_mask: np.ndarray  # (N,) bool
    rmse: float  # px, over inliers only
    inlier_count: int

    @property
    def quality(self) -> tuple[float, int]:
        return self.rmse, self.inlier_count


def _fallback(n: int, config: CalibrationConfig) -> HomographyFit:
    return HomographyFit(
        homography=np.eye(3, dtype=np.float64),
        inlier_mask=np.zeros((n,), dtype=bool),
        rmse=float(config.rmse_sentinel),
        inlier_count=0,
    )


def _as_pair(src: np.ndarray, dst: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(src, dtype=np.float64)
    b = np.asarray(dst, dtype=np.float64)
    if a.size % 2 != 0 or b.size % 2 != 0:
        raise InvalidInputError(f"point sets must be (N,2), got shapes {a.shape} and {b.shape}")
    a = a.reshape(-1, 2)
    b = b.reshape(-1, 2)
    if a.shape[0] != b.shape[0]:
        raise InvalidInputError(f"point sets differ in length: {a.shape[0]} != {b.shape[0]}")
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        raise InvalidInputError("point sets contain non-finite coordinates")
    return a, b


def homography_quality(
    H: np.ndarray,
    src: np.ndarray,
    dst: np.ndarray,
    inlier_mask: np.ndarray | None = None,
    config: CalibrationConfig | None = None,
) -> tuple[float, int]:
    """
    (rmse, inlier_count) of H(src) against dst over the inliers.

    Without a mask every correspondence counts. Zero inliers give the rmse sentinel.
    """
    config = config or CalibrationConfig()
    src, dst = _as_pair(src, dst)
    if inlier_mask is None:
        mask = np.ones((src.shape[0],), dtype=bool)
    else:
        mask = np.asarray(inlier_mask, dtype=bool).reshape(-1)
        if mask.shape[0] != src.shape[0]:
            raise InvalidInputError(f"inlier_mask has {mask.shape[0]} entries for {src.shape[0]} correspondences")
    count = int(np.count_nonzero(mask))
    if count == 0:
        return float(config.rmse_sentinel), 0
    proj = apply_homography(H, src[mask], eps=config.zero_denominator_eps)
    d = proj - dst[mask]
    se = float(np.sum(d * d))
    return float(np.sqrt(se / count)), count


def transfer_errors(H: np.ndarray, src: np.ndarray, dst: np.ndarray, eps: float = 1e-6) -> np.ndarray:
    """Euclidean distance between H(src) and dst, per correspondence."""
    proj = apply_homography(H, src, eps=eps)
    err = np.linalg.norm(proj - np.asarray(dst, dtype=np.float64).reshape(-1, 2), axis=1)
    return np.where(np.isfinite(err), err, np.inf)


def _generator_state(config: CalibrationConfig, seed: int | None) -> int:
    s = seed if seed is not None else config.seed
    if s is None:
        return int(np.random.default_rng().integers(0, MAX_GENERATOR_STATE))
    return int(s) % MAX_GENERATOR_STATE


def _usac_params(method: RobustMethod, config: CalibrationConfig, state: int) -> Any:
    import cv2  # type: ignore

    params = cv2.UsacParams()
    params.sampler = cv2.SAMPLING_UNIFORM
    params.score = cv2.SCORE_METHOD_LMEDS if method == "lmeds" else cv2.SCORE_METHOD_RANSAC
    params.loMethod = cv2.LOCAL_OPTIM_INNER_LO
    params.threshold = float(config.ransac_threshold)
    params.confidence = float(config.ransac_confidence)
    params.maxIterations = int(config.lmeds_max_iterations if method == "lmeds" else config.ransac_max_iterations)
    params.randomGeneratorState = state
    params.isParallel = False
    return params


def _as_matrix(H: Any) -> np.ndarray | None:
    if H is None:
        return None
    H = np.asarray(H, dtype=np.float64)
    if H.size != 9 or not is_well_conditioned(H):
        return None
    return normalize_homography(H)


def _find_homography(
    src: np.ndarray,
    dst: np.ndarray,
    method: RobustMethod,
    config: CalibrationConfig,
    seed: int | None,
) -> np.ndarray | None:
    """Seeded USAC fit, then a least-squares + LM pass over its inliers."""
    import cv2  # type: ignore

    a = np.ascontiguousarray(src, dtype=np.float64).reshape(-1, 1, 2)
    b = np.ascontiguousarray(dst, dtype=np.float64).reshape(-1, 1, 2)
    try:
        H, mask = cv2.findHomography(a, b, _usac_params(method, config, _generator_state(config, seed)))
    except cv2.error as e:
        logger.warning("findHomography (%s) failed: %s", method, e)
        return None
    H = _as_matrix(H)
    if H is None or not config.refine_homography or mask is None:
        return H

    keep = np.asarray(mask).reshape(-1).astype(bool)
    if int(np.count_nonzero(keep)) < MIN_POINTS:
        return H
    try:
        H_ref, _ = cv2.findHomography(a[keep], b[keep], method=0)
    except cv2.error as e:
        logger.debug("homography refinement skipped: %s", e)
        return H
    H_ref = _as_matrix(H_ref)
    return H if H_ref is None else H_ref


def _fit(
    src: np.ndarray,
    dst: np.ndarray,
    method: RobustMethod,
    config: CalibrationConfig,
    seed: int | None,
) -> Outcome[HomographyFit]:
    n = src.shape[0]
    if n < MIN_POINTS:
        return Outcome.failure(
            FailureReason.INSUFFICIENT_DATA,
            f"a homography needs at least {MIN_POINTS} correspondences, got {n}",
            fallback=_fallback(n, config),
        )

    H = _find_homography(src, dst, method, config, seed)
    if H is None:
        logger.warning("degenerate homography fit (%s, %d points); returning identity", method, n)
        return Outcome.failure(
            FailureReason.NUMERICAL_FAILURE, "degenerate point configuration", fallback=_fallback(n, config)
        )

    # Inliers are re-derived from the final matrix in both modes.
    mask = transfer_errors(H, src, dst, eps=config.zero_denominator_eps) <= float(config.ransac_threshold)
    rmse, count = homography_quality(H, src, dst, mask, config)
    logger.debug("%s homography: %d/%d inliers, rmse %.6f px", method, count, n, rmse)
    return Outcome.success(HomographyFit(homography=H, inlier_mask=mask, rmse=rmse, inlier_count=count))


def estimate_homography(
    src: np.ndarray,
    dst: np.ndarray,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> Outcome[HomographyFit]:
    """
    Direct mode: least-median-of-squares fit of H with dst ~ H @ src, in raw pixel space.
    """
    config = config or CalibrationConfig()
    a, b = _as_pair(src, dst)
    return _fit(a, b, "lmeds", config, seed)


def estimate_homography_undistorted(
    points_a: np.ndarray,
    points_b: np.ndarray,
    camera_a: CameraIntrinsics,
    camera_b: CameraIntrinsics,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> Outcome[HomographyFit]:
    """
    Undistort both sets in their own pixel spaces, then fit A -> B with RANSAC.

    The returned quality (rmse, inlier_count) is measured in B's undistorted pixel space.
    """
    config = config or CalibrationConfig()
    a, b = _as_pair(points_a, points_b)
    a_ud = undistort_points(camera_a, a)
    b_ud = undistort_points(camera_b, b)
    return _fit(a_ud, b_ud, "ransac", config, seed)


def transform_point_homogeneous(x: float, y: float, H: np.ndarray, camera: CameraIntrinsics) -> np.ndarray:
    """Undistort (x, y) with `camera`, then H @ [u, v, 1], returned undivided (3,)."""
    u, v = undistort_point(camera, x, y)
    return homogeneous_transform(H, u, v)


def map_point(
    x: float,
    y: float,
    H: np.ndarray,
    camera: CameraIntrinsics,
    eps: float = 1e-6,
) -> tuple[float, float]:
    X, Y, Z = transform_point_homogeneous(x, y, H, camera)
    if Z == 0.0:
        Z = float(eps)
    return float(X / Z), float(Y / Z)
