from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from crossview.api.calibration import calibrate
from crossview.api.camera import CalibrationResult, LensModel
from crossview.api.chessboard import detect_chessboard_corners
from crossview.api.cross_view import RemapTable, build_cross_view_map
from crossview.api.homography import HomographyFit, estimate_homography_undistorted
from crossview.api.model_io import save_calibration, save_homography, save_remap
from crossview.api.undistort import UndistortionMap, build_undistortion_map
from crossview.config import CalibrationConfig
from crossview.core.image_io import load_rgba_u8
from crossview.result import FailureReason, Outcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capture:
    """One shot of one camera; `key` pairs shots taken at the same moment by different cameras."""

    key: str
    camera: str
    image: np.ndarray | None = None
    path: Path | None = None

    def load(self) -> np.ndarray:
        if self.image is not None:
            return np.asarray(self.image)
        if self.path is None:
            raise ValueError(f"capture {self.key} ({self.camera}) has neither image nor path")
        return load_rgba_u8(self.path)


@dataclass(frozen=True)
class Detection:
    key: str
    camera: str
    corners: np.ndarray  # (cols*rows, 2) float32
    image_size: tuple[int, int]  # (width, height)


@dataclass(frozen=True)
class ViewLink:
    key: str
    fit: HomographyFit
    table: RemapTable


@dataclass(frozen=True)
class PairCalibration:
    camera_a: CalibrationResult
    camera_b: CalibrationResult
    undistortion_a: UndistortionMap
    undistortion_b: UndistortionMap
    links: list[ViewLink] = field(default_factory=list)
    detections_a: list[Detection] = field(default_factory=list)
    detections_b: list[Detection] = field(default_factory=list)


def detect_corners_for_captures(
    captures: Iterable[Capture],
    config: CalibrationConfig | None = None,
) -> list[Detection]:
    """Run the chessboard detector on every capture; captures without a board are logged and skipped."""
    config = config or CalibrationConfig()
    out: list[Detection] = []
    for cap in captures:
        img = cap.load()
        res = detect_chessboard_corners(img, config)
        if not res.ok:
            logger.warning("corner detection failed: %s cam=%s (%s)", cap.key, cap.camera, res.message)
            continue
        h, w = img.shape[:2]
        logger.info("corners detected: %s cam=%s (%dx%d)", cap.key, cap.camera, w, h)
        out.append(Detection(key=cap.key, camera=cap.camera, corners=res.value, image_size=(int(w), int(h))))
    return out


def calibrate_camera_from_detections(
    detections: Sequence[Detection],
    model: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
) -> Outcome[CalibrationResult]:
    if not detections:
        return Outcome.failure(FailureReason.INSUFFICIENT_DATA, "no detections to calibrate from")
    sizes = {d.image_size for d in detections}
    if len(sizes) != 1:
        return Outcome.failure(FailureReason.INVALID_INPUT, f"detections disagree on image size: {sorted(sizes)}")
    (size,) = sizes
    return calibrate([d.corners for d in detections], size, model, config)


def link_views(
    detections_a: Sequence[Detection],
    detections_b: Sequence[Detection],
    calib_a: CalibrationResult,
    calib_b: CalibrationResult,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> list[ViewLink]:
    """
    For every key detected by both cameras: undistorted homography A -> B and the
    cross-view map of A's raw grid into B's undistorted grid.
    """
    config = config or CalibrationConfig()
    by_key = {d.key: d for d in detections_b}
    links: list[ViewLink] = []
    for a in detections_a:
        b = by_key.get(a.key)
        if b is None:
            continue
        res = estimate_homography_undistorted(a.corners, b.corners, calib_a.camera, calib_b.camera, config, seed)
        if not res.ok:
            logger.warning("homography failed: %s (%s)", a.key, res.message)
            continue
        fit = res.value
        table = build_cross_view_map(calib_a.camera, calib_b.camera, fit.homography, a.image_size, config)
        logger.info("homography %s: rmse %.4f px, %d inliers", a.key, fit.rmse, fit.inlier_count)
        links.append(ViewLink(key=a.key, fit=fit, table=table))
    logger.info("inter-camera mapping (undistorted domain): %d/%d", len(links), len(detections_a))
    return links


def run_pair_calibration(
    captures_a: Iterable[Capture],
    captures_b: Iterable[Capture],
    model_a: LensModel | str = LensModel.PINHOLE,
    model_b: LensModel | str = LensModel.PINHOLE,
    config: CalibrationConfig | None = None,
    seed: int | None = None,
) -> Outcome[PairCalibration]:
    config = config or CalibrationConfig()
    det_a = detect_corners_for_captures(captures_a, config)
    det_b = detect_corners_for_captures(captures_b, config)

    calib_a = calibrate_camera_from_detections(det_a, model_a, config)
    if not calib_a.ok:
        logger.warning("intrinsics (A) failed: %s", calib_a.message)
        return Outcome.failure(calib_a.reason, f"camera A: {calib_a.message}")
    calib_b = calibrate_camera_from_detections(det_b, model_b, config)
    if not calib_b.ok:
        logger.warning("intrinsics (B) failed: %s", calib_b.message)
        return Outcome.failure(calib_b.reason, f"camera B: {calib_b.message}")

    ca, cb = calib_a.value, calib_b.value
    result = PairCalibration(
        camera_a=ca,
        camera_b=cb,
        undistortion_a=build_undistortion_map(ca.camera, config=config),
        undistortion_b=build_undistortion_map(cb.camera, config=config),
        links=link_views(det_a, det_b, ca, cb, config, seed),
        detections_a=det_a,
        detections_b=det_b,
    )
    return Outcome.success(result)


def write_pair_report(output_dir: Path, result: PairCalibration) -> list[Path]:
    """
    Layout:

      camera_a/calibration.json, camera_a/undistort_map.npz
      camera_b/...
      links/<key>/homography.json, links/<key>/cross_view_map.npz
    """
    output_dir = Path(output_dir)
    written: list[Path] = []
    for name, calib, umap in (
        ("camera_a", result.camera_a, result.undistortion_a),
        ("camera_b", result.camera_b, result.undistortion_b),
    ):
        written.append(save_calibration(output_dir / name / "calibration.json", calib))
        written.append(save_remap(output_dir / name / "undistort_map.npz", RemapTable(umap.map_x, umap.map_y)))
    for link in result.links:
        d = output_dir / "links" / link.key
        written.append(save_homography(d / "homography.json", link.fit, source="camera_a", target="camera_b"))
        written.append(save_remap(d / "cross_view_map.npz", link.table))
    return written
