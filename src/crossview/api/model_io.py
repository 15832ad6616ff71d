from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np

from crossview.api.camera import CalibrationResult, CameraIntrinsics, LensModel
from crossview.api.cross_view import RemapTable
from crossview.api.homography import HomographyFit

CALIBRATION_SCHEMA = "crossview.calibration.v0"
HOMOGRAPHY_SCHEMA = "crossview.homography.v0"


def _to_float_matrix(x: Any, shape: tuple[int, ...]) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    x = x.reshape(shape)
    if not np.all(np.isfinite(x)):
        raise ValueError("non-finite values")
    return x


def _read_meta(path: Path, schema: str) -> dict[str, Any]:
    meta = json.loads(Path(path).read_text(encoding="utf-8"))
    if str(meta.get("schema_version")) != schema:
        raise ValueError(f"unsupported schema: {meta.get('schema_version')!r} (expected {schema})")
    return meta


def calibration_to_dict(result: CalibrationResult) -> dict[str, Any]:
    cam = result.camera
    meta: dict[str, Any] = {
        "schema_version": CALIBRATION_SCHEMA,
        "model": cam.model.value,
        "K": np.asarray(cam.K, dtype=np.float64).tolist(),
        "dist": np.asarray(cam.dist, dtype=np.float64).reshape(-1).tolist(),
        "rms": float(result.rms),
        "views": [
            {
                "rvec": np.asarray(r, dtype=np.float64).reshape(3).tolist(),
                "tvec": np.asarray(t, dtype=np.float64).reshape(3).tolist(),
                "rms": float(e),
            }
            for r, t, e in zip(result.rvecs, result.tvecs, _per_view(result), strict=True)
        ],
    }
    if cam.image_size is not None:
        meta["image"] = {"width_px": int(cam.image_size[0]), "height_px": int(cam.image_size[1])}
    return meta


def _per_view(result: CalibrationResult) -> np.ndarray:
    e = np.asarray(result.per_view_rms, dtype=np.float64).reshape(-1)
    if e.size == result.num_views:
        return e
    return np.full((result.num_views,), np.nan, dtype=np.float64)


def calibration_from_dict(meta: dict[str, Any]) -> CalibrationResult:
    if str(meta.get("schema_version")) != CALIBRATION_SCHEMA:
        raise ValueError("unsupported calibration schema")
    image = meta.get("image")
    size = None if image is None else (int(image["width_px"]), int(image["height_px"]))
    camera = CameraIntrinsics(
        K=_to_float_matrix(meta["K"], (3, 3)),
        dist=np.asarray(meta["dist"], dtype=np.float64),
        model=LensModel(str(meta.get("model", LensModel.PINHOLE.value))),
        image_size=size,
    )
    views = list(meta.get("views", []))
    rvecs = np.asarray([_to_float_matrix(v["rvec"], (3,)) for v in views], dtype=np.float64).reshape(-1, 3)
    tvecs = np.asarray([_to_float_matrix(v["tvec"], (3,)) for v in views], dtype=np.float64).reshape(-1, 3)
    per_view = np.asarray([float(v.get("rms", np.nan)) for v in views], dtype=np.float64)
    return CalibrationResult(camera=camera, rvecs=rvecs, tvecs=tvecs, rms=float(meta["rms"]), per_view_rms=per_view)


def save_calibration(path: Path, result: CalibrationResult) -> Path:
    """
    Save one camera's calibration as JSON: intrinsics, distortion, lens model,
    image size, solver RMS and the per-view poses.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(calibration_to_dict(result), indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_calibration(path: Path) -> CalibrationResult:
    return calibration_from_dict(_read_meta(path, CALIBRATION_SCHEMA))


def save_homography(path: Path, fit: HomographyFit, *, source: str = "", target: str = "") -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    meta: dict[str, Any] = {
        "schema_version": HOMOGRAPHY_SCHEMA,
        "H": np.asarray(fit.homography, dtype=np.float64).tolist(),
        "quality": {"rmse_px": float(fit.rmse), "inlier_count": int(fit.inlier_count)},
        "inlier_mask": np.asarray(fit.inlier_mask, dtype=bool).astype(int).tolist(),
    }
    if source or target:
        meta["views"] = {"source": str(source), "target": str(target)}
    path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_homography(path: Path) -> HomographyFit:
    meta = _read_meta(path, HOMOGRAPHY_SCHEMA)
    q = meta["quality"]
    return HomographyFit(
        homography=_to_float_matrix(meta["H"], (3, 3)),
        inlier_mask=np.asarray(meta.get("inlier_mask", []), dtype=bool),
        rmse=float(q["rmse_px"]),
        inlier_count=int(q["inlier_count"]),
    )


def save_remap(path: Path, table: RemapTable) -> Path:
    """Dense maps go to a compressed NPZ (`map_x`, `map_y`, float32 (H,W))."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(
        path,
        map_x=np.asarray(table.map_x, dtype=np.float32),
        map_y=np.asarray(table.map_y, dtype=np.float32),
    )
    return path


def load_remap(path: Path, expected_size: tuple[int, int] | None = None) -> RemapTable:
    with np.load(str(path)) as data:
        if "map_x" not in data.files or "map_y" not in data.files:
            raise ValueError(f"{path}: missing map_x/map_y arrays")
        table = RemapTable(map_x=np.asarray(data["map_x"]), map_y=np.asarray(data["map_y"]))
    if expected_size is not None:
        w, h = (int(v) for v in expected_size)
        if (table.width, table.height) != (w, h):
            raise ValueError(f"{path}: map is {table.width}x{table.height}, expected {w}x{h}")
    return table
